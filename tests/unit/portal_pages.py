"""Scripted page graphs for PortalSession tests."""

from __future__ import annotations

from dataclasses import dataclass

from afip_enrollment.scraping.selectors import AfipSelectors
from afip_enrollment.scraping.session import WEB_SERVICES_SALES_POINT
from afip_enrollment.testing.fakes import FakeContext, FakeDownload, FakePage

SEL = AfipSelectors()
USERNAME = "20123456789"


@dataclass
class PortalPages:
    context: FakeContext
    landing: FakePage
    home: FakePage
    certificates: FakePage
    relations: FakePage
    sales_points: FakePage


def build_portal(
    *,
    organizations: list[str] | None = None,
    sales_rows: list[list[str]] | None = None,
    total_records: str = "Total: 4",
) -> PortalPages:
    """
    Landing -> login popup (which becomes the portal home) -> three service popups,
    opened in order: certificates, relations, sales points. Single-entity account.
    """
    context = FakeContext()
    landing = FakePage(context, url="https://www.afip.gob.ar/landing/default.asp")
    home = FakePage(
        context,
        url="https://auth.afip.gob.ar/contribuyente_/login.xhtml",
        opener=landing,
        missing={SEL.captcha},
    )
    certificates = FakePage(
        context,
        url="https://auth.afip.gob.ar/certificados",
        opener=home,
        missing={SEL.entity_dropdown},
        download=FakeDownload(),
    )
    relations = FakePage(
        context,
        url="https://auth.afip.gob.ar/relaciones",
        opener=home,
        missing={SEL.entity_dropdown},
        texts={SEL.represented_label: "[20-12345678-9] PEREZ JUAN"},
    )
    sales_points = FakePage(
        context,
        url="https://auth.afip.gob.ar/puntos-de-venta",
        opener=home,
        texts={SEL.total_records: total_records},
        lists={
            SEL.organization_buttons: organizations if organizations is not None else ["PEREZ JUAN"],
            SEL.sales_point_rows: (
                sales_rows if sales_rows is not None else [["0007", WEB_SERVICES_SALES_POINT]]
            ),
        },
    )

    landing.popups_on_click[SEL.landing_login] = [home]
    home.popups_on_click[SEL.first_search_result] = [certificates, relations, sales_points]

    return PortalPages(context, landing, home, certificates, relations, sales_points)
