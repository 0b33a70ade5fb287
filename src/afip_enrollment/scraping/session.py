"""
session.py

What this module does
- Drives one AFIP portal run through its stages:
  LOGIN -> CERTIFICATE_ALIAS -> SERVICE_RELATION -> SALES_POINT -> TEARDOWN.

Why it matters
- Everything the run learns (alias, sales point, pages, login state) lives in an
  AutomationContext created per run, so two runs never see each other's state.
- The transition table in `stages.py` makes the failing stage unambiguous.

Behavior summary
- `run(creds, real_name=..., cancel=...)` returns the alias and sales point.
- Any stage failure records `ctx.failed_stage`, saves a screenshot to the artifacts
  directory and re-raises. TEARDOWN (closing the browser) runs on every exit path.
- A CAPTCHA at login raises ChallengeEncounteredError immediately; it is never retried.
- Between steps the cancel token is checked; a cancelled or expired run raises
  RunCancelledError at the next step.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from playwright.sync_api import TimeoutError as PWTimeoutError

from afip_enrollment.scraping.interactor import SelectorInteractor
from afip_enrollment.scraping.popups import PopupWaiter
from afip_enrollment.scraping.selectors import AfipSelectors, PortalTimeouts
from afip_enrollment.scraping.stages import (
    PIPELINE,
    AutomationContext,
    EntityMode,
    Stage,
    find_sales_point,
    format_cuit,
    match_organization,
    new_alias,
    parse_record_count,
)
from afip_enrollment.services.portal_client import EnrollmentResult, PortalCredentials
from afip_enrollment.services.staging import StagingArea
from afip_enrollment.utils.cancellation import CancelToken
from afip_enrollment.utils.errors import (
    ChallengeEncounteredError,
    ConflictError,
    InvalidArgumentError,
    LoginError,
)

logger = logging.getLogger(__name__)

CERTIFICATES_SERVICE = "Administración de Certificados Digitales"
RELATIONS_SERVICE = "Administrador de Relaciones de Clave Fiscal"
SALES_POINTS_SERVICE = "Administración de Puntos de Venta y Domicilios"
WEB_SERVICES_SALES_POINT = "Factura Electronica - Monotributo - Web Services"

SALES_POINT_SYSTEM = "MAW"
SALES_POINT_ADDRESS_TYPE = "1-1"


class PortalSession:
    def __init__(
        self,
        browser,
        *,
        base_url: str,
        staging: StagingArea,
        selectors: AfipSelectors | None = None,
        timeouts: PortalTimeouts | None = None,
    ) -> None:
        self.browser = browser
        self.base_url = base_url
        self.staging = staging
        self.sel = selectors or AfipSelectors()
        self.t = timeouts or PortalTimeouts()

    # -------------------- Pipeline --------------------

    def run(
        self,
        creds: PortalCredentials,
        *,
        real_name: str,
        cancel: CancelToken | None = None,
    ) -> EnrollmentResult:
        ctx = AutomationContext(
            username=creds.username,
            password=creds.password,
            real_name=real_name,
            alias=new_alias(),
            cancel=cancel or CancelToken(),
        )
        self.run_context(ctx)
        return EnrollmentResult(alias=ctx.alias, sale_point=ctx.sale_point)

    def stage_handlers(self) -> dict[Stage, Callable[[AutomationContext], None]]:
        return {
            Stage.LOGIN: self.login,
            Stage.CERTIFICATE_ALIAS: self.certificate_alias,
            Stage.SERVICE_RELATION: self.service_relation,
            Stage.SALES_POINT: self.sales_point,
        }

    def run_context(self, ctx: AutomationContext) -> None:
        handlers = self.stage_handlers()
        try:
            for stage in PIPELINE:
                ctx.cancel.check()
                ctx.advance(stage)
                logger.info("[%s] stage %s started", ctx.username, stage)
                handlers[stage](ctx)
        except Exception as e:
            ctx.failed_stage = ctx.stage
            logger.error("[%s] stage %s failed: %s", ctx.username, ctx.stage, e)
            self._debug_dump(ctx, f"{ctx.stage}_failed_{ctx.alias}")
            raise
        finally:
            self.teardown(ctx)

    def teardown(self, ctx: AutomationContext) -> None:
        if ctx.stage is not Stage.TEARDOWN:
            ctx.advance(Stage.TEARDOWN)
        ctx.active_pages.clear()
        self.browser.close()
        logger.info("[%s] browser closed", ctx.username)

    # -------------------- LOGIN --------------------

    def login(self, ctx: AutomationContext) -> None:
        landing = self.browser.launch()
        ctx.track(landing)
        landing.goto(self.base_url, wait_until="domcontentloaded")

        ui = self._ui(ctx, landing)
        login_page = self._click_for_popup(ctx, ui, self.sel.landing_login)
        ctx.portal_page = login_page

        self.sign_in(ctx, login_page)
        if not ctx.logged_in:
            raise LoginError("Could not log in to AFIP")

    def sign_in(self, ctx: AutomationContext, page) -> None:
        """
        What it does:
        - Types username and password on the identity provider page and submits.

        Behavior:
        - Before submitting, waits a bounded time for a CAPTCHA. If one shows up the run
          aborts with ChallengeEncounteredError (no retry).
        - Success means the portal search box appears afterwards.
        - Any other failure gets one retry: wait, re-check the password field, resubmit.
        """
        ui = self._ui(ctx, page)
        logger.info("Logging in to AFIP as %s", ctx.username)
        page.wait_for_load_state("load")

        try:
            ui.fill(self.sel.username, ctx.username)
            ui.click(self.sel.next_button)
            ui.fill(self.sel.password, ctx.password)
            self._ensure_no_challenge(ui)
            ui.click(self.sel.login_submit)
            ctx.logged_in = ui.probe(self.sel.search_input, timeout_ms=self.t.logged_in_probe)
        except ChallengeEncounteredError:
            raise
        except (ConflictError, PWTimeoutError) as e:
            logger.warning("Login attempt failed (%s), retrying once", e)

        if not ctx.logged_in:
            self._retry_sign_in(ctx, ui)

    def _retry_sign_in(self, ctx: AutomationContext, ui: SelectorInteractor) -> None:
        ui.settle(self.t.login_retry_delay)
        ui.page.wait_for_load_state("load")
        if not ui.probe(self.sel.password, timeout_ms=self.t.selector):
            raise LoginError("Login retry failed: password field not available")

        ui.fill(self.sel.password, ctx.password)
        self._ensure_no_challenge(ui)
        ui.click(self.sel.login_submit)
        ctx.logged_in = ui.probe(self.sel.search_input, timeout_ms=self.t.logged_in_probe)

    def _ensure_no_challenge(self, ui: SelectorInteractor) -> None:
        ui.settle(self.t.captcha_settle)
        if ui.probe(self.sel.captcha, timeout_ms=self.t.captcha_probe):
            logger.error("Captcha shown on the login page")
            raise ChallengeEncounteredError("Captcha challenge encountered at login")
        logger.info("No captcha found")

    # -------------------- CERTIFICATE_ALIAS --------------------

    def certificate_alias(self, ctx: AutomationContext) -> None:
        cert_page = self.open_certificate_admin(ctx, ctx.portal_page)
        ctx.certificate_page = cert_page
        self.upload_alias_and_download(ctx, cert_page)

    def open_certificate_admin(self, ctx: AutomationContext, page):
        """
        What it does:
        - Opens "Administración de Certificados Digitales" from the portal search box.

        Why it matters:
        - Depending on the account, the portal opens it in a popup, asks for
          confirmation in a modal that opens the popup, or navigates in place.

        Behavior:
        1) Popup after clicking the search result (bounded race).
        2) Else a "Continuar" modal whose button opens the popup.
        3) Else in-place navigation (shorter bound); the current page is returned.
        """
        ui = self._ui(ctx, page)
        logger.info("Navigating to %s", CERTIFICATES_SERVICE)
        page.wait_for_load_state("load")
        ui.settle(self.t.home_settle)

        # Reminder modal; it never opens a popup
        self.dismiss_modal(ctx, page, "Recordar más tarde")

        self._search_service(ui, CERTIFICATES_SERVICE, timeout_ms=self.t.search_box)
        ui.wait(self.sel.first_search_result, timeout_ms=self.t.search_result)

        with self._popup_waiter() as popup:
            ui.click(self.sel.first_search_result, delay_ms=30)
            new_page = popup.wait(page.wait_for_timeout)

        if new_page is None:
            logger.info("No popup after picking the result; checking for a 'Continuar' modal")
            new_page = self.dismiss_modal(ctx, page, "Continuar", expect_popup=True)

        if new_page is None:
            try:
                page.wait_for_load_state("networkidle", timeout=self.t.in_place_navigation)
            except PWTimeoutError:
                logger.debug("No network idle after in-place navigation; continuing")
            logger.info("Certificate administration opened in the same tab")
            return page

        self._prepare_popup(ctx, new_page)
        logger.info("Certificate administration opened in a new tab")
        return new_page

    def upload_alias_and_download(self, ctx: AutomationContext, page) -> None:
        """
        What it does:
        - Registers the staged CSR under the run alias and downloads the signed certificate.

        Behavior:
        - Enters as the taxpayer (entity dropdown when present, plain "Ingresar" otherwise).
        - Types the alias, uploads the CSR, submits, waits for the portal to settle.
        - Clicks the link of the table row whose first cell equals the alias, then the
          download button; the download is saved into the staging download directory.
        - Missing form elements or alias row raise ConflictError.
        """
        ui = self._ui(ctx, page)
        page.wait_for_load_state("load")
        logger.info("Adding alias %s to the AFIP account", ctx.alias)

        self._enter_as_taxpayer(ctx, ui)

        ui.settle(self.t.alias_form_settle)
        ui.wait(self.sel.alias_input, timeout_ms=self.t.alias_form)
        ui.settle(self.t.alias_field_settle)
        ui.type(self.sel.alias_input, ctx.alias, timeout_ms=self.t.alias_form)

        ui.wait(self.sel.csr_file_input, timeout_ms=self.t.alias_form, visible=True)
        ui.settle(self.t.alias_field_settle)
        page.set_input_files(self.sel.csr_file_input, str(self.staging.require_csr()))

        ui.click(self.sel.enter_button, timeout_ms=self.t.alias_form, visible=True)
        ui.settle(self.t.alias_submit_settle)

        ui.wait(self.sel.any_table, visible=True)
        row_link = self.sel.alias_row_link.format(alias=ctx.alias)
        try:
            ui.click(row_link, timeout_ms=self.t.alias_row)
        except ConflictError as e:
            raise ConflictError(f"No row found for alias {ctx.alias}") from e

        ui.wait(self.sel.download_button, timeout_ms=self.t.download, visible=True)
        try:
            with page.expect_download(timeout=self.t.download) as download_info:
                page.click(self.sel.download_button)
        except PWTimeoutError as e:
            raise ConflictError(f"Signed certificate for alias {ctx.alias} was not downloaded") from e

        self.staging.save_download(download_info.value)

    # -------------------- SERVICE_RELATION --------------------

    def service_relation(self, ctx: AutomationContext) -> None:
        page = ctx.portal_page
        page.bring_to_front()
        relation_page = self.open_service(ctx, page, RELATIONS_SERVICE)
        self.link_billing_service(ctx, relation_page)

    def link_billing_service(self, ctx: AutomationContext, page) -> None:
        """
        What it does:
        - Creates the relation that lets the run's certificate (alias) use the
          electronic billing web service on behalf of the taxpayer.

        Behavior:
        - MULTI_ENTITY: pick the taxpayer in the entity dropdown and again as "represented".
        - SINGLE_ENTITY: the represented label must show the taxpayer CUIT as
          [NN-NNNNNNNN-N]; otherwise InvalidArgumentError (the user has to enable the
          representation on the portal first).
        - Then: search service -> agency -> WebServices -> Facturación Electrónica
          -> pick the managed computer (alias) -> select -> generate relation.
        """
        ui = self._ui(ctx, page)
        mode = self.probe_entity_mode(ui, timeout_ms=self.t.relation_entity_probe)
        ctx.entity_mode = mode

        if mode is EntityMode.MULTI_ENTITY:
            ui.select(self.sel.entity_dropdown, value=ctx.username)
            ui.click(self.sel.new_relation, timeout_ms=self.t.short_selector)
            ui.settle(self.t.relation_short_settle)
            ui.select(
                self.sel.represented_dropdown,
                value=ctx.username,
                timeout_ms=self.t.represented_dropdown,
            )
        else:
            logger.warning("No entity selector on the relations page; running single entity")
            ui.click(self.sel.new_relation, timeout_ms=self.t.short_selector)
            represented = ui.text_of(self.sel.represented_label, timeout_ms=self.t.short_selector)
            if format_cuit(ctx.username) not in represented:
                raise InvalidArgumentError(
                    "The user must activate the representation toward its legal entity"
                )

        ui.settle(self.t.relation_long_settle)
        ui.click(self.sel.search_service, timeout_ms=self.t.short_selector)
        ui.settle(self.t.relation_settle)

        ui.wait(self.sel.agency_logo)
        page.eval_on_selector(
            self.sel.agency_logo, "el => el.scrollIntoView({behavior: 'auto', block: 'center'})"
        )
        ui.settle(self.t.relation_short_settle)
        ui.click(self.sel.agency_logo)
        ui.settle(self.t.relation_settle)

        ui.click(self.sel.webservices_cell, timeout_ms=self.t.short_selector)
        ui.click(self.sel.webservices_group, timeout_ms=self.t.webservices_group, visible=True)
        ui.click(self.sel.billing_service_link, timeout_ms=self.t.short_selector)
        ui.settle(self.t.relation_settle)

        ui.click(self.sel.search_user, timeout_ms=self.t.short_selector, visible=True)
        ui.settle(self.t.relation_long_settle)
        self._select_managed_computer(ctx, ui)

        ui.click(self.sel.select_service, timeout_ms=self.t.short_selector, visible=True)
        ui.settle(self.t.relation_settle)
        ui.click(self.sel.generate_relation, timeout_ms=self.t.short_selector, visible=True)
        ui.settle(self.t.relation_settle)
        logger.info("Billing web service linked for %s", ctx.username)

    def _select_managed_computer(self, ctx: AutomationContext, ui: SelectorInteractor) -> None:
        try:
            ui.select(self.sel.managed_computers, label=ctx.alias, timeout_ms=self.t.short_selector)
            return
        except ConflictError:
            logger.warning("Alias %s not listed as managed computer; picking the first entry", ctx.alias)

        ui.page.eval_on_selector(
            self.sel.managed_computers,
            """(select) => {
                if (select.options.length > 1) {
                    select.selectedIndex = 1;
                    select.dispatchEvent(new Event('change', { bubbles: true }));
                }
            }""",
        )

    # -------------------- SALES_POINT --------------------

    def sales_point(self, ctx: AutomationContext) -> None:
        page = ctx.portal_page
        page.bring_to_front()
        sales_page = self.open_service(ctx, page, SALES_POINTS_SERVICE)
        self.register_sales_point(ctx, sales_page)

    def register_sales_point(self, ctx: AutomationContext, page) -> None:
        """
        What it does:
        - Finds (or creates) the web-services billing sales point of the taxpayer's organization.

        Behavior:
        - Opens the organization whose button label contains a word of the user's real name.
        - Reuses the sales point whose row reads exactly WEB_SERVICES_SALES_POINT,
          taking the number from the row's first cell.
        - Otherwise creates sales point <record count + 1> (system MAW, address type 1-1).
        - ctx.sale_point is only set once the number is confirmed.
        """
        ui = self._ui(ctx, page)
        ui.wait(self.sel.organization_buttons)
        labels = page.eval_on_selector_all(
            self.sel.organization_buttons, "els => els.map(el => el.value || '')"
        )
        index = match_organization(labels or [], ctx.real_name)
        if index is None:
            raise ConflictError(f'No organization button matches "{ctx.real_name}"')
        page.click(f"{self.sel.organization_buttons} >> nth={index}")

        ui.click(self.sel.sales_point_panel, timeout_ms=self.t.selector)
        ui.settle(self.t.sales_point_panel_settle)
        if ui.probe(self.sel.warnings_close, timeout_ms=self.t.selector, visible=True):
            ui.click(self.sel.warnings_close, visible=True)
        else:
            logger.info("No warnings dialog to close")

        ui.wait(self.sel.any_cell)
        rows = page.eval_on_selector_all(
            self.sel.sales_point_rows,
            "rows => rows.map(r => Array.from(r.querySelectorAll('td')).map(td => td.textContent || ''))",
        )

        existing = find_sales_point(rows or [], WEB_SERVICES_SALES_POINT)
        if existing is not None:
            logger.info("Sales point already exists: %s", existing)
            ctx.sale_point = existing
            return

        ctx.sale_point = self._create_sales_point(ui)
        logger.info("Sales point created: %s", ctx.sale_point)

    def _create_sales_point(self, ui: SelectorInteractor) -> int:
        count = parse_record_count(ui.text_of(self.sel.total_records, timeout_ms=self.t.selector))
        number = count + 1
        logger.info("Found %s sales points; creating number %s", count, number)

        ui.click(self.sel.button_by_text.format(text="Agregar.."), timeout_ms=self.t.short_selector)
        ui.settle(self.t.add_form_settle)

        ui.fill(self.sel.new_sales_point_number, str(number), timeout_ms=self.t.selector)
        ui.select(self.sel.new_sales_point_system, value=SALES_POINT_SYSTEM, timeout_ms=self.t.selector)
        ui.select(
            self.sel.new_sales_point_address_type,
            value=SALES_POINT_ADDRESS_TYPE,
            timeout_ms=self.t.selector,
        )

        ui.click(self.sel.button_by_text.format(text="Aceptar"), timeout_ms=self.t.short_selector)
        ui.settle(self.t.confirm_settle)
        ui.click(self.sel.confirm_yes, timeout_ms=self.t.selector, visible=True)
        return number

    # -------------------- Shared helpers --------------------

    def open_service(self, ctx: AutomationContext, page, service_name: str):
        """Searches a service by name on the portal home and returns the popup it opens."""
        ui = self._ui(ctx, page)
        logger.info("Searching service %s", service_name)
        page.wait_for_load_state("load")
        ui.settle(self.t.service_settle)
        self._search_service(ui, service_name, timeout_ms=self.t.service_search)
        return self._click_for_popup(
            ctx, ui, self.sel.first_search_result, timeout_ms=self.t.search_result
        )

    def probe_entity_mode(self, ui: SelectorInteractor, *, timeout_ms: int) -> EntityMode:
        if ui.probe(self.sel.entity_dropdown, timeout_ms=timeout_ms):
            return EntityMode.MULTI_ENTITY
        return EntityMode.SINGLE_ENTITY

    def dismiss_modal(
        self,
        ctx: AutomationContext,
        page,
        button_text: str,
        *,
        expect_popup: bool = False,
    ):
        """
        Clicks `button_text` in the open modal, if any. With `expect_popup`, returns the
        popup that click opened (or None).
        """
        ui = self._ui(ctx, page)
        ui.settle(self.t.modal_appear)

        if page.locator(self.sel.modal).count() == 0:
            logger.info('No modal found for "%s"', button_text)
            return None

        waiter = self._popup_waiter() if expect_popup else None
        popup = None
        try:
            if waiter is not None:
                waiter.arm()
            if not ui.click_by_visible_text(self.sel.modal, button_text):
                logger.info('Modal button "%s" missing or hidden', button_text)
                return None

            logger.info('Modal button "%s" clicked', button_text)
            ui.settle(self.t.modal_close)
            if waiter is not None:
                popup = waiter.wait(page.wait_for_timeout)
        finally:
            if waiter is not None:
                waiter.disarm()

        if popup is not None:
            self._prepare_popup(ctx, popup)
        return popup

    def _enter_as_taxpayer(self, ctx: AutomationContext, ui: SelectorInteractor) -> None:
        mode = self.probe_entity_mode(ui, timeout_ms=self.t.entity_probe)
        ctx.entity_mode = mode
        if mode is EntityMode.MULTI_ENTITY:
            ui.select(self.sel.entity_dropdown, value=ctx.username)
        else:
            logger.warning("No entity selector on the certificates page; running single alias")
        ui.click(self.sel.enter_button, timeout_ms=self.t.alias_form, visible=True)

    def _search_service(self, ui: SelectorInteractor, service_name: str, *, timeout_ms: int) -> None:
        ui.click(self.sel.search_input, timeout_ms=timeout_ms, delay_ms=20)
        ui.page.keyboard.press("ControlOrMeta+A")
        ui.type(self.sel.search_input, service_name, delay_ms=50)

    def _click_for_popup(
        self,
        ctx: AutomationContext,
        ui: SelectorInteractor,
        selector: str,
        *,
        timeout_ms: int | None = None,
    ):
        ui.wait(selector, timeout_ms=timeout_ms)
        with self._popup_waiter() as popup:
            ui.click(selector, timeout_ms=timeout_ms, delay_ms=30)
            new_page = popup.wait(ui.page.wait_for_timeout)
        if new_page is None:
            raise ConflictError(f"Timeout waiting for new page after clicking {selector}")
        self._prepare_popup(ctx, new_page)
        return new_page

    def _popup_waiter(self) -> PopupWaiter:
        return PopupWaiter(
            self.browser.context,
            timeout_ms=self.t.popup,
            require_opener=True,
            poll_ms=self.t.poll,
        )

    def _prepare_popup(self, ctx: AutomationContext, page) -> None:
        ctx.track(page)
        page.bring_to_front()
        try:
            page.wait_for_selector("body", timeout=self.t.popup_body)
        except PWTimeoutError:
            logger.debug("Popup %s has no body yet", page.url)

    def _ui(self, ctx: AutomationContext, page) -> SelectorInteractor:
        return SelectorInteractor(page, cancel=ctx.cancel, default_timeout_ms=self.t.selector)

    def _debug_dump(self, ctx: AutomationContext, tag: str) -> None:
        page = ctx.active_pages[-1] if ctx.active_pages else None
        self.browser.screenshot(page, tag)
