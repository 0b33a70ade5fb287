from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AfipSelectors:
    """
    Centralized selectors for the AFIP portal.

    What it does:
    - Keeps selectors in one place for easy maintenance.

    Why it matters:
    - The portal UI can change. Updating selectors in one class reduces risk.

    Behavior:
    - Templates with `{...}` placeholders are formatted by the session before use.
    """

    # Landing + identity provider
    landing_login: str = "a.btn.btn-sm.btn-info.btn-block.uppercase"
    username: str = "#F1\\:username"
    next_button: str = "#F1\\:btnSiguiente"
    password: str = "#F1\\:password"
    login_submit: str = "#F1\\:btnIngresar"
    captcha: str = "#captcha img"

    # Portal home: service search box (also the logged-in signal)
    search_input: str = "#buscadorInput"
    first_search_result: str = "#rbt-menu-item-0"
    modal: str = ".modal-content"

    # Shared by the certificate and relation popups
    entity_dropdown: str = "#tblAutoridadAplicacion_cmbCont"
    enter_button: str = "#cmdIngresar"

    # Certificate administration
    alias_input: str = "#txtAliasCertificado"
    csr_file_input: str = "#archivo"
    any_table: str = "table"
    alias_row_link: str = (
        "xpath=//table[@align='center']//tr[td[1][normalize-space()='{alias}']]/th//a"
    )
    download_button: str = "input[alt='Descargar']"

    # Relation administrator
    new_relation: str = "#cmdNuevaRelacion"
    represented_dropdown: str = "#cboRepresentado"
    represented_label: str = "#tblDetalleRelacion_lblRepresentado"
    search_service: str = "#cmdBuscarServicio"
    agency_logo: str = "img[alt='Agencia de Recaudación y Control Aduanero']"
    webservices_cell: str = "xpath=//td[normalize-space()='WebServices']"
    webservices_group: str = "#ctrl\\.org\\.afip\\.grp\\.webservices"
    billing_service_link: str = "xpath=//td//a[contains(normalize-space(), 'Facturación Electrónica')]"
    search_user: str = "#cmdBuscarUsuario"
    managed_computers: str = "#cboComputadoresAdministrados"
    select_service: str = "#cmdSeleccionarServicio"
    generate_relation: str = "#cmdGenerarRelacion"

    # Sales points
    organization_buttons: str = "td[align='center'] input[type='button']"
    sales_point_panel: str = "#btn_abm_pto_vta"
    warnings_close: str = "#dlgAdvertencias_btn_Cerrar"
    any_cell: str = "td"
    sales_point_rows: str = "#tblmiGrilla_dataTable tr"
    total_records: str = "#tblmiGrilla_totalRecords"
    button_by_text: str = (
        "xpath=//span[contains(@class, 'ui-button-text') and normalize-space(text())='{text}']"
    )
    new_sales_point_number: str = "#frmAlta_pveNro"
    new_sales_point_system: str = "#frmAlta_sisCodigo"
    new_sales_point_address_type: str = "#frmAlta_codTipoDomicilio"
    confirm_yes: str = "#JqueryInfoDialog_btnYes"


@dataclass(frozen=True)
class PortalTimeouts:
    """
    Every bounded wait and settle delay of the workflow, in milliseconds.

    The portal updates its UI asynchronously; the settle delays give it time to do so.
    """

    default: int = 30_000
    selector: int = 16_000
    short_selector: int = 10_000
    popup: int = 12_000
    popup_body: int = 10_000
    in_place_navigation: int = 8_000
    search_box: int = 30_000
    search_result: int = 15_000
    service_search: int = 12_000

    captcha_settle: int = 5_000
    captcha_probe: int = 10_000
    logged_in_probe: int = 20_000
    login_retry_delay: int = 6_000

    home_settle: int = 500
    modal_appear: int = 600
    modal_close: int = 500
    service_settle: int = 3_000

    entity_probe: int = 16_000
    relation_entity_probe: int = 10_000
    alias_form: int = 20_000
    alias_form_settle: int = 10_000
    alias_field_settle: int = 3_000
    alias_submit_settle: int = 15_000
    alias_row: int = 40_000
    download: int = 40_000

    represented_dropdown: int = 3_000
    relation_short_settle: int = 2_000
    relation_settle: int = 5_000
    relation_long_settle: int = 10_000
    webservices_group: int = 5_000

    sales_point_panel_settle: int = 5_000
    add_form_settle: int = 3_000
    confirm_settle: int = 5_000

    poll: int = 250
