from __future__ import annotations

import logging
import re
import unicodedata

from playwright.sync_api import TimeoutError as PWTimeoutError

from afip_enrollment.utils.cancellation import CancelToken
from afip_enrollment.utils.errors import ConflictError

logger = logging.getLogger(__name__)

_WS = re.compile(r"\s+")


def normalize_label(text: str | None) -> str:
    """Strips diacritics, collapses whitespace and case-folds ("Recordar  más tarde" -> "recordar mas tarde")."""
    decomposed = unicodedata.normalize("NFD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WS.sub(" ", stripped).strip().casefold()


class SelectorInteractor:
    """
    What it does:
    - Wraps the page calls every stage repeats: bounded waits, clicks, typing, selects
      and settle delays.

    Why it matters:
    - A selector that never shows up means the portal is not where the workflow expects
      it to be; that is reported uniformly as ConflictError naming the selector.

    Behavior:
    - `wait`/`click`/`fill`/`type`/`select` raise ConflictError on timeout.
    - `probe` is the non-throwing variant: True if the selector showed up in time.
    - `settle` sleeps through the page (so popups/dialog events keep flowing) and checks
      the cancel token before and after.
    """

    def __init__(
        self,
        page,
        *,
        cancel: CancelToken | None = None,
        default_timeout_ms: int = 16_000,
    ) -> None:
        self.page = page
        self.cancel = cancel
        self.default_timeout_ms = default_timeout_ms

    def _check(self) -> None:
        if self.cancel is not None:
            self.cancel.check()

    def wait(self, selector: str, *, timeout_ms: int | None = None, visible: bool = False):
        self._check()
        timeout = timeout_ms if timeout_ms is not None else self.default_timeout_ms
        try:
            return self.page.wait_for_selector(
                selector, timeout=timeout, state="visible" if visible else "attached"
            )
        except PWTimeoutError as e:
            raise ConflictError(f"Element {selector} not found within {timeout}ms") from e

    def probe(self, selector: str, *, timeout_ms: int, visible: bool = False) -> bool:
        self._check()
        try:
            self.page.wait_for_selector(
                selector, timeout=timeout_ms, state="visible" if visible else "attached"
            )
            return True
        except PWTimeoutError:
            return False

    def click(
        self,
        selector: str,
        *,
        timeout_ms: int | None = None,
        visible: bool = False,
        delay_ms: int | None = None,
    ) -> None:
        self.wait(selector, timeout_ms=timeout_ms, visible=visible)
        try:
            if delay_ms is None:
                self.page.click(selector)
            else:
                self.page.click(selector, delay=delay_ms)
        except PWTimeoutError as e:
            raise ConflictError(f"Could not click {selector}") from e

    def fill(self, selector: str, value: str, *, timeout_ms: int | None = None) -> None:
        self.wait(selector, timeout_ms=timeout_ms)
        self.page.fill(selector, value)

    def type(
        self, selector: str, text: str, *, timeout_ms: int | None = None, delay_ms: int = 0
    ) -> None:
        # Real key events: the portal search box only reacts to keystrokes.
        self.wait(selector, timeout_ms=timeout_ms)
        self.page.type(selector, text, delay=delay_ms)

    def select(
        self,
        selector: str,
        *,
        value: str | None = None,
        label: str | None = None,
        timeout_ms: int | None = None,
    ) -> None:
        timeout = timeout_ms if timeout_ms is not None else self.default_timeout_ms
        self.wait(selector, timeout_ms=timeout)
        try:
            if label is not None:
                self.page.select_option(selector, label=label, timeout=timeout)
            else:
                self.page.select_option(selector, value, timeout=timeout)
        except PWTimeoutError as e:
            raise ConflictError(f"Option {value or label!r} not available in {selector}") from e

    def text_of(self, selector: str, *, timeout_ms: int | None = None) -> str:
        self.wait(selector, timeout_ms=timeout_ms)
        return self.page.eval_on_selector(selector, "el => (el.textContent || '').trim()") or ""

    def settle(self, ms: int) -> None:
        self._check()
        if ms > 0:
            self.page.wait_for_timeout(ms)
        self._check()

    def click_by_visible_text(self, container_selector: str, text: str) -> bool:
        """
        What it does:
        - Clicks the first visible button inside `container_selector` whose label matches `text`.

        Why it matters:
        - Modal buttons have no stable ids, but their labels are stable
          ("Recordar más tarde", "Continuar").

        Behavior:
        - Labels are compared with normalize_label (accents, spacing and case ignored).
        - Hidden candidates are skipped even when their label matches.
        - Returns False when the container or a matching visible button is missing.
        """
        if self.page.locator(container_selector).count() == 0:
            return False

        target = normalize_label(text)
        candidates = self.page.locator(
            f"{container_selector} button, {container_selector} .btn"
        )
        for i in range(candidates.count()):
            btn = candidates.nth(i)
            if not btn.is_visible():
                continue
            if normalize_label(btn.inner_text()) != target:
                continue
            btn.scroll_into_view_if_needed()
            btn.click(delay=30)
            return True

        return False
