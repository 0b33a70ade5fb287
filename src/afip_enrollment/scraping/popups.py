"""
popups.py

What this module does
- Waits for a page opened by the portal (window.open / target=_blank) without leaking listeners.

Why it matters
- Several portal links open their destination in a popup, others navigate in place.
  The session needs "the new page, or None" and must not keep listening afterwards.

Behavior summary
- `PopupWaiter` registers a "page" listener on the browser context when armed
  (use it as a context manager around the click that may open the popup).
- Candidates without an opener (when required) or failing the URL predicate are ignored.
- `wait(pump)` returns the first accepted page, or None once `timeout_ms` elapsed.
  `pump(ms)` must let Playwright dispatch events, e.g. `page.wait_for_timeout`.
- The listener is removed on every exit path.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class PopupWaiter:
    def __init__(
        self,
        context: Any,
        *,
        timeout_ms: int = 12_000,
        require_opener: bool = True,
        url_predicate: Callable[[str], bool] | None = None,
        poll_ms: int = 250,
    ) -> None:
        self.context = context
        self.timeout_ms = timeout_ms
        self.require_opener = require_opener
        self.url_predicate = url_predicate
        self.poll_ms = max(1, poll_ms)

        self._page = None
        self._armed = False

    def __enter__(self) -> PopupWaiter:
        self.arm()
        return self

    def __exit__(self, *exc) -> None:
        self.disarm()

    @property
    def armed(self) -> bool:
        return self._armed

    def arm(self) -> None:
        if not self._armed:
            self.context.on("page", self._on_page)
            self._armed = True

    def disarm(self) -> None:
        if self._armed:
            self.context.remove_listener("page", self._on_page)
            self._armed = False

    def _on_page(self, page) -> None:
        if self._page is not None:
            return
        if self.require_opener and page.opener() is None:
            logger.debug("Ignoring new page without opener: %s", page.url)
            return
        if self.url_predicate is not None and not self.url_predicate(page.url):
            logger.debug("Ignoring new page rejected by URL predicate: %s", page.url)
            return
        self._page = page

    def wait(self, pump: Callable[[int], object]):
        waited = 0
        try:
            while self._page is None and waited < self.timeout_ms:
                step = min(self.poll_ms, self.timeout_ms - waited)
                pump(step)
                waited += step
            return self._page
        finally:
            self.disarm()
