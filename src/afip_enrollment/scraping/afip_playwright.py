"""
afip_playwright.py

What this module does
- Implements the Playwright-based AFIP client that satisfies the `PortalClient` interface.

Why it matters
- Keeps web automation isolated from the business workflow (EnrollmentService).
- Every `enroll()` call builds its own browser and session, so the client object itself
  holds no per-run state and can be shared across job threads.

Behavior summary
- `enroll(creds, real_name=..., cancel=...)`: launches Chromium, runs
  login -> certificate alias -> service relation -> sales point, closes the browser.
- On failures: a screenshot of the last page goes to the artifacts directory.
"""

from __future__ import annotations

import logging
from pathlib import Path

from afip_enrollment.scraping.browser import PlaywrightBrowser
from afip_enrollment.scraping.selectors import AfipSelectors, PortalTimeouts
from afip_enrollment.scraping.session import PortalSession
from afip_enrollment.services.portal_client import EnrollmentResult, PortalCredentials
from afip_enrollment.services.staging import StagingArea
from afip_enrollment.utils.cancellation import CancelToken

logger = logging.getLogger(__name__)


class AfipPortalClient:
    def __init__(
        self,
        *,
        base_url: str,
        staging: StagingArea,
        headless: bool = True,
        artifacts_dir: str | Path = "artifacts",
        selectors: AfipSelectors | None = None,
        timeouts: PortalTimeouts | None = None,
    ) -> None:
        self.base_url = base_url
        self.staging = staging
        self.headless = headless
        self.artifacts_dir = Path(artifacts_dir)
        self.sel = selectors or AfipSelectors()
        self.t = timeouts or PortalTimeouts()

    def new_browser(self) -> PlaywrightBrowser:
        return PlaywrightBrowser(
            headless=self.headless,
            artifacts_dir=self.artifacts_dir,
            default_timeout_ms=self.t.default,
        )

    def enroll(
        self,
        creds: PortalCredentials,
        *,
        real_name: str,
        cancel: CancelToken | None = None,
    ) -> EnrollmentResult:
        session = PortalSession(
            self.new_browser(),
            base_url=self.base_url,
            staging=self.staging,
            selectors=self.sel,
            timeouts=self.t,
        )
        result = session.run(creds, real_name=real_name, cancel=cancel)
        logger.info(
            "Portal run finished for %s: alias=%s sale_point=%s",
            creds.username,
            result.alias,
            result.sale_point,
        )
        return result
