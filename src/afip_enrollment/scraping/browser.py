from __future__ import annotations

import logging
from pathlib import Path

from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--no-zygote",
)


class PlaywrightBrowser:
    """
    What it does:
    - Owns one Playwright-managed Chromium for one portal run.

    Why it matters:
    - Each run gets its own browser, so concurrent runs never share pages or cookies.

    Behavior:
    - `launch()` starts Playwright, Chromium and a context that accepts downloads,
      and returns the first page.
    - `context` is the BrowserContext popups are observed on.
    - `screenshot(page, tag)` is best effort (debug only).
    - `close()` is safe to call multiple times, also before launch.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        artifacts_dir: str | Path = "artifacts",
        default_timeout_ms: int = 30_000,
    ) -> None:
        self.headless = headless
        self._default_timeout_ms = default_timeout_ms
        self._artifacts_dir = Path(artifacts_dir)

        self._pw = None
        self._browser = None
        self._context = None

    @property
    def context(self):
        if self._context is None:
            raise RuntimeError("Browser not launched. Did launch() run?")
        return self._context

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    def launch(self):
        """
        Behavior:
        - If Chromium isn't installed, Playwright will raise. Install via:
            playwright install chromium
        """
        self._pw = sync_playwright().start()
        try:
            self._browser = self._pw.chromium.launch(
                headless=self.headless, args=list(CHROMIUM_ARGS)
            )
        except Exception as e:
            self.close()
            raise RuntimeError(
                "Failed to launch Playwright Chromium.\n"
                "If this is the first time on this machine, run:\n\n"
                "  playwright install chromium\n"
            ) from e

        self._context = self._browser.new_context(
            accept_downloads=True,
            locale="es-AR",
            timezone_id="America/Argentina/Buenos_Aires",
        )
        self._context.set_default_timeout(self._default_timeout_ms)
        logger.info("Chromium launched (headless=%s)", self.headless)
        return self._context.new_page()

    def screenshot(self, page, tag: str) -> Path | None:
        if page is None:
            return None
        self._artifacts_dir.mkdir(parents=True, exist_ok=True)
        out = self._artifacts_dir / f"{tag}.png"
        try:
            page.screenshot(path=str(out), full_page=True)
        except Exception as e:
            logger.debug("Screenshot %s failed: %s", out, e)
            return None
        return out

    def close(self) -> None:
        try:
            if self._context:
                self._context.close()
        finally:
            self._context = None

        try:
            if self._browser:
                self._browser.close()
        finally:
            self._browser = None

        try:
            if self._pw:
                self._pw.stop()
        finally:
            self._pw = None
