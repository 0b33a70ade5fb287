from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from playwright.sync_api import TimeoutError as PWTimeoutError

from afip_enrollment.services.portal_client import EnrollmentResult, PortalCredentials
from afip_enrollment.services.stores import CredentialPair, UserRecord
from afip_enrollment.utils.cancellation import CancelToken
from afip_enrollment.utils.errors import NotFoundError


@dataclass
class FakePortalClient:
    """
    What it does:
    - Fake portal client used for service tests (no web automation).

    Why it matters:
    - Lets us test the enrollment workflow deterministically without hitting AFIP.

    Behavior:
    - enroll() records its arguments and returns the configured alias/sales point.
    - `on_enroll` runs before returning, e.g. to drop a "downloaded" certificate
      into the staging area.
    - `error` is raised instead when set.
    """

    alias: str | None = "new-csr-1700000000000"
    sale_point: int | None = 5
    error: Exception | None = None
    on_enroll: Callable[[], None] | None = None
    calls: list[tuple[PortalCredentials, str]] = field(default_factory=list)

    def enroll(
        self,
        creds: PortalCredentials,
        *,
        real_name: str,
        cancel: CancelToken | None = None,
    ) -> EnrollmentResult:
        self.calls.append((creds, real_name))
        if cancel is not None:
            cancel.check()
        if self.error is not None:
            raise self.error
        if self.on_enroll is not None:
            self.on_enroll()
        return EnrollmentResult(alias=self.alias, sale_point=self.sale_point)


class InMemoryUserDirectory:
    def __init__(self, *users: UserRecord) -> None:
        self.users = {u.username: u for u in users}
        self.touched: list[str] = []
        self.patches: list[tuple[str, dict]] = []

    def get_user(self, username: str) -> UserRecord:
        try:
            return self.users[username]
        except KeyError as e:
            raise NotFoundError(f"User '{username}' not found") from e

    def update_user(self, username: str, **patch) -> None:
        user = self.get_user(username)
        self.patches.append((username, patch))
        self.users[username] = UserRecord(
            id=user.id,
            username=user.username,
            password=user.password,
            real_name=user.real_name,
            sale_point=patch.get("sale_point", user.sale_point),
            updated_at=user.updated_at,
        )

    def touch_updated_at(self, username: str) -> None:
        user = self.get_user(username)
        self.touched.append(username)
        self.users[username] = UserRecord(
            id=user.id,
            username=user.username,
            password=user.password,
            real_name=user.real_name,
            sale_point=user.sale_point,
            updated_at=datetime.now(timezone.utc),
        )


class InMemorySecretStore:
    def __init__(self, initial: dict[str, CredentialPair] | None = None) -> None:
        self.pairs: dict[str, CredentialPair] = dict(initial or {})
        self.reads = 0

    def write(self, user_id: str, pair: CredentialPair) -> None:
        self.pairs[user_id] = pair

    def read(self, user_id: str) -> CredentialPair:
        self.reads += 1
        try:
            return self.pairs[user_id]
        except KeyError as e:
            raise NotFoundError(f"No credential stored for user {user_id}") from e


# -------------------- Scriptable Playwright doubles --------------------


class FakeKeyboard:
    def __init__(self) -> None:
        self.pressed: list[str] = []

    def press(self, key: str) -> None:
        self.pressed.append(key)


@dataclass
class FakeDownload:
    suggested_filename: str = "signed.crt"
    content: str = "-----BEGIN CERTIFICATE-----\nFAKE\n-----END CERTIFICATE-----\n"

    def save_as(self, path) -> None:
        Path(path).write_text(self.content, encoding="utf-8")


class _DownloadInfo:
    def __init__(self, download: FakeDownload) -> None:
        self.value = download


class _ExpectDownload:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.info = _DownloadInfo(page.download)

    def __enter__(self) -> _DownloadInfo:
        return self.info

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None and self.page.download is None:
            raise PWTimeoutError("Timeout waiting for download")


@dataclass
class FakeButton:
    text: str
    visible: bool = True
    clicked: int = 0
    on_click: Callable[[], None] | None = None

    def is_visible(self) -> bool:
        return self.visible

    def inner_text(self) -> str:
        return self.text

    def scroll_into_view_if_needed(self) -> None:
        pass

    def click(self, **kwargs) -> None:
        self.clicked += 1
        if self.on_click is not None:
            self.on_click()


class FakeLocator:
    def __init__(self, items: list) -> None:
        self.items = items

    def count(self) -> int:
        return len(self.items)

    def nth(self, index: int):
        return self.items[index]


class FakeContext:
    """
    BrowserContext double: keeps "page" listeners and lets tests emit popups.

    Events queued with `queue_popup` are delivered on the next `pump()`, which
    FakePage.wait_for_timeout calls, the same way Playwright dispatches events
    while the sync API waits.
    """

    def __init__(self) -> None:
        self.listeners: dict[str, list] = {}
        self.pending: deque = deque()

    def on(self, event: str, callback) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback) -> None:
        self.listeners.get(event, []).remove(callback)

    def listener_count(self, event: str = "page") -> int:
        return len(self.listeners.get(event, []))

    def emit(self, event: str, payload) -> None:
        for callback in list(self.listeners.get(event, [])):
            callback(payload)

    def queue_popup(self, page) -> None:
        self.pending.append(page)

    def pump(self) -> None:
        while self.pending:
            self.emit("page", self.pending.popleft())


class FakePage:
    """
    Page double for stage tests.

    Scripting:
    - `missing`: selectors that never appear (wait_for_selector/click raise PWTimeoutError).
    - `texts`: selector -> textContent for eval_on_selector.
    - `lists`: selector -> list returned by eval_on_selector_all.
    - `modal_buttons`: buttons inside the `.modal-content` container (locator()).
    - `popups_on_click`: selector -> pages queued on the context, one per click.
    - `download`: what expect_download yields (None = download never starts).
    """

    def __init__(
        self,
        context: FakeContext | None = None,
        *,
        url: str = "about:blank",
        opener: FakePage | None = None,
        missing: set[str] | None = None,
        texts: dict[str, str] | None = None,
        lists: dict[str, list] | None = None,
        modal_buttons: list[FakeButton] | None = None,
        popups_on_click: dict[str, list[FakePage]] | None = None,
        download: FakeDownload | None = None,
    ) -> None:
        self.context = context or FakeContext()
        self.url = url
        self._opener = opener
        self.missing = set(missing or ())
        self.texts = dict(texts or {})
        self.lists = dict(lists or {})
        self.modal_buttons = list(modal_buttons or [])
        self.popups_on_click = {k: list(v) for k, v in (popups_on_click or {}).items()}
        self.download = download

        self.keyboard = FakeKeyboard()
        self.actions: list[tuple] = []
        self.waited_ms = 0

    def opener(self):
        return self._opener

    def _require(self, selector: str) -> None:
        if selector in self.missing:
            raise PWTimeoutError(f"Timeout waiting for {selector}")

    def clicks(self) -> list[str]:
        return [a[1] for a in self.actions if a[0] == "click"]

    def goto(self, url: str, **kwargs) -> None:
        self.url = url
        self.actions.append(("goto", url))

    def wait_for_load_state(self, state: str = "load", **kwargs) -> None:
        pass

    def wait_for_selector(self, selector: str, **kwargs):
        self._require(selector)
        return object()

    def wait_for_timeout(self, ms: int) -> None:
        self.waited_ms += ms
        self.context.pump()

    def click(self, selector: str, **kwargs) -> None:
        self._require(selector)
        self.actions.append(("click", selector))
        queued = self.popups_on_click.get(selector)
        if queued:
            self.context.queue_popup(queued.pop(0))

    def fill(self, selector: str, value: str) -> None:
        self._require(selector)
        self.actions.append(("fill", selector, value))

    def type(self, selector: str, text: str, **kwargs) -> None:
        self._require(selector)
        self.actions.append(("type", selector, text))

    def select_option(self, selector: str, value=None, *, label=None, **kwargs) -> list[str]:
        self._require(selector)
        self.actions.append(("select", selector, label if label is not None else value))
        return [label if label is not None else value]

    def set_input_files(self, selector: str, files) -> None:
        self._require(selector)
        self.actions.append(("upload", selector, str(files)))

    def eval_on_selector(self, selector: str, expression: str, *args):
        self._require(selector)
        return self.texts.get(selector)

    def eval_on_selector_all(self, selector: str, expression: str, *args):
        return self.lists.get(selector, [])

    def locator(self, selector: str) -> FakeLocator:
        if selector == ".modal-content":
            return FakeLocator([object()] if self.modal_buttons else [])
        if selector.startswith(".modal-content "):
            return FakeLocator(self.modal_buttons)
        return FakeLocator([])

    def expect_download(self, **kwargs) -> _ExpectDownload:
        return _ExpectDownload(self)

    def bring_to_front(self) -> None:
        pass

    def screenshot(self, **kwargs) -> None:
        pass


class FakeBrowser:
    """PlaywrightBrowser double: hands out a scripted landing page and counts close()."""

    def __init__(self, landing: FakePage, *, fail_launch: Exception | None = None) -> None:
        self.landing = landing
        self.fail_launch = fail_launch
        self.launched = 0
        self.closed = 0
        self.screenshots: list[str] = []

    @property
    def context(self) -> FakeContext:
        return self.landing.context

    def launch(self) -> FakePage:
        self.launched += 1
        if self.fail_launch is not None:
            raise self.fail_launch
        return self.landing

    def screenshot(self, page, tag: str):
        self.screenshots.append(tag)
        return None

    def close(self) -> None:
        self.closed += 1
