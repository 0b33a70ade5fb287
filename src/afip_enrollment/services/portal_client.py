from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from afip_enrollment.utils.cancellation import CancelToken


@dataclass(frozen=True)
class PortalCredentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"PortalCredentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class EnrollmentResult:
    alias: str | None
    sale_point: int | None


class PortalClient(Protocol):
    """
    What it does:
    - Defines the API the enrollment service expects from a portal automation client.

    Why it matters:
    - The service stays stable while the implementation can change
      (Fake for tests, Playwright for real use).

    Behavior:
    - enroll() runs the whole portal workflow for one taxpayer in its own browser:
      login, certificate alias, service relation, sales point.
    - Returns the alias it uploaded and the sales point it found or created.
    - Raises on any stage failure; the browser is closed either way.
    """

    def enroll(
        self,
        creds: PortalCredentials,
        *,
        real_name: str,
        cancel: CancelToken | None = None,
    ) -> EnrollmentResult: ...
