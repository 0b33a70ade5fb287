from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from afip_enrollment.services.stores import CredentialPair, SecretStore, UserRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=14)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps come back from SQLite / timestamp-without-tz columns; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_fresh(updated_at: datetime, *, now: datetime, ttl: timedelta = DEFAULT_TTL) -> bool:
    return _as_utc(now) - _as_utc(updated_at) < ttl


@dataclass(frozen=True)
class FreshnessDecision:
    reuse: bool
    credentials: CredentialPair | None = None
    sale_point: int | None = None


class FreshnessGate:
    """
    What it does:
    - Decides whether a user's stored credential can be reused instead of re-running the portal.

    Why it matters:
    - A full portal run takes minutes and the portal limits concurrent sessions.

    Behavior:
    - Reuse only when updated_at is younger than the TTL AND the user has a sales point.
    - On reuse the stored pair is read from the secret store; a missing pair raises
      NotFoundError instead of silently re-running the automation.
    - Anything else (stale, or no sales point yet) returns reuse=False.
    """

    def __init__(
        self,
        secrets: SecretStore,
        *,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.secrets = secrets
        self.ttl = ttl
        self._clock = clock

    def check(self, user: UserRecord) -> FreshnessDecision:
        now = self._clock()
        fresh = is_fresh(user.updated_at, now=now, ttl=self.ttl)
        logger.info(
            "Freshness for %s: updated_at=%s fresh=%s sale_point=%s",
            user.username,
            _as_utc(user.updated_at).isoformat(),
            fresh,
            user.sale_point,
        )

        if not fresh or not user.sale_point:
            return FreshnessDecision(reuse=False)

        pair = self.secrets.read(str(user.id))
        return FreshnessDecision(reuse=True, credentials=pair, sale_point=user.sale_point)
