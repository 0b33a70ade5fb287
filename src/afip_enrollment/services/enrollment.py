from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from afip_enrollment.services.freshness import FreshnessGate
from afip_enrollment.services.portal_client import PortalClient, PortalCredentials
from afip_enrollment.services.staging import StagingArea
from afip_enrollment.services.stores import CredentialPair, SecretStore, UserDirectory
from afip_enrollment.utils.cancellation import CancelToken
from afip_enrollment.utils.errors import InvalidArgumentError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrollmentOutcome:
    username: str
    credentials: CredentialPair
    sale_point: int
    reused: bool
    alias: str | None = None


class EnrollmentService:
    """
    What it does:
    - Orchestrates one enrollment: freshness check, portal run, user record updates
      and credential persistence.

    Why it matters:
    - The portal session only drives the browser; everything that touches the user
      directory, the secret store and the staged files lives here.

    Behavior:
    - Fresh users with a sales point get their stored pair back without a browser.
    - Otherwise the download directory is reset, the CSR and its private key must be
      staged, and a new PortalClient (one browser) runs the workflow.
    - After a run, alias and sales point must both be known or InvalidArgumentError is raised.
    - The pair is stored first; only then is updated_at touched and the sales point
      patched. A failed read leaves the user stale, so the next job re-runs the portal.
    - The pair is read back from the store and returned.
    """

    def __init__(
        self,
        *,
        users: UserDirectory,
        secrets: SecretStore,
        portal_factory: Callable[[], PortalClient],
        staging: StagingArea,
        gate: FreshnessGate | None = None,
    ) -> None:
        self.users = users
        self.secrets = secrets
        self.portal_factory = portal_factory
        self.staging = staging
        self.gate = gate or FreshnessGate(secrets)

    def enroll(self, username: str, *, cancel: CancelToken | None = None) -> EnrollmentOutcome:
        if not username or not username.strip():
            raise InvalidArgumentError("username is required")

        user = self.users.get_user(username)

        decision = self.gate.check(user)
        if decision.reuse:
            assert decision.credentials is not None and decision.sale_point is not None
            logger.info("Reusing stored credential for %s (sale point %s)", username, decision.sale_point)
            return EnrollmentOutcome(
                username=username,
                credentials=decision.credentials,
                sale_point=decision.sale_point,
                reused=True,
            )

        if not user.password:
            raise InvalidArgumentError(f"User '{username}' has no portal password")

        self.staging.reset_downloads()
        self.staging.require_csr()
        self.staging.require_private_key()

        portal = self.portal_factory()
        result = portal.enroll(
            PortalCredentials(username=user.username, password=user.password),
            real_name=user.real_name or "",
            cancel=cancel,
        )

        if not result.alias or not result.sale_point:
            logger.error(
                "Alias or sales point missing after run. Alias: %s, SalePoint: %s",
                result.alias,
                result.sale_point,
            )
            raise InvalidArgumentError(
                "Alias or sales point not found. "
                f"Alias: {result.alias or 'not set'}, Sales point: {result.sale_point or 'not set'}"
            )

        logger.info("Portal run completed. Alias: %s, SalePoint: %s", result.alias, result.sale_point)

        pair = CredentialPair(
            private_key_pem=self.staging.read_private_key(),
            certificate_pem=self.staging.read_signed_certificate(),
        )
        self.secrets.write(str(user.id), pair)

        # A fresh user with a sales point must already have a stored pair.
        self.users.touch_updated_at(username)
        self.users.update_user(username, sale_point=result.sale_point)

        stored = self.secrets.read(str(user.id))

        return EnrollmentOutcome(
            username=username,
            credentials=stored,
            sale_point=result.sale_point,
            reused=False,
            alias=result.alias,
        )
