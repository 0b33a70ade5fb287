from __future__ import annotations

from afip_enrollment.db.models import StoredCredential
from afip_enrollment.db.repositories.base import BaseRepository
from afip_enrollment.utils.errors import NotFoundError


class CredentialRepository(BaseRepository):
    def upsert(self, *, user_id: str, private_key_pem: str, certificate_pem: str) -> StoredCredential:
        """
        What it does:
        - Stores the key/certificate pair for a user, replacing any previous pair.

        Behavior:
        - Last writer wins; repeating the same write is harmless.
        """
        row = self.session.get(StoredCredential, user_id)
        if row is None:
            row = StoredCredential(user_id=user_id)
            self.session.add(row)

        row.private_key_pem = private_key_pem
        row.certificate_pem = certificate_pem
        self.session.flush()
        return row

    def get(self, user_id: str) -> StoredCredential:
        row = self.session.get(StoredCredential, user_id)
        if not row:
            raise NotFoundError(f"Credential for user {user_id} not found")
        return row
