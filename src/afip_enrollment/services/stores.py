from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy.orm import Session

from afip_enrollment.db.engine import get_session
from afip_enrollment.db.models import FacturacionUser
from afip_enrollment.db.repositories.credentials import CredentialRepository
from afip_enrollment.db.repositories.users import UserRepository

SessionScope = Callable[[], AbstractContextManager[Session]]


@dataclass(frozen=True)
class UserRecord:
    id: int
    username: str
    password: str | None
    real_name: str | None
    sale_point: int | None
    updated_at: datetime

    @classmethod
    def from_model(cls, user: FacturacionUser) -> UserRecord:
        return cls(
            id=user.id,
            username=user.username,
            password=user.password,
            real_name=user.real_name,
            sale_point=user.sale_point,
            updated_at=user.updated_at,
        )


@dataclass(frozen=True)
class CredentialPair:
    private_key_pem: str
    certificate_pem: str

    def __repr__(self) -> str:
        return "CredentialPair(private_key_pem='***', certificate_pem=...)"


class UserDirectory(Protocol):
    def get_user(self, username: str) -> UserRecord: ...

    def update_user(self, username: str, **patch) -> None: ...

    def touch_updated_at(self, username: str) -> None: ...


class SecretStore(Protocol):
    def write(self, user_id: str, pair: CredentialPair) -> None: ...

    def read(self, user_id: str) -> CredentialPair: ...


class SqlUserDirectory:
    """
    What it does:
    - UserDirectory backed by the facturacion_users table.

    Behavior:
    - Every call opens its own session scope (commit on success).
    - Returns detached UserRecord copies, safe to use after the session closed.
    """

    def __init__(self, session_scope: SessionScope = get_session) -> None:
        self._session_scope = session_scope

    def get_user(self, username: str) -> UserRecord:
        with self._session_scope() as session:
            return UserRecord.from_model(UserRepository(session).get_by_username(username))

    def update_user(self, username: str, **patch) -> None:
        with self._session_scope() as session:
            UserRepository(session).update(username, **patch)

    def touch_updated_at(self, username: str) -> None:
        with self._session_scope() as session:
            UserRepository(session).touch_updated_at(username)


class SqlSecretStore:
    """SecretStore backed by the user_credentials table, keyed by the user id as text."""

    def __init__(self, session_scope: SessionScope = get_session) -> None:
        self._session_scope = session_scope

    def write(self, user_id: str, pair: CredentialPair) -> None:
        with self._session_scope() as session:
            CredentialRepository(session).upsert(
                user_id=user_id,
                private_key_pem=pair.private_key_pem,
                certificate_pem=pair.certificate_pem,
            )

    def read(self, user_id: str) -> CredentialPair:
        with self._session_scope() as session:
            row = CredentialRepository(session).get(user_id)
            return CredentialPair(
                private_key_pem=row.private_key_pem,
                certificate_pem=row.certificate_pem,
            )
