from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select

from afip_enrollment.db.models import FacturacionUser
from afip_enrollment.db.repositories.base import BaseRepository
from afip_enrollment.utils.errors import NotFoundError


class UserRepository(BaseRepository):
    def create(
        self,
        *,
        username: str,
        password: str | None = None,
        real_name: str | None = None,
        category: str | None = None,
        sale_point: int | None = None,
        updated_at: datetime | None = None,
    ) -> FacturacionUser:
        user = FacturacionUser(
            username=username,
            password=password,
            real_name=real_name,
            category=category,
            sale_point=sale_point,
        )
        if updated_at is not None:
            user.updated_at = updated_at
        self.session.add(user)
        self.session.flush()
        return user

    def get_by_username(self, username: str) -> FacturacionUser:
        stmt = select(FacturacionUser).where(FacturacionUser.username == username)
        user = self.session.scalars(stmt).first()
        if not user:
            raise NotFoundError(f"User '{username}' not found")
        return user

    def list(self, limit: int = 100, offset: int = 0) -> list[FacturacionUser]:
        stmt = (
            select(FacturacionUser).order_by(FacturacionUser.id.asc()).limit(limit).offset(offset)
        )
        return list(self.session.scalars(stmt).all())

    def update(self, username: str, **fields) -> FacturacionUser:
        user = self.get_by_username(username)
        for k, v in fields.items():
            if hasattr(user, k):
                setattr(user, k, v)
        self.session.flush()
        return user

    def touch_updated_at(self, username: str, when: datetime | None = None) -> FacturacionUser:
        return self.update(username, updated_at=when or datetime.now(timezone.utc))
