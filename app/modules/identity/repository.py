"""Identity repository layer."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.enums import RoleEnum
from app.modules.identity.models import Role, User


class IdentityRepository:
    """DB operations for mirrored users and their roles."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_role_by_name(self, role_name: RoleEnum) -> Role | None:
        stmt = select(Role).where(Role.name == role_name)
        return await self.session.scalar(stmt)

    async def create_role(self, role_name: RoleEnum) -> Role:
        role = Role(name=role_name)
        self.session.add(role)
        await self.session.flush()
        return role

    async def get_user_by_email(self, email: str) -> User | None:
        stmt = select(User).options(selectinload(User.role)).where(User.email == email)
        return await self.session.scalar(stmt)

    async def get_user_by_id(self, user_id: UUID) -> User | None:
        stmt = select(User).options(selectinload(User.role)).where(User.id == user_id)
        return await self.session.scalar(stmt)

    async def create_user(
        self,
        email: str,
        full_name: str,
        timezone: str,
        role_id: UUID,
        user_id: UUID | None = None,
    ) -> User:
        """Insert a user; `user_id` pins the row to the provider's subject id."""
        user = User(email=email, full_name=full_name, timezone=timezone, role_id=role_id)
        if user_id is not None:
            user.id = user_id
        self.session.add(user)
        await self.session.flush()
        await self.session.refresh(user, attribute_names=["role"])
        return user

    async def update_user(self, user: User, **changes) -> User:
        for key, value in changes.items():
            setattr(user, key, value)
        await self.session.flush()
        return user

    async def list_active_users_by_role(self, role_name: RoleEnum) -> list[User]:
        stmt = (
            select(User)
            .join(User.role)
            .options(selectinload(User.role))
            .where(Role.name == role_name, User.is_active.is_(True))
            .order_by(User.created_at.asc())
        )
        return list((await self.session.scalars(stmt)).all())
