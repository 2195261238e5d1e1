"""Resolution of callers authenticated by the external identity provider."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db_session
from app.core.enums import RoleEnum
from app.core.security import bearer_scheme, decode_token
from app.modules.identity.models import User
from app.modules.identity.repository import IdentityRepository
from app.modules.identity.schemas import UserPreferencesUpdate
from app.shared.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)

SELF_PROVISIONED_ROLES = frozenset({RoleEnum.STUDENT, RoleEnum.TUTOR})


class IdentityService:
    """Map bearer tokens to local users, creating the mirror row on first sight."""

    def __init__(self, repository: IdentityRepository) -> None:
        self.repository = repository

    async def ensure_default_roles(self) -> None:
        for role_name in (RoleEnum.STUDENT, RoleEnum.TUTOR, RoleEnum.ADMIN):
            role = await self.repository.get_role_by_name(role_name)
            if role is None:
                await self.repository.create_role(role_name)

    async def get_user_from_access_token(self, token: str) -> User:
        payload = decode_token(token)
        if payload.get("type") != "access":
            raise UnauthorizedException("Invalid access token")

        subject = payload.get("sub")
        if not subject:
            raise UnauthorizedException("Token subject is missing")

        try:
            user_id = UUID(str(subject))
        except ValueError as exc:
            raise UnauthorizedException("Token subject is malformed") from exc

        user = await self.repository.get_user_by_id(user_id)
        if user is None:
            user = await self._provision_from_claims(user_id, payload)
        if not user.is_active:
            raise UnauthorizedException("User is inactive")

        return user

    async def _provision_from_claims(self, user_id: UUID, claims: dict[str, Any]) -> User:
        """Create the local row for a provider account seen for the first time.

        Only student and tutor accounts are created this way; admins are seeded.
        """
        email = claims.get("email")
        if not email:
            raise UnauthorizedException("User not found")

        try:
            role_name = RoleEnum(claims.get("role") or RoleEnum.STUDENT)
        except ValueError as exc:
            raise UnauthorizedException("Unknown role claim") from exc
        if role_name not in SELF_PROVISIONED_ROLES:
            raise UnauthorizedException("Admin accounts cannot be provisioned from a token")

        if await self.repository.get_user_by_email(email) is not None:
            raise UnauthorizedException("Token subject does not match the account registered for this email")

        role = await self.repository.get_role_by_name(role_name)
        if role is None:
            role = await self.repository.create_role(role_name)

        user = await self.repository.create_user(
            email=email,
            full_name=str(claims.get("name") or ""),
            timezone=_claimed_timezone(claims.get("zoneinfo")),
            role_id=role.id,
            user_id=user_id,
        )
        logger.info("Provisioned %s %s from identity token", role_name, user.id)
        return user

    async def update_preferences(self, user: User, payload: UserPreferencesUpdate) -> User:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return user
        return await self.repository.update_user(user, **changes)


def _claimed_timezone(value: object) -> str:
    if isinstance(value, str) and value:
        try:
            ZoneInfo(value)
            return value
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Ignoring unknown zoneinfo claim %r", value)
    return "UTC"


async def get_identity_service(session: AsyncSession = Depends(get_db_session)) -> IdentityService:
    return IdentityService(IdentityRepository(session))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    service: IdentityService = Depends(get_identity_service),
) -> User:
    return await service.get_user_from_access_token(credentials.credentials)


def require_roles(*roles: RoleEnum):
    """Dependency factory for role-based access."""

    async def _checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role.name not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted for your role",
            )
        return current_user

    return _checker
