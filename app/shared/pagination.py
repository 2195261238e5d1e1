"""Offset pagination shared by the list endpoints."""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel, computed_field
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class PaginationParams(BaseModel):
    limit: int
    offset: int


def get_pagination_params(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> PaginationParams:
    """FastAPI dependency for pagination params."""
    return PaginationParams(limit=limit, offset=offset)


class Page(BaseModel, Generic[T]):
    """One page of a listing plus the size of the full result."""

    items: list[T]
    total: int
    limit: int
    offset: int

    @computed_field
    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def build_page(items: list[T], total: int, params: PaginationParams) -> Page[T]:
    return Page(items=items, total=total, limit=params.limit, offset=params.offset)


async def fetch_page(
    session: AsyncSession,
    stmt: Select[tuple[T]],
    *order_by: Any,
    limit: int,
    offset: int,
) -> tuple[list[T], int]:
    """Count the filtered statement, then load one ordered slice of it."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = int((await session.scalar(count_stmt)) or 0)
    if total == 0 or offset >= total:
        return [], total

    items = (await session.scalars(stmt.order_by(*order_by).limit(limit).offset(offset))).all()
    return list(items), total
