"""Pagination utilities."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

T = TypeVar("T")


class PaginationParams(BaseModel):
    """Pagination parameters."""

    page: int = Field(default=1, ge=1, description="Page number (1-based)")
    limit: int = Field(default=20, ge=1, le=100, description="Items per page")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of items plus the numbers a client needs to fetch the rest."""

    items: list[T]
    total: int
    page: int
    limit: int
    has_next: bool
    has_prev: bool
    total_pages: int


async def paginate(db: AsyncSession, query: Select, pagination: PaginationParams) -> dict[str, Any]:
    """
    Run one page of a SQLAlchemy select.

    The query's own ``order_by`` decides what lands on each page, so callers
    must order by something stable.

    Args:
        db: Database session
        query: SQLAlchemy select query
        pagination: Pagination parameters

    Returns:
        Dictionary with the page's rows and pagination info
    """
    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0
    total_pages = (total + pagination.limit - 1) // pagination.limit

    result = await db.execute(query.offset(pagination.offset).limit(pagination.limit))

    return {
        "items": list(result.scalars().all()),
        "total": total,
        "page": pagination.page,
        "limit": pagination.limit,
        "has_next": pagination.page < total_pages,
        "has_prev": pagination.page > 1,
        "total_pages": total_pages,
    }
