from math import ceil
from typing import Generic, List, Optional, Tuple, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class Page(BaseModel, Generic[T]):
    """List response: one page of already-scoped items."""

    items: List[T]
    pagination: PaginationMeta


class FieldError(BaseModel):
    field: str
    message: str


class PageParams:
    """Query parameters for list endpoints: page >= 1, limit 1-100."""

    default_limit = 20

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1, le=100),
    ) -> None:
        self.page = page
        self.limit = limit or self.default_limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class AttendancePageParams(PageParams):
    default_limit = 50


async def paginate(db: AsyncSession, stmt, params: PageParams) -> Tuple[list, PaginationMeta]:
    """Run a scoped select one page at a time. stmt must already carry the branch filter."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar_one()
    result = await db.execute(stmt.offset(params.offset).limit(params.limit))
    items = list(result.scalars().unique().all())
    meta = PaginationMeta(
        page=params.page,
        limit=params.limit,
        total=total,
        pages=ceil(total / params.limit) if total else 0,
    )
    return items, meta
