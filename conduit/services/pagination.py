"""
Look-ahead pagination.

A page of ``limit`` rows is served by fetching ``limit + 1``: the extra row
is never returned, its presence alone answers "is there another page?"
without a COUNT query.

Cursor and offset paging are alternate strategies.  When the plan carries a
``created_at`` cursor the cursor predicate does all the skipping and the
page index is ignored; otherwise the page index becomes an OFFSET.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Sequence, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from conduit.config import settings
from conduit.models import Article
from conduit.services.feed_query import QueryPlan

T = TypeVar("T")


@dataclass(frozen=True)
class PageRequest:
    limit: int
    page: int = 1

    @classmethod
    def build(cls, limit: int | None = None, page: int | None = None) -> "PageRequest":
        """
        Normalise caller input: *limit* defaults to ``FEED_PAGE_SIZE`` and is
        clamped to ``[1, FEED_MAX_PAGE_SIZE]``; a missing or non-positive
        *page* means the first page.
        """
        if limit is None:
            limit = settings.FEED_PAGE_SIZE
        limit = max(1, min(limit, settings.FEED_MAX_PAGE_SIZE))
        return cls(limit=limit, page=max(page or 1, 1))

    @property
    def fetch_size(self) -> int:
        return self.limit + 1

    def offset(self, has_cursor: bool = False) -> int:
        if has_cursor:
            return 0
        return max(self.page - 1, 0) * self.limit


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    has_more: bool = False


def split_lookahead(rows: Sequence[T], limit: int) -> Page[T]:
    """Trim a ``limit + 1`` fetch down to one page and flag whether more exist."""
    return Page(items=list(rows[:limit]), has_more=len(rows) == limit + 1)


async def fetch_page(
    db: AsyncSession, plan: QueryPlan, page_request: PageRequest
) -> Page[Article]:
    """Execute *plan* for one page.  An empty plan never reaches the database."""
    if plan.is_empty:
        return Page()

    q = (
        plan.statement()
        .offset(page_request.offset(plan.has_cursor))
        .limit(page_request.fetch_size)
    )
    result = await db.execute(q)
    rows = result.unique().scalars().all()
    return split_lookahead(rows, page_request.limit)
