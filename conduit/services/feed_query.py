"""
Feed query builder.

A ``FeedQuery`` is a closed set of filter variants plus an ordering mode,
validated when it is constructed.  ``build_plan`` turns it into a
``QueryPlan``: the SQL predicates and ORDER BY clauses for the article
SELECT.  References that cannot be resolved (an unknown author, a user
with no favorites) produce the *empty* plan instead of an error, so the
feed answers "no matching content" rather than "bad request".
"""
from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from conduit.exceptions import InvalidInputError
from conduit.models import Article, User
from conduit.services.relationships import BOOKMARKS, FAVORITES, FOLLOWS


class FeedOrder(str, enum.Enum):
    ASC = "ASC"    # oldest first
    DESC = "DESC"  # newest first
    TOP = "TOP"    # most favorited first


# ---------------------------------------------------------------------------
# Filter variants
# ---------------------------------------------------------------------------

def _require_text(kind: str, value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidInputError(f"{kind} filter must not be blank.")
    return value


@dataclass(frozen=True)
class TagFilter:
    tag: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "tag", _require_text("tag", self.tag))


@dataclass(frozen=True)
class AuthorFilter:
    username: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "username", _require_text("author", self.username))


@dataclass(frozen=True)
class FavoritedByFilter:
    username: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "username", _require_text("favorited", self.username))


@dataclass(frozen=True)
class SearchFilter:
    text: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "text", _require_text("search", self.text))


@dataclass(frozen=True)
class CursorFilter:
    """Only articles created strictly before ``before``."""

    before: datetime


@dataclass(frozen=True)
class FollowedByFilter:
    """Articles written by authors that ``user_id`` follows."""

    user_id: int


@dataclass(frozen=True)
class BookmarkedByFilter:
    user_id: int


FeedFilter = Union[
    TagFilter,
    AuthorFilter,
    FavoritedByFilter,
    SearchFilter,
    CursorFilter,
    FollowedByFilter,
    BookmarkedByFilter,
]


@dataclass(frozen=True)
class FeedQuery:
    filters: tuple[FeedFilter, ...] = ()
    order: FeedOrder = FeedOrder.DESC

    def __post_init__(self) -> None:
        object.__setattr__(self, "filters", tuple(self.filters))
        try:
            object.__setattr__(self, "order", FeedOrder(self.order))
        except ValueError:
            raise InvalidInputError(f"Unknown feed order {self.order!r}.") from None

        kinds = [type(f) for f in self.filters]
        if len(kinds) != len(set(kinds)):
            raise InvalidInputError("Each filter kind may appear at most once.")
        if self.cursor is not None and self.order is not FeedOrder.DESC:
            raise InvalidInputError("A cursor can only be combined with DESC ordering.")

    @classmethod
    def from_params(
        cls,
        *,
        tag: str | None = None,
        author: str | None = None,
        favorited: str | None = None,
        search: str | None = None,
        cursor: datetime | None = None,
        order: FeedOrder | str = FeedOrder.DESC,
    ) -> "FeedQuery":
        """
        Build a query from optional request parameters.  None or an empty
        string means "not filtered", as with an empty query parameter.
        """
        filters: list[FeedFilter] = []
        if tag:
            filters.append(TagFilter(tag))
        if author:
            filters.append(AuthorFilter(author))
        if favorited:
            filters.append(FavoritedByFilter(favorited))
        if search:
            filters.append(SearchFilter(search))
        if cursor is not None:
            filters.append(CursorFilter(cursor))
        return cls(filters=tuple(filters), order=order)

    @property
    def cursor(self) -> datetime | None:
        for f in self.filters:
            if isinstance(f, CursorFilter):
                return f.before
        return None


# ---------------------------------------------------------------------------
# Query plan
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QueryPlan:
    predicates: tuple = ()
    order_by: tuple = ()
    has_cursor: bool = False
    is_empty: bool = False

    @classmethod
    def empty(cls) -> "QueryPlan":
        return cls(is_empty=True)

    def statement(self):
        """The article SELECT (author eager-loaded), without LIMIT/OFFSET."""
        return (
            select(Article)
            .options(joinedload(Article.author))
            .where(*self.predicates)
            .order_by(*self.order_by)
        )


_ORDERINGS = {
    FeedOrder.ASC: (Article.created_at.asc(),),
    FeedOrder.DESC: (Article.created_at.desc(),),
    FeedOrder.TOP: (Article.favorites_count.desc(),),
}


def order_clauses(order: FeedOrder) -> tuple:
    # id breaks ties so pages never overlap or skip rows between requests.
    return _ORDERINGS[order] + (Article.id.asc(),)


async def _resolve_user_id(db: AsyncSession, username: str) -> int | None:
    q = select(User.id).where(User.username == username)
    return (await db.execute(q)).scalar_one_or_none()


async def build_plan(db: AsyncSession, query: FeedQuery) -> QueryPlan:
    """
    Translate *query* into predicates and ordering.

    Read-only.  Returns ``QueryPlan.empty()`` as soon as a filter references
    something that cannot match.
    """
    predicates = []
    for f in query.filters:
        if isinstance(f, TagFilter):
            # Match the tag as it appears inside the stored JSON text.
            needle = json.dumps(f.tag.lower(), ensure_ascii=False)[1:-1]
            serialized = func.lower(cast(Article.tag_list, String))
            predicates.append(serialized.contains(needle, autoescape=True))

        elif isinstance(f, AuthorFilter):
            author_id = await _resolve_user_id(db, f.username)
            if author_id is None:
                return QueryPlan.empty()
            predicates.append(Article.author_id == author_id)

        elif isinstance(f, FavoritedByFilter):
            user_id = await _resolve_user_id(db, f.username)
            if user_id is None:
                return QueryPlan.empty()
            favorite_ids = await FAVORITES.targets_of(db, user_id)
            if not favorite_ids:
                return QueryPlan.empty()
            predicates.append(Article.id.in_(sorted(favorite_ids)))

        elif isinstance(f, SearchFilter):
            needle = f.text.lower()
            predicates.append(
                or_(
                    func.lower(Article.title).contains(needle, autoescape=True),
                    func.lower(Article.description).contains(needle, autoescape=True),
                )
            )

        elif isinstance(f, CursorFilter):
            predicates.append(Article.created_at < f.before)

        elif isinstance(f, FollowedByFilter):
            followed = select(FOLLOWS.target).where(FOLLOWS.source == f.user_id)
            predicates.append(Article.author_id.in_(followed))

        elif isinstance(f, BookmarkedByFilter):
            bookmarked = select(BOOKMARKS.target).where(BOOKMARKS.source == f.user_id)
            predicates.append(Article.id.in_(bookmarked))

    return QueryPlan(
        predicates=tuple(predicates),
        order_by=order_clauses(query.order),
        has_cursor=query.cursor is not None,
    )
