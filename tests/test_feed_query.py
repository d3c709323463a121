"""
Feed query builder tests: construction-time validation of feed filters
and the short-circuit behaviour of ``build_plan``.
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.exceptions import InvalidInputError
from conduit.models import Article, User
from conduit.services.feed_query import (
    AuthorFilter,
    CursorFilter,
    FavoritedByFilter,
    FeedOrder,
    FeedQuery,
    SearchFilter,
    TagFilter,
    build_plan,
)
from conduit.services.relationships import FAVORITES


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def test_from_params_builds_one_filter_per_parameter():
    cursor = datetime(2024, 5, 1, tzinfo=timezone.utc)
    query = FeedQuery.from_params(tag="python", author="ann", search="async", cursor=cursor)
    assert query.filters == (
        TagFilter("python"),
        AuthorFilter("ann"),
        SearchFilter("async"),
        CursorFilter(cursor),
    )
    assert query.order is FeedOrder.DESC
    assert query.cursor == cursor


def test_from_params_without_filters():
    query = FeedQuery.from_params()
    assert query.filters == ()
    assert query.cursor is None


def test_from_params_treats_empty_strings_as_unfiltered():
    query = FeedQuery.from_params(tag="", author="", favorited="", search="")
    assert query.filters == ()

    with pytest.raises(InvalidInputError):
        FeedQuery.from_params(tag="   ")


def test_order_accepts_plain_strings():
    assert FeedQuery(order="TOP").order is FeedOrder.TOP


def test_unknown_order_is_rejected():
    with pytest.raises(InvalidInputError):
        FeedQuery(order="SIDEWAYS")


@pytest.mark.parametrize("make", [
    lambda: TagFilter("   "),
    lambda: AuthorFilter(""),
    lambda: FavoritedByFilter(" "),
    lambda: SearchFilter(""),
])
def test_blank_text_filters_are_rejected(make):
    with pytest.raises(InvalidInputError):
        make()


def test_text_filters_are_stripped():
    assert TagFilter("  rust ").tag == "rust"


def test_duplicate_filter_kinds_are_rejected():
    with pytest.raises(InvalidInputError):
        FeedQuery(filters=(TagFilter("a"), TagFilter("b")))


@pytest.mark.parametrize("order", [FeedOrder.ASC, FeedOrder.TOP])
def test_cursor_requires_desc_order(order):
    cursor = CursorFilter(datetime(2024, 1, 1, tzinfo=timezone.utc))
    with pytest.raises(InvalidInputError):
        FeedQuery(filters=(cursor,), order=order)


# ---------------------------------------------------------------------------
# build_plan
# ---------------------------------------------------------------------------

async def _create_user(db: AsyncSession, username: str) -> User:
    user = User(username=username, email=f"{username}@example.com")
    db.add(user)
    await db.flush()
    return user


@pytest.mark.asyncio
async def test_unknown_author_short_circuits(db_session: AsyncSession):
    plan = await build_plan(db_session, FeedQuery(filters=(AuthorFilter("nobody"),)))
    assert plan.is_empty


@pytest.mark.asyncio
async def test_unknown_favoriter_short_circuits(db_session: AsyncSession):
    plan = await build_plan(db_session, FeedQuery(filters=(FavoritedByFilter("nobody"),)))
    assert plan.is_empty


@pytest.mark.asyncio
async def test_user_without_favorites_short_circuits(db_session: AsyncSession):
    await _create_user(db_session, "picky")
    plan = await build_plan(db_session, FeedQuery(filters=(FavoritedByFilter("picky"),)))
    assert plan.is_empty


@pytest.mark.asyncio
async def test_resolved_filters_produce_predicates(db_session: AsyncSession):
    author = await _create_user(db_session, "writer")
    fan = await _create_user(db_session, "fan")
    article = Article(
        slug="a-1", title="A", description="d", body="b", image="i",
        tag_list=["x"], author_id=author.id,
    )
    db_session.add(article)
    await db_session.flush()
    await FAVORITES.add(db_session, fan.id, article.id)

    query = FeedQuery(filters=(AuthorFilter("writer"), FavoritedByFilter("fan"), TagFilter("x")))
    plan = await build_plan(db_session, query)
    assert not plan.is_empty
    assert len(plan.predicates) == 3
    assert plan.has_cursor is False


@pytest.mark.asyncio
async def test_cursor_is_flagged_on_the_plan(db_session: AsyncSession):
    cursor = datetime(2024, 1, 1, tzinfo=timezone.utc)
    plan = await build_plan(db_session, FeedQuery(filters=(CursorFilter(cursor),)))
    assert plan.has_cursor is True


@pytest.mark.asyncio
@pytest.mark.parametrize("order", list(FeedOrder))
async def test_every_ordering_ends_with_id_tie_break(db_session: AsyncSession, order):
    plan = await build_plan(db_session, FeedQuery(order=order))
    assert len(plan.order_by) == 2
    assert "articles.id" in str(plan.order_by[-1])
