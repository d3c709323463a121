"""
Feed service tests: filters, orderings, look-ahead pagination and
viewer-relative flags, exercised through ``article_service`` directly.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.models import Article, User
from conduit.services import article_service, profile_service
from conduit.services.feed_query import (
    AuthorFilter,
    CursorFilter,
    FavoritedByFilter,
    FeedOrder,
    FeedQuery,
    SearchFilter,
    TagFilter,
)
from conduit.services.pagination import PageRequest

BASE_TIME = datetime(2024, 3, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(db: AsyncSession, username: str) -> User:
    user = User(username=username, email=f"{username}@example.com")
    db.add(user)
    await db.flush()
    return user


async def _create_article(
    db: AsyncSession,
    author: User,
    n: int,
    title: str | None = None,
    description: str = "An article",
    tags: list[str] | None = None,
) -> Article:
    article = Article(
        slug=f"article-{n}",
        title=title or f"Article {n}",
        description=description,
        body="Body",
        image="https://example.com/img.png",
        tag_list=tags or [],
        author_id=author.id,
        created_at=BASE_TIME + timedelta(minutes=n),
    )
    db.add(article)
    await db.flush()
    return article


def _slugs(result: dict) -> list[str]:
    return [a["slug"] for a in result["articles"]]


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_look_ahead_pagination_with_cursor(db_session: AsyncSession):
    """25 articles: page one holds 20 and signals more; the cursor yields the last 5."""
    author = await _create_user(db_session, "ann")
    for n in range(25):
        await _create_article(db_session, author, n)

    first = await article_service.list_feed(db_session, FeedQuery(), PageRequest.build(limit=20))
    assert len(first["articles"]) == 20
    assert first["has_more"] is True
    assert first["articles"][0]["slug"] == "article-24"

    cursor = datetime.fromisoformat(first["articles"][19]["created_at"])
    rest = await article_service.list_feed(
        db_session, FeedQuery(filters=(CursorFilter(cursor),)), PageRequest.build(limit=20)
    )
    assert _slugs(rest) == [f"article-{n}" for n in range(4, -1, -1)]
    assert rest["has_more"] is False


@pytest.mark.asyncio
async def test_offset_pagination_second_page(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    for n in range(25):
        await _create_article(db_session, author, n)

    second = await article_service.list_feed(
        db_session, FeedQuery(), PageRequest.build(limit=20, page=2)
    )
    assert len(second["articles"]) == 5
    assert second["has_more"] is False


@pytest.mark.asyncio
async def test_cursor_takes_precedence_over_page_index(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    for n in range(10):
        await _create_article(db_session, author, n)

    cursor = BASE_TIME + timedelta(minutes=5)
    result = await article_service.list_feed(
        db_session,
        FeedQuery(filters=(CursorFilter(cursor),)),
        PageRequest.build(limit=3, page=9),
    )
    assert _slugs(result) == ["article-4", "article-3", "article-2"]
    assert result["has_more"] is True


@pytest.mark.asyncio
async def test_exactly_one_page_has_no_more(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    for n in range(20):
        await _create_article(db_session, author, n)

    result = await article_service.list_feed(db_session, FeedQuery(), PageRequest.build())
    assert len(result["articles"]) == 20
    assert result["has_more"] is False


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_asc_order_is_oldest_first(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    for n in range(3):
        await _create_article(db_session, author, n)

    result = await article_service.list_feed(
        db_session, FeedQuery(order=FeedOrder.ASC), PageRequest.build()
    )
    assert _slugs(result) == ["article-0", "article-1", "article-2"]


@pytest.mark.asyncio
async def test_top_order_ranks_by_favorites_then_id(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    fans = [await _create_user(db_session, f"fan{i}") for i in range(3)]
    a0 = await _create_article(db_session, author, 0)
    a1 = await _create_article(db_session, author, 1)
    await _create_article(db_session, author, 2)

    for fan in fans:
        await article_service.toggle_favorite(db_session, fan.id, a1.slug, add=True)
    await article_service.toggle_favorite(db_session, fans[0].id, a0.slug, add=True)

    result = await article_service.list_feed(
        db_session, FeedQuery(order=FeedOrder.TOP), PageRequest.build()
    )
    assert _slugs(result) == ["article-1", "article-0", "article-2"]
    assert [a["favorites_count"] for a in result["articles"]] == [3, 1, 0]


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_author_yields_empty_page(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    await _create_article(db_session, author, 0)

    result = await article_service.list_feed(
        db_session, FeedQuery(filters=(AuthorFilter("nonexistent-user"),)), PageRequest.build()
    )
    assert result == {"articles": [], "has_more": False}


@pytest.mark.asyncio
async def test_author_filter(db_session: AsyncSession):
    ann = await _create_user(db_session, "ann")
    bob = await _create_user(db_session, "bob")
    await _create_article(db_session, ann, 0)
    await _create_article(db_session, bob, 1)

    result = await article_service.list_feed(
        db_session, FeedQuery(filters=(AuthorFilter("bob"),)), PageRequest.build()
    )
    assert _slugs(result) == ["article-1"]
    assert result["articles"][0]["author"]["username"] == "bob"


@pytest.mark.asyncio
async def test_tag_filter_is_case_insensitive_substring(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    await _create_article(db_session, author, 0, tags=["Python", "web"])
    await _create_article(db_session, author, 1, tags=["rust"])
    await _create_article(db_session, author, 2, tags=[])
    await _create_article(db_session, author, 3, tags=["Café", "日本"])
    await _create_article(db_session, author, 4, tags=['say "hi"', "back\\slash"])

    result = await article_service.list_feed(
        db_session, FeedQuery(filters=(TagFilter("PYTH"),)), PageRequest.build()
    )
    assert _slugs(result) == ["article-0"]

    # Non-ASCII and JSON-escaped characters match as written.
    cases = [("café", "article-3"), ("日本", "article-3"), ('"hi"', "article-4"), ("k\\s", "article-4")]
    for tag, expected in cases:
        result = await article_service.list_feed(
            db_session, FeedQuery.from_params(tag=tag), PageRequest.build()
        )
        assert _slugs(result) == [expected], tag


@pytest.mark.asyncio
async def test_search_matches_title_or_description(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    await _create_article(db_session, author, 0, title="Async Python")
    await _create_article(db_session, author, 1, description="all about ASYNC io")
    await _create_article(db_session, author, 2, title="Gardening")

    result = await article_service.list_feed(
        db_session, FeedQuery(filters=(SearchFilter("async"),)), PageRequest.build()
    )
    assert _slugs(result) == ["article-1", "article-0"]


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    await _create_article(db_session, author, 0, title="100% coverage")
    await _create_article(db_session, author, 1, title="Plain")

    result = await article_service.list_feed(
        db_session, FeedQuery(filters=(SearchFilter("%"),)), PageRequest.build()
    )
    assert _slugs(result) == ["article-0"]


@pytest.mark.asyncio
async def test_favorited_by_filter(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    fan = await _create_user(db_session, "fan")
    a0 = await _create_article(db_session, author, 0)
    await _create_article(db_session, author, 1)
    await article_service.toggle_favorite(db_session, fan.id, a0.slug, add=True)

    result = await article_service.list_feed(
        db_session, FeedQuery(filters=(FavoritedByFilter("fan"),)), PageRequest.build()
    )
    assert _slugs(result) == ["article-0"]


@pytest.mark.asyncio
async def test_filters_combine_with_and(db_session: AsyncSession):
    ann = await _create_user(db_session, "ann")
    bob = await _create_user(db_session, "bob")
    await _create_article(db_session, ann, 0, tags=["python"])
    await _create_article(db_session, ann, 1, tags=["go"])
    await _create_article(db_session, bob, 2, tags=["python"])

    query = FeedQuery(filters=(AuthorFilter("ann"), TagFilter("python")))
    result = await article_service.list_feed(db_session, query, PageRequest.build())
    assert _slugs(result) == ["article-0"]


# ---------------------------------------------------------------------------
# Viewer flags
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_viewer_flags(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    viewer = await _create_user(db_session, "viewer")
    a0 = await _create_article(db_session, author, 0)
    await _create_article(db_session, author, 1)

    await article_service.toggle_favorite(db_session, viewer.id, a0.slug, add=True)
    await article_service.toggle_bookmark(db_session, viewer.id, a0.slug, add=True)
    await profile_service.toggle_follow(db_session, viewer.id, "ann", add=True)

    seen = await article_service.list_feed(db_session, FeedQuery(), PageRequest.build(), viewer.id)
    by_slug = {a["slug"]: a for a in seen["articles"]}
    assert by_slug["article-0"]["favorited"] is True
    assert by_slug["article-0"]["bookmarked"] is True
    assert by_slug["article-1"]["favorited"] is False
    assert by_slug["article-1"]["bookmarked"] is False
    assert all(a["author"]["following"] for a in seen["articles"])

    anonymous = await article_service.list_feed(db_session, FeedQuery(), PageRequest.build())
    for article in anonymous["articles"]:
        assert article["favorited"] is False
        assert article["bookmarked"] is False
        assert article["author"]["following"] is False


# ---------------------------------------------------------------------------
# Personal feeds
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_followed_feed_lists_followed_authors_only(db_session: AsyncSession):
    ann = await _create_user(db_session, "ann")
    bob = await _create_user(db_session, "bob")
    reader = await _create_user(db_session, "reader")
    await _create_article(db_session, ann, 0)
    await _create_article(db_session, bob, 1)
    await _create_article(db_session, ann, 2)

    empty = await article_service.list_followed_feed(db_session, reader.id, PageRequest.build())
    assert empty == {"articles": [], "has_more": False}

    await profile_service.toggle_follow(db_session, reader.id, "ann", add=True)
    result = await article_service.list_followed_feed(db_session, reader.id, PageRequest.build())
    assert _slugs(result) == ["article-2", "article-0"]

    older = await article_service.list_followed_feed(
        db_session, reader.id, PageRequest.build(), cursor=BASE_TIME + timedelta(minutes=2)
    )
    assert _slugs(older) == ["article-0"]


@pytest.mark.asyncio
async def test_bookmarked_list(db_session: AsyncSession):
    author = await _create_user(db_session, "ann")
    reader = await _create_user(db_session, "reader")
    a0 = await _create_article(db_session, author, 0)
    await _create_article(db_session, author, 1)
    await article_service.toggle_bookmark(db_session, reader.id, a0.slug, add=True)

    result = await article_service.list_bookmarked(db_session, reader.id, PageRequest.build())
    assert _slugs(result) == ["article-0"]
    assert result["articles"][0]["bookmarked"] is True
