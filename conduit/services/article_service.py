"""
Article service: business logic for the Article aggregate.

Design notes
------------
- Feeds are built in three steps: ``build_plan`` (filters and ordering),
  ``fetch_page`` (one look-ahead SELECT, no COUNT) and ``_hydrate``
  (viewer-relative flags).  Hydration costs at most three extra queries
  per page regardless of its size, each restricted to the ids on the page.
- The author is eager-loaded with ``joinedload``; ``unique()`` is applied
  to every result that uses it.
- Favorites and bookmarks are toggled through the counter service so
  ``favorites_count`` never drifts from the ``favorites`` table.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency in the router layer.
"""
import logging
import re
import secrets
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from conduit.config import settings
from conduit.exceptions import NotFoundError, UnauthorizedError
from conduit.models import Article, Comment
from conduit.schemas import ArticleCreate, ArticleUpdate
from conduit.services.counters import BOOKMARK, FAVORITE, toggle_membership
from conduit.services.feed_query import (
    BookmarkedByFilter,
    CursorFilter,
    FeedQuery,
    FollowedByFilter,
    build_plan,
)
from conduit.services.pagination import PageRequest, fetch_page
from conduit.services.profile_service import get_user_or_404, profile_to_dict
from conduit.services.relationships import BOOKMARKS, FAVORITES, FOLLOWS
from conduit.services.tag_ledger import normalize_tags, top_tags, upsert_tags

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_SPACE_RE = re.compile(r"[\s_]+")
_SLUG_DASH_RE = re.compile(r"-+")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def slugify(text: str) -> str:
    """Return a URL-safe, lowercase slug derived from *text*."""
    text = _SLUG_STRIP_RE.sub("", text.lower().strip())
    text = _SLUG_SPACE_RE.sub("-", text)
    return _SLUG_DASH_RE.sub("-", text).strip("-")


def random_suffix() -> str:
    """Base-36 rendering of a random number below 36**6 (one to six characters)."""
    n = secrets.randbelow(36 ** 6)
    digits = ""
    while True:
        n, rem = divmod(n, 36)
        digits = _BASE36[rem] + digits
        if n == 0:
            return digits


def _article_to_dict(
    article: Article,
    favorited: bool = False,
    bookmarked: bool = False,
    following: bool = False,
) -> dict:
    return {
        "id": article.id,
        "slug": article.slug,
        "title": article.title,
        "description": article.description,
        "body": article.body,
        "tag_list": list(article.tag_list or []),
        "image": article.image,
        "created_at": article.created_at.isoformat() if article.created_at else None,
        "updated_at": article.updated_at.isoformat() if article.updated_at else None,
        "favorites_count": article.favorites_count,
        "favorited": favorited,
        "bookmarked": bookmarked,
        "author": profile_to_dict(article.author, following),
    }


async def _hydrate(
    db: AsyncSession, articles: list[Article], viewer_id: int | None
) -> list[dict]:
    """Serialise *articles* with the viewer's favorited/bookmarked/following flags."""
    if viewer_id is None or not articles:
        return [_article_to_dict(a) for a in articles]

    article_ids = [a.id for a in articles]
    favorited = await FAVORITES.targets_among(db, viewer_id, article_ids)
    bookmarked = await BOOKMARKS.targets_among(db, viewer_id, article_ids)
    following = await FOLLOWS.targets_among(db, viewer_id, {a.author_id for a in articles})
    return [
        _article_to_dict(
            a,
            favorited=a.id in favorited,
            bookmarked=a.id in bookmarked,
            following=a.author_id in following,
        )
        for a in articles
    ]


async def _get_article_or_404(db: AsyncSession, slug: str) -> Article:
    q = select(Article).where(Article.slug == slug).options(joinedload(Article.author))
    article = (await db.execute(q)).unique().scalar_one_or_none()
    if article is None:
        raise NotFoundError("Article not found")
    return article


def _ensure_owner(article: Article, viewer_id: int) -> None:
    if article.author_id != viewer_id:
        raise UnauthorizedError("Only the author can modify this article")


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------

async def list_feed(
    db: AsyncSession,
    query: FeedQuery,
    page_request: PageRequest,
    viewer_id: int | None = None,
) -> dict:
    """
    Return one page of articles matching *query*.

    Unresolvable filter references (unknown author, user without favorites)
    yield ``{"articles": [], "has_more": False}``, never an error.
    """
    plan = await build_plan(db, query)
    page = await fetch_page(db, plan, page_request)
    return {
        "articles": await _hydrate(db, page.items, viewer_id),
        "has_more": page.has_more,
    }


def _personal_query(base_filter, cursor: datetime | None) -> FeedQuery:
    filters = [base_filter]
    if cursor is not None:
        filters.append(CursorFilter(cursor))
    return FeedQuery(filters=tuple(filters))


async def list_followed_feed(
    db: AsyncSession,
    viewer_id: int,
    page_request: PageRequest,
    cursor: datetime | None = None,
) -> dict:
    """Newest articles by the authors the viewer follows."""
    await get_user_or_404(db, viewer_id)
    query = _personal_query(FollowedByFilter(viewer_id), cursor)
    return await list_feed(db, query, page_request, viewer_id)


async def list_bookmarked(
    db: AsyncSession,
    viewer_id: int,
    page_request: PageRequest,
    cursor: datetime | None = None,
) -> dict:
    """Newest articles the viewer has bookmarked."""
    await get_user_or_404(db, viewer_id)
    query = _personal_query(BookmarkedByFilter(viewer_id), cursor)
    return await list_feed(db, query, page_request, viewer_id)


# ---------------------------------------------------------------------------
# Single article CRUD
# ---------------------------------------------------------------------------

async def get_article(db: AsyncSession, slug: str, viewer_id: int | None = None) -> dict:
    article = await _get_article_or_404(db, slug)
    return (await _hydrate(db, [article], viewer_id))[0]


async def create_article(db: AsyncSession, author_id: int, data: ArticleCreate) -> dict:
    """
    Create an article owned by *author_id* and record its tags in the ledger.

    The slug is ``slugify(title)`` plus a random base-36 suffix.  Collisions
    are not retried: the unique index rejects the insert instead.
    """
    author = await get_user_or_404(db, author_id)
    suffix = random_suffix()
    tags = normalize_tags(data.tag_list)

    article = Article(
        slug=f"{slugify(data.title) or 'article'}-{suffix}",
        title=data.title,
        description=data.description,
        body=data.body,
        tag_list=tags,
        image=data.image or settings.DEFAULT_ARTICLE_IMAGE_URL.format(seed=suffix),
        author=author,
    )
    db.add(article)
    await db.flush()
    await upsert_tags(db, tags)

    logger.info("Article created id=%s slug=%s author=%s", article.id, article.slug, author.id)
    return _article_to_dict(article)


async def update_article(
    db: AsyncSession, viewer_id: int, slug: str, data: ArticleUpdate
) -> dict:
    """
    Partially update an article owned by the viewer.

    Only fields explicitly sent are modified.  The slug stays stable so
    existing links keep working, and the tag ledger is left untouched.
    """
    article = await _get_article_or_404(db, slug)
    _ensure_owner(article, viewer_id)

    update_data = data.model_dump(exclude_unset=True, exclude_none=True)
    if "tag_list" in update_data:
        update_data["tag_list"] = normalize_tags(update_data["tag_list"])
    for field, value in update_data.items():
        setattr(article, field, value)

    await db.flush()
    return (await _hydrate(db, [article], viewer_id))[0]


async def delete_article(db: AsyncSession, viewer_id: int, slug: str) -> None:
    """
    Delete an article owned by the viewer together with its comments and
    its favorite/bookmark memberships.  Tag counts are not decremented.
    """
    article = await _get_article_or_404(db, slug)
    _ensure_owner(article, viewer_id)

    await db.execute(delete(Comment).where(Comment.article_id == article.id))
    await db.execute(delete(FAVORITES.table).where(FAVORITES.target == article.id))
    await db.execute(delete(BOOKMARKS.table).where(BOOKMARKS.target == article.id))
    await db.delete(article)
    await db.flush()
    logger.info("Article deleted id=%s slug=%s", article.id, slug)


# ---------------------------------------------------------------------------
# Favorites / bookmarks
# ---------------------------------------------------------------------------

async def _toggle(db: AsyncSession, counted, viewer_id: int, slug: str, add: bool) -> dict:
    viewer = await get_user_or_404(db, viewer_id)
    article = await _get_article_or_404(db, slug)

    await toggle_membership(db, counted, viewer.id, article.id, add)

    await db.refresh(article, ["favorites_count"])
    return (await _hydrate(db, [article], viewer.id))[0]


async def toggle_favorite(db: AsyncSession, viewer_id: int, slug: str, add: bool) -> dict:
    """Favorite (*add* True) or unfavorite an article; idempotent."""
    return await _toggle(db, FAVORITE, viewer_id, slug, add)


async def toggle_bookmark(db: AsyncSession, viewer_id: int, slug: str, add: bool) -> dict:
    """Bookmark (*add* True) or un-bookmark an article; idempotent."""
    return await _toggle(db, BOOKMARK, viewer_id, slug, add)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

async def list_tags(db: AsyncSession) -> list[str]:
    return await top_tags(db)
