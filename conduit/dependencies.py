from datetime import datetime

from fastapi import Depends, Header, HTTPException, Query, status

from conduit.services.feed_query import FeedOrder
from conduit.services.pagination import PageRequest


class FeedPagination:
    """
    Reusable FastAPI dependency that parses look-ahead pagination
    parameters shared by every article feed.

    Attributes
    ----------
    limit:
        Page size.  Values above ``FEED_MAX_PAGE_SIZE`` are clamped rather
        than rejected.
    p:
        1-based page index, ignored when a cursor is supplied.
    cursor:
        ``created_at`` of the last article already seen; the next page holds
        strictly older articles.
    """

    def __init__(
        self,
        limit: int | None = Query(None, description="Page size (clamped to [1, 20])."),
        p: int | None = Query(None, description="Page index (1-based)."),
        cursor: datetime | None = Query(
            None, description="Return articles created strictly before this instant."
        ),
    ) -> None:
        self.cursor = cursor
        self.page_request = PageRequest.build(limit=limit, page=p)


class FeedFilters:
    """Query-string filters for the public article list."""

    def __init__(
        self,
        tag: str | None = Query(None, description="Substring of a tag, case-insensitive."),
        author: str | None = Query(None, description="Author username."),
        favorited: str | None = Query(None, description="Username whose favorites to list."),
        search: str | None = Query(None, description="Substring of title or description."),
        order: FeedOrder = Query(FeedOrder.DESC, description="ASC, DESC or TOP."),
    ) -> None:
        self.tag = tag
        self.author = author
        self.favorited = favorited
        self.search = search
        self.order = order


# ---------------------------------------------------------------------------
# Viewer identity
# ---------------------------------------------------------------------------
#
# Authentication happens upstream; it forwards the authenticated user id in
# the X-User-Id header.

async def get_viewer_id(x_user_id: int | None = Header(default=None)) -> int | None:
    return x_user_id


async def require_viewer_id(viewer_id: int | None = Depends(get_viewer_id)) -> int:
    if viewer_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    return viewer_id
