from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from conduit.database import get_db
from conduit.dependencies import FeedFilters, FeedPagination, get_viewer_id, require_viewer_id
from conduit.schemas import (
    ArticleCreate,
    ArticleResponse,
    ArticleUpdate,
    CommentCreate,
    CommentResponse,
    PaginatedArticles,
)
from conduit.services import article_service, comment_service
from conduit.services.feed_query import FeedQuery

router = APIRouter(prefix="/api/v1/articles", tags=["articles"])

# Fixed paths are declared before "/{slug}" so they are not captured by it.

@router.get("", response_model=PaginatedArticles)
async def list_articles(
    filters: FeedFilters = Depends(),
    pagination: FeedPagination = Depends(),
    viewer_id: int | None = Depends(get_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    query = FeedQuery.from_params(
        tag=filters.tag,
        author=filters.author,
        favorited=filters.favorited,
        search=filters.search,
        cursor=pagination.cursor,
        order=filters.order,
    )
    return await article_service.list_feed(db, query, pagination.page_request, viewer_id)

@router.get("/feed", response_model=PaginatedArticles)
async def followed_feed(
    pagination: FeedPagination = Depends(),
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.list_followed_feed(
        db, viewer_id, pagination.page_request, pagination.cursor
    )

@router.get("/bookmarked", response_model=PaginatedArticles)
async def bookmarked_articles(
    pagination: FeedPagination = Depends(),
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.list_bookmarked(
        db, viewer_id, pagination.page_request, pagination.cursor
    )

@router.get("/tags", response_model=list[str])
async def list_tags(db: AsyncSession = Depends(get_db)):
    return await article_service.list_tags(db)

@router.get("/{slug}", response_model=ArticleResponse)
async def get_article(
    slug: str,
    viewer_id: int | None = Depends(get_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_article(db, slug, viewer_id)

@router.post("", status_code=201, response_model=ArticleResponse)
async def create_article(
    data: ArticleCreate,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.create_article(db, viewer_id, data)

@router.put("/{slug}", response_model=ArticleResponse)
async def update_article(
    slug: str,
    data: ArticleUpdate,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.update_article(db, viewer_id, slug, data)

@router.delete("/{slug}", status_code=204)
async def delete_article(
    slug: str,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    await article_service.delete_article(db, viewer_id, slug)

@router.post("/{slug}/favorite", response_model=ArticleResponse)
async def favorite_article(
    slug: str,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.toggle_favorite(db, viewer_id, slug, add=True)

@router.delete("/{slug}/favorite", response_model=ArticleResponse)
async def unfavorite_article(
    slug: str,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.toggle_favorite(db, viewer_id, slug, add=False)

@router.post("/{slug}/bookmark", response_model=ArticleResponse)
async def bookmark_article(
    slug: str,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.toggle_bookmark(db, viewer_id, slug, add=True)

@router.delete("/{slug}/bookmark", response_model=ArticleResponse)
async def remove_bookmark(
    slug: str,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.toggle_bookmark(db, viewer_id, slug, add=False)

@router.get("/{slug}/comments", response_model=list[CommentResponse])
async def list_comments(slug: str, db: AsyncSession = Depends(get_db)):
    return await comment_service.list_comments(db, slug)

@router.post("/{slug}/comments", status_code=201, response_model=CommentResponse)
async def add_comment(
    slug: str,
    data: CommentCreate,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.add_comment(db, viewer_id, slug, data)

@router.delete("/{slug}/comments/{comment_id}", status_code=204)
async def delete_comment(
    slug: str,
    comment_id: int,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    await comment_service.delete_comment(db, viewer_id, slug, comment_id)
