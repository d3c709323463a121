"""
Comment service: comments on an article.

A comment's article and author are fixed at creation; only its author may
delete it.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from conduit.exceptions import NotFoundError, UnauthorizedError
from conduit.models import Article, Comment
from conduit.schemas import CommentCreate
from conduit.services.profile_service import get_user_or_404, profile_to_dict

logger = logging.getLogger(__name__)


def _comment_to_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "body": comment.body,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
        "updated_at": comment.updated_at.isoformat() if comment.updated_at else None,
        "author": profile_to_dict(comment.author),
    }


async def _get_article_id_or_404(db: AsyncSession, slug: str) -> int:
    result = await db.execute(select(Article.id).where(Article.slug == slug))
    article_id = result.scalar_one_or_none()
    if article_id is None:
        raise NotFoundError("Article not found")
    return article_id


async def list_comments(db: AsyncSession, slug: str) -> list[dict]:
    """Return the article's comments, oldest first."""
    article_id = await _get_article_id_or_404(db, slug)
    q = (
        select(Comment)
        .where(Comment.article_id == article_id)
        .options(joinedload(Comment.author))
        .order_by(Comment.created_at, Comment.id)
    )
    result = await db.execute(q)
    return [_comment_to_dict(c) for c in result.unique().scalars().all()]


async def add_comment(
    db: AsyncSession, viewer_id: int, slug: str, data: CommentCreate
) -> dict:
    """Append a comment by the viewer to the article identified by *slug*."""
    author = await get_user_or_404(db, viewer_id)
    article_id = await _get_article_id_or_404(db, slug)

    comment = Comment(body=data.body, article_id=article_id, author=author)
    db.add(comment)
    await db.flush()
    return _comment_to_dict(comment)


async def delete_comment(db: AsyncSession, viewer_id: int, slug: str, comment_id: int) -> None:
    """
    Delete comment *comment_id* on the article *slug*.

    Raises ``NotFoundError`` when the comment does not belong to that
    article and ``UnauthorizedError`` when the viewer did not write it.
    """
    article_id = await _get_article_id_or_404(db, slug)
    comment = await db.get(Comment, comment_id)
    if comment is None or comment.article_id != article_id:
        raise NotFoundError("Comment not found")
    if comment.author_id != viewer_id:
        raise UnauthorizedError("Only the author can delete this comment")

    await db.delete(comment)
    await db.flush()
    logger.info("Comment deleted id=%s article=%s", comment_id, article_id)
