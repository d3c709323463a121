"""
Tag ledger: distinct tags and how often they have been used.

Counts only ever go up: article deletion and tag-list edits leave them
untouched, so ``count`` reads as "times this tag was submitted on a new
article" rather than "articles currently carrying it".
"""
from __future__ import annotations

from collections import Counter

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.cache import cache
from conduit.config import settings
from conduit.database import conflict_aware_insert
from conduit.models import Tag


def normalize_tags(tag_list: list[str]) -> list[str]:
    """Strip whitespace and drop blank entries, preserving order and repeats."""
    return [t.strip() for t in tag_list if t and t.strip()]


async def upsert_tags(db: AsyncSession, tag_list: list[str]) -> None:
    """
    Add one use per occurrence in *tag_list* to the ledger.

    Existing tags are incremented in place and unknown tags are created
    with their occurrence count, in a single atomic upsert per distinct tag
    so concurrent article creations never lose an increment.
    """
    occurrences = Counter(normalize_tags(tag_list))
    if not occurrences:
        return

    table = Tag.__table__
    for name, uses in occurrences.items():
        stmt = conflict_aware_insert(db, table).values(tag=name, count=uses)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.tag],
            set_={"count": table.c.count + stmt.excluded.count},
        )
        await db.execute(stmt)

    await cache.invalidate_tags()


async def top_tags(db: AsyncSession, limit: int | None = None) -> list[str]:
    """Return the most used tag names, most popular first (cache-aside)."""
    limit = limit or settings.TOP_TAGS_LIMIT
    cached = await cache.get_top_tags(limit)
    if cached is not None:
        return cached

    q = select(Tag.tag).order_by(Tag.count.desc(), Tag.tag.asc()).limit(limit)
    tags = list((await db.execute(q)).scalars().all())

    await cache.store_top_tags(limit, tags)
    return tags
