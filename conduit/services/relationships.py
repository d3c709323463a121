"""
Relationship sets: many-to-many membership over an association table.

A ``RelationshipSet`` names a table and its (source, target) columns and
offers idempotent ``add`` / ``remove`` plus membership reads.  It holds no
state of its own: every call goes through the caller's ``AsyncSession`` so
membership lives in the store and shares the request's transaction.

``add`` and ``remove`` report whether a row actually changed; the counter
service uses that to decide whether a denormalized counter must move.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import Column, Table, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.database import conflict_aware_insert
from conduit.models import bookmarks, favorites, follows


@dataclass(frozen=True)
class RelationshipSet:
    name: str
    table: Table
    source_key: str
    target_key: str

    @property
    def source(self) -> Column:
        return self.table.c[self.source_key]

    @property
    def target(self) -> Column:
        return self.table.c[self.target_key]

    def _pair(self, source_id: int, target_id: int):
        return (self.source == source_id) & (self.target == target_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def contains(self, db: AsyncSession, source_id: int, target_id: int) -> bool:
        q = select(self.source).where(self._pair(source_id, target_id))
        return (await db.execute(q)).first() is not None

    async def targets_of(self, db: AsyncSession, source_id: int) -> set[int]:
        q = select(self.target).where(self.source == source_id)
        return set((await db.execute(q)).scalars().all())

    async def targets_among(
        self, db: AsyncSession, source_id: int, target_ids: Iterable[int]
    ) -> set[int]:
        """Return the subset of *target_ids* that *source_id* is linked to."""
        candidates = set(target_ids)
        if not candidates:
            return set()
        q = select(self.target).where(
            self.source == source_id, self.target.in_(sorted(candidates))
        )
        return set((await db.execute(q)).scalars().all())

    async def count_for_target(self, db: AsyncSession, target_id: int) -> int:
        q = select(func.count()).select_from(self.table).where(self.target == target_id)
        return (await db.execute(q)).scalar_one()

    async def count_for_source(self, db: AsyncSession, source_id: int) -> int:
        q = select(func.count()).select_from(self.table).where(self.source == source_id)
        return (await db.execute(q)).scalar_one()

    # ------------------------------------------------------------------
    # Mutations (idempotent)
    # ------------------------------------------------------------------

    async def add(self, db: AsyncSession, source_id: int, target_id: int) -> bool:
        """
        Insert the pair unless it already exists.

        Returns True only when this call created the row.  A concurrent
        insert of the same pair loses on the primary key and reports False
        instead of raising.
        """
        stmt = (
            conflict_aware_insert(db, self.table)
            .values({self.source_key: source_id, self.target_key: target_id})
            .on_conflict_do_nothing(index_elements=[self.source_key, self.target_key])
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    async def remove(self, db: AsyncSession, source_id: int, target_id: int) -> bool:
        """Delete the pair; returns True only when a row was removed."""
        result = await db.execute(delete(self.table).where(self._pair(source_id, target_id)))
        return result.rowcount == 1


FAVORITES = RelationshipSet("favorites", favorites, "user_id", "article_id")
BOOKMARKS = RelationshipSet("bookmarks", bookmarks, "user_id", "article_id")
FOLLOWS = RelationshipSet("follows", follows, "follower_id", "followee_id")
