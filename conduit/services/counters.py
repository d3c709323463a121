"""
Counter consistency service.

Denormalized counters (``Article.favorites_count``, ``User.followers_count``,
``User.followee_count``) are derived state: each one equals the number of
rows of a relationship set pointing at (or out of) its row.  This module is
the only code path that moves them.

Design notes
------------
- Each relationship type is described once by a ``CountedRelationship``
  binding; every toggle endpoint goes through ``toggle_membership``.
- Membership changes are decided by the store, not by a prior read: the
  conflict-ignoring INSERT / the DELETE report whether a row changed, and
  only then are the counters moved with ``SET c = c + delta``.  Two
  concurrent identical toggles therefore move a counter once.
- Pair and counter mutations run on the caller's session, so they commit
  (or roll back) together with the request transaction.
- ``find_counter_drift`` / ``reconcile_counters`` re-derive every counter by
  summation and report or repair any divergence.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from conduit.exceptions import InvalidInputError
from conduit.models import Article, User
from conduit.services.relationships import BOOKMARKS, FAVORITES, FOLLOWS, RelationshipSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CountedRelationship:
    """A relationship set plus the counters that summarize it."""

    relation: RelationshipSet
    # Counter on the row the pair points *at* (e.g. the favorited article).
    target_counter: InstrumentedAttribute | None = None
    # Counter on the row the pair points *from* (e.g. the follower).
    source_counter: InstrumentedAttribute | None = None
    allow_self: bool = True


FAVORITE = CountedRelationship(FAVORITES, target_counter=Article.favorites_count)
BOOKMARK = CountedRelationship(BOOKMARKS)
FOLLOW = CountedRelationship(
    FOLLOWS,
    target_counter=User.followers_count,
    source_counter=User.followee_count,
    allow_self=False,
)

COUNTED_RELATIONSHIPS: tuple[CountedRelationship, ...] = (FAVORITE, BOOKMARK, FOLLOW)


async def _bump(db: AsyncSession, counter: InstrumentedAttribute, row_id: int, delta: int) -> None:
    entity = counter.class_
    stmt = (
        update(entity)
        .where(entity.id == row_id)
        .values({counter.key: counter + delta})
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)


async def toggle_membership(
    db: AsyncSession,
    counted: CountedRelationship,
    source_id: int,
    target_id: int,
    add: bool,
) -> bool:
    """
    Move the pair (*source_id*, *target_id*) into or out of the relationship
    set and keep its counters in step.

    Returns True when membership changed, False when it was already in the
    requested state (no counter is touched in that case).

    Raises ``InvalidInputError`` for a self-referencing pair on relationships
    that forbid it; nothing is mutated.

    Callers holding ORM instances of the counted rows must refresh them
    afterwards: counters are updated in SQL, not in the identity map.
    """
    relation = counted.relation
    if not counted.allow_self and source_id == target_id:
        raise InvalidInputError(f"A {relation.name} entry cannot point at its own source.")

    if add:
        changed = await relation.add(db, source_id, target_id)
    else:
        changed = await relation.remove(db, source_id, target_id)

    if not changed:
        logger.debug(
            "%s %s no-op source=%s target=%s",
            relation.name, "add" if add else "remove", source_id, target_id,
        )
        return False

    delta = 1 if add else -1
    bumps = []
    if counted.target_counter is not None:
        bumps.append((counted.target_counter, target_id))
    if counted.source_counter is not None:
        bumps.append((counted.source_counter, source_id))
    # Lock counted rows in a fixed order (table, id): opposite follows must not deadlock.
    bumps.sort(key=lambda b: (b[0].class_.__tablename__, b[1]))
    for counter, row_id in bumps:
        await _bump(db, counter, row_id, delta)

    logger.info(
        "%s %s source=%s target=%s",
        relation.name, "added" if add else "removed", source_id, target_id,
    )
    return True


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CounterDrift:
    counter: str
    row_id: int
    stored: int
    expected: int


def _derivations():
    """Yield (counter, relationship column that points at the counted row)."""
    for counted in COUNTED_RELATIONSHIPS:
        if counted.target_counter is not None:
            yield counted.target_counter, counted.relation.target
        if counted.source_counter is not None:
            yield counted.source_counter, counted.relation.source


def _expected_count(counter: InstrumentedAttribute, link_column):
    entity = counter.class_
    return (
        select(func.count())
        .select_from(link_column.table)
        .where(link_column == entity.id)
        .correlate(entity)
        .scalar_subquery()
    )


async def find_counter_drift(db: AsyncSession) -> list[CounterDrift]:
    """Return every counter whose stored value differs from its re-derived count."""
    drift: list[CounterDrift] = []
    for counter, link_column in _derivations():
        entity = counter.class_
        expected = _expected_count(counter, link_column)
        q = (
            select(entity.id, counter, expected)
            .where(counter != expected)
            .order_by(entity.id)
        )
        for row_id, stored, wanted in (await db.execute(q)).all():
            drift.append(
                CounterDrift(
                    counter=f"{entity.__tablename__}.{counter.key}",
                    row_id=row_id,
                    stored=stored,
                    expected=wanted,
                )
            )
    return drift


async def reconcile_counters(db: AsyncSession) -> int:
    """
    Rewrite every drifted counter from its relationship set.

    Returns the number of rows corrected.  Tag usage counts are not
    reconciled: they are an increment-only ledger, not a set cardinality.
    """
    repaired = 0
    for counter, link_column in _derivations():
        entity = counter.class_
        stmt = (
            update(entity)
            .where(counter != _expected_count(counter, link_column))
            .values({counter.key: _expected_count(counter, link_column)})
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount:
            logger.warning(
                "Reconciled %d drifted %s.%s value(s)",
                result.rowcount, entity.__tablename__, counter.key,
            )
        repaired += result.rowcount
    return repaired
