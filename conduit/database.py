"""
Engine, session factory and the dialect-aware INSERT used by every
idempotent write (relationship toggles, tag upserts).
"""
import json

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from conduit.config import settings
from conduit.middleware import install_query_counter


class Base(DeclarativeBase):
    pass


def _json_dumps(value) -> str:
    # Stored JSON text is matched as a substring (tag filter); keep it unescaped.
    return json.dumps(value, ensure_ascii=False)


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine with the per-request query counter attached."""
    kwargs.setdefault("json_serializer", _json_dumps)
    engine = create_async_engine(url, **kwargs)
    install_query_counter(engine)
    return engine


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Serialisers read attributes after commit; keep them loaded.
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG, pool_pre_ping=True)
async_session = build_sessionmaker(engine)


async def get_db():
    """
    One session and one transaction per request.  Pair inserts/deletes and
    the counter updates they trigger commit together or not at all.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def conflict_aware_insert(db: AsyncSession, table: Table):
    """
    ``INSERT`` for *table* that accepts ``on_conflict_do_nothing`` and
    ``on_conflict_do_update`` on the dialect *db* is bound to.
    """
    dialect = db.get_bind().dialect.name
    try:
        factory = _UPSERT_INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"No conflict-aware INSERT available for dialect {dialect!r}") from None
    return factory(table)
