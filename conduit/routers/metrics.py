from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.cache import cache
from conduit.database import get_db
from conduit.models import Article, Comment, Tag, User
from conduit.schemas import MetricsResponse, ReconcileResponse
from conduit.services import counters

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])

_TOTALS = {
    "total_articles": Article,
    "total_comments": Comment,
    "total_users": User,
    "total_tags": Tag,
}

@router.get("", response_model=MetricsResponse)
async def get_metrics(db: AsyncSession = Depends(get_db)):
    """Row totals, any counter that disagrees with its relationship set, cache stats."""
    q = select(*(
        select(func.count()).select_from(model).scalar_subquery().label(name)
        for name, model in _TOTALS.items()
    ))
    totals = (await db.execute(q)).mappings().one()
    drift = await counters.find_counter_drift(db)
    return MetricsResponse(
        **totals,
        counter_drift=[asdict(d) for d in drift],
        cache_info=cache.stats,
    )

@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(db: AsyncSession = Depends(get_db)):
    """Rewrite drifted counters from their relationship sets."""
    return ReconcileResponse(repaired=await counters.reconcile_counters(db))
