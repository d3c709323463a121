from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from conduit.database import get_db
from conduit.dependencies import get_viewer_id, require_viewer_id
from conduit.schemas import ProfileResponse
from conduit.services import profile_service

router = APIRouter(prefix="/api/v1/profiles", tags=["profiles"])

@router.get("", response_model=list[ProfileResponse])
async def search_profiles(
    search: str | None = Query(None, description="Substring of username or bio."),
    viewer_id: int | None = Depends(get_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await profile_service.search_profiles(db, search, viewer_id)

@router.get("/{username}", response_model=ProfileResponse)
async def get_profile(
    username: str,
    viewer_id: int | None = Depends(get_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await profile_service.get_profile(db, username, viewer_id)

@router.post("/{username}/follow", response_model=ProfileResponse)
async def follow_user(
    username: str,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await profile_service.toggle_follow(db, viewer_id, username, add=True)

@router.delete("/{username}/follow", response_model=ProfileResponse)
async def unfollow_user(
    username: str,
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await profile_service.toggle_follow(db, viewer_id, username, add=False)
