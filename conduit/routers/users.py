import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.database import get_db
from conduit.dependencies import require_viewer_id
from conduit.schemas import UserCreate, UserResponse
from conduit.services import profile_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])

@router.post("", status_code=status.HTTP_201_CREATED, response_model=UserResponse)
async def register(data: UserCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await profile_service.create_user(db, data)
    except IntegrityError:
        logger.info("Registration rejected, duplicate username=%s", data.username)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this username or email already exists",
        )

@router.get("/me", response_model=UserResponse)
async def current_user(
    viewer_id: int = Depends(require_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    return await profile_service.get_current_user(db, viewer_id)
