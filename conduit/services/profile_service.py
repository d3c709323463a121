"""
Profile service: users, public profiles and the follow graph.

Follow / unfollow go through the counter service so ``followers_count`` on
the followed user and ``followee_count`` on the follower always move
together with the ``follows`` row.
"""
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.config import settings
from conduit.exceptions import NotFoundError
from conduit.models import User
from conduit.schemas import UserCreate
from conduit.services.counters import FOLLOW, toggle_membership
from conduit.services.relationships import FOLLOWS


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def profile_to_dict(user: User, following: bool = False) -> dict:
    """Serialise a User as a public profile, as seen by some viewer."""
    return {
        "username": user.username,
        "bio": user.bio,
        "image": user.image,
        "followers": user.followers_count,
        "followee": user.followee_count,
        "following": following,
    }


def _user_to_dict(user: User) -> dict:
    """Serialise a User for its owner (includes the email address)."""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "bio": user.bio,
        "image": user.image,
        "followers": user.followers_count,
        "followee": user.followee_count,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def get_user_by_username_or_404(db: AsyncSession, username: str) -> User:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("Profile not found")
    return user


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_user(db: AsyncSession, data: UserCreate) -> dict:
    """
    Create a new user and return its serialised dict.

    Email and username uniqueness is enforced by the database; the router
    translates the resulting ``IntegrityError`` into a 409.
    """
    user = User(
        username=data.username,
        email=data.email,
        bio=data.bio,
        image=data.image,
    )
    db.add(user)
    await db.flush()
    return _user_to_dict(user)


async def get_current_user(db: AsyncSession, user_id: int) -> dict:
    return _user_to_dict(await get_user_or_404(db, user_id))


async def get_profile(db: AsyncSession, username: str, viewer_id: int | None = None) -> dict:
    user = await get_user_by_username_or_404(db, username)
    following = False
    if viewer_id is not None:
        following = await FOLLOWS.contains(db, viewer_id, user.id)
    return profile_to_dict(user, following)


async def search_profiles(
    db: AsyncSession, search: str | None = None, viewer_id: int | None = None
) -> list[dict]:
    """
    Return up to ``PROFILE_SEARCH_LIMIT`` profiles whose username or bio
    contains *search* (case-insensitive); all profiles when it is empty.
    """
    q = select(User).order_by(User.username).limit(settings.PROFILE_SEARCH_LIMIT)
    needle = (search or "").strip().lower()
    if needle:
        q = q.where(
            or_(
                func.lower(User.username).contains(needle, autoescape=True),
                func.lower(User.bio).contains(needle, autoescape=True),
            )
        )
    users = (await db.execute(q)).scalars().all()

    followed: set[int] = set()
    if viewer_id is not None:
        followed = await FOLLOWS.targets_among(db, viewer_id, (u.id for u in users))
    return [profile_to_dict(u, u.id in followed) for u in users]


async def toggle_follow(
    db: AsyncSession, viewer_id: int, target_username: str, add: bool
) -> dict:
    """
    Follow (*add* True) or unfollow *target_username* on behalf of the viewer.

    Idempotent: repeating the call leaves the graph and both counters as
    they were.  Following yourself raises ``InvalidInputError``.
    """
    viewer = await get_user_or_404(db, viewer_id)
    target = await get_user_by_username_or_404(db, target_username)

    await toggle_membership(db, FOLLOW, viewer.id, target.id, add)

    await db.refresh(target)
    await db.refresh(viewer)
    return profile_to_dict(target, following=add)
