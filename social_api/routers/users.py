"""
User endpoints:
  POST /users           — create a user profile
  GET  /users/online    — users with a live realtime connection
  GET  /users/{id}      — fetch a profile with social counts and presence
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import cache_keys as ck
from social_api.clients.redis_client import cached
from social_api.config import settings
from social_api.database import get_db
from social_api.dependencies import get_presence
from social_api.models import Follow, Post, User
from social_api.realtime.presence import PresenceRegistry
from social_api.schemas import OnlineUsersResponse, UserCreate, UserProfile, UserResponse

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a user row. Credentials live with the upstream auth service."""
    with tracer.start_as_current_span("create_user"):
        existing = await db.execute(select(User).where(User.username == body.username))
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Username '{body.username}' already taken",
            )

        user = User(username=body.username, display_name=body.display_name)
        db.add(user)
        await db.commit()
        logger.info("Created user %s (id=%s)", user.username, user.user_id)
        return user


@router.get("/online", response_model=OnlineUsersResponse)
async def online_users(presence: PresenceRegistry = Depends(get_presence)):
    user_ids = sorted(presence.online_users())
    return OnlineUsersResponse(user_ids=user_ids, count=len(user_ids))


@router.get("/{user_id}", response_model=UserProfile)
async def get_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    presence: PresenceRegistry = Depends(get_presence),
):
    async def load() -> UserProfile:
        user = await db.get(User, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")

        async def count(stmt) -> int:
            return (await db.execute(stmt)).scalar_one()

        return UserProfile(
            user_id=user.user_id,
            username=user.username,
            display_name=user.display_name,
            created_at=user.created_at,
            followers_count=await count(
                select(func.count()).select_from(Follow).where(Follow.followee_id == user_id)
            ),
            following_count=await count(
                select(func.count()).select_from(Follow).where(Follow.follower_id == user_id)
            ),
            posts_count=await count(
                select(func.count())
                .select_from(Post)
                .where(Post.user_id == user_id, Post.is_deleted.is_(False))
            ),
        )

    profile = await cached(ck.USER.key(user_id), settings.cache_ttl_user_profile, load)
    return {**profile, "is_online": presence.is_online(user_id)}
