"""
Social graph endpoints:
  POST   /follows/{user_id}                         — follow a user
  DELETE /follows/{user_id}                         — unfollow
  GET    /follows/{user_id}/followers               — who follows user_id
  GET    /follows/{user_id}/following               — who user_id follows
  GET    /follows/{user_id}/status                  — relationship with the caller
  DELETE /follows/{user_id}/followers/{follower_id} — remove a follower (owner only)
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import cache_keys as ck
from social_api.clients.redis_client import cached
from social_api.config import settings
from social_api.database import get_db
from social_api.dependencies import Page, get_current_user_id, get_notifier
from social_api.models import Follow, NotificationType, User
from social_api.schemas import FollowListResponse, FollowResponse, FollowStatus, UserResponse
from social_api.services.invalidation import Mutation, invalidate
from social_api.services.notifications import NotificationService

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


async def _get_edge(db: AsyncSession, follower_id: str, followee_id: str):
    return await db.get(Follow, {"follower_id": follower_id, "followee_id": followee_id})


async def _require_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/{user_id}", response_model=FollowResponse)
async def follow_user(
    user_id: str,
    follower_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """Create a follower → followee edge. Following twice is a no-op."""
    with tracer.start_as_current_span("follow_user"):
        if user_id == follower_id:
            raise HTTPException(status_code=400, detail="Cannot follow yourself")
        await _require_user(db, user_id)

        if await _get_edge(db, follower_id, user_id):
            return FollowResponse(follower_id=follower_id, followee_id=user_id, created=False)

        db.add(Follow(follower_id=follower_id, followee_id=user_id))
        await db.commit()
        logger.info("User %s followed %s", follower_id, user_id)

        await notifier.notify(
            db, recipient_id=user_id, actor_id=follower_id, kind=NotificationType.FOLLOW
        )
        await invalidate(Mutation.FOLLOWED, follower_id=follower_id, followee_id=user_id)
        return FollowResponse(follower_id=follower_id, followee_id=user_id, created=True)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_user(
    user_id: str,
    follower_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("unfollow_user"):
        edge = await _get_edge(db, follower_id, user_id)
        if not edge:
            raise HTTPException(status_code=404, detail="Not following this user")
        await db.delete(edge)
        await db.commit()
        logger.info("User %s unfollowed %s", follower_id, user_id)

        await invalidate(Mutation.UNFOLLOWED, follower_id=follower_id, followee_id=user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{user_id}/followers/{follower_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_follower(
    user_id: str,
    follower_id: str,
    caller_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if caller_id != user_id:
        raise HTTPException(status_code=403, detail="You can only remove your own followers")
    edge = await _get_edge(db, follower_id, user_id)
    if not edge:
        raise HTTPException(status_code=404, detail="This user does not follow you")
    await db.delete(edge)
    await db.commit()

    await invalidate(Mutation.FOLLOWER_REMOVED, follower_id=follower_id, followee_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{user_id}/followers", response_model=FollowListResponse)
async def list_followers(
    user_id: str,
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
):
    async def load() -> FollowListResponse:
        stmt = (
            select(User)
            .join(Follow, Follow.follower_id == User.user_id)
            .where(Follow.followee_id == user_id)
            .order_by(Follow.created_at.desc())
            .offset(page.offset)
            .limit(page.limit + 1)
        )
        rows = list((await db.execute(stmt)).scalars().all())
        return FollowListResponse(
            user_id=user_id,
            users=[UserResponse.model_validate(u) for u in rows[: page.limit]],
            has_more=len(rows) > page.limit,
        )

    key = ck.FOLLOWERS.key(user_id, page.limit, page.offset)
    return await cached(key, settings.cache_ttl_follow_list, load)


@router.get("/{user_id}/following", response_model=FollowListResponse)
async def list_following(
    user_id: str,
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
):
    async def load() -> FollowListResponse:
        stmt = (
            select(User)
            .join(Follow, Follow.followee_id == User.user_id)
            .where(Follow.follower_id == user_id)
            .order_by(Follow.created_at.desc())
            .offset(page.offset)
            .limit(page.limit + 1)
        )
        rows = list((await db.execute(stmt)).scalars().all())
        return FollowListResponse(
            user_id=user_id,
            users=[UserResponse.model_validate(u) for u in rows[: page.limit]],
            has_more=len(rows) > page.limit,
        )

    key = ck.FOLLOWING.key(user_id, page.limit, page.offset)
    return await cached(key, settings.cache_ttl_follow_list, load)


@router.get("/{user_id}/status", response_model=FollowStatus)
async def follow_status(
    user_id: str,
    caller_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    is_following = await _get_edge(db, caller_id, user_id) is not None
    is_followed_by = await _get_edge(db, user_id, caller_id) is not None
    return FollowStatus(
        is_following=is_following,
        is_followed_by=is_followed_by,
        is_mutual=is_following and is_followed_by,
    )
