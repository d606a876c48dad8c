"""
Notification service.

Creates per-recipient activity notifications, suppresses self-notifications
and duplicate like/follow notifications inside a trailing window, pushes
`notification:new` to the recipient's live connections, and keeps the
recipient's cached notification views fresh.

Comments, replies, messages and mentions are never window-deduplicated:
each one is a distinct event worth surfacing.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from opentelemetry import trace
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import cache_keys as ck
from social_api.clients.redis_client import cached
from social_api.config import settings
from social_api.exceptions import NotFoundError
from social_api.models import Notification, NotificationType, utcnow
from social_api.realtime.delivery import DeliveryRouter
from social_api.schemas import NotificationListResponse, NotificationResponse
from social_api.services.invalidation import Mutation, invalidate
from social_api.telemetry import NOTIFICATIONS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

WINDOW_DEDUPED = frozenset({NotificationType.LIKE, NotificationType.FOLLOW})


def to_response(notification: Notification) -> NotificationResponse:
    actor = notification.actor
    return NotificationResponse(
        notification_id=notification.notification_id,
        user_id=notification.user_id,
        type=notification.type,
        actor_id=notification.actor_id,
        actor_username=actor.username if actor else None,
        actor_display_name=actor.display_name if actor else None,
        post_id=notification.post_id,
        comment_id=notification.comment_id,
        message=notification.message,
        is_read=notification.is_read,
        created_at=notification.created_at,
    )


class NotificationService:
    def __init__(
        self,
        router: DeliveryRouter,
        clock: Callable[[], datetime] = utcnow,
        dedup_window: Optional[timedelta] = None,
    ):
        self.router = router
        self.clock = clock
        self.dedup_window = dedup_window or timedelta(
            hours=settings.notification_dedup_window_hours
        )

    # ── Creation ──────────────────────────────────────────────────────────

    async def notify(
        self,
        db: AsyncSession,
        *,
        recipient_id: str,
        actor_id: str,
        kind: NotificationType,
        post_id: Optional[str] = None,
        comment_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Optional[NotificationResponse]:
        """
        Create and push a notification, or return None when it is suppressed.

        Called after the triggering write has been committed, so failures
        here are logged and swallowed rather than failing that write.
        """
        kind = NotificationType(kind)
        with tracer.start_as_current_span("notifications.notify") as span:
            span.set_attribute("notification.type", kind.value)
            try:
                if recipient_id == actor_id:
                    NOTIFICATIONS_TOTAL.labels(type=kind.value, outcome="suppressed").inc()
                    return None

                now = self.clock()
                if kind in WINDOW_DEDUPED and await self._recent_exists(
                    db, recipient_id, actor_id, kind, post_id, comment_id, now
                ):
                    NOTIFICATIONS_TOTAL.labels(type=kind.value, outcome="suppressed").inc()
                    logger.debug(
                        "Suppressed duplicate %s notification %s → %s", kind.value, actor_id, recipient_id
                    )
                    return None

                notification = Notification(
                    user_id=recipient_id,
                    type=kind.value,
                    actor_id=actor_id,
                    post_id=post_id,
                    comment_id=comment_id,
                    message=message,
                    created_at=now,
                )
                db.add(notification)
                await db.commit()
                await db.refresh(notification, ["actor"])
                response = to_response(notification)
            except Exception:
                logger.exception(
                    "Failed to create %s notification for %s", kind.value, recipient_id
                )
                await db.rollback()
                return None

            NOTIFICATIONS_TOTAL.labels(type=kind.value, outcome="created").inc()
            self.router.deliver(recipient_id, "notification:new", response)
            await invalidate(Mutation.NOTIFICATION_CREATED, recipient_id=recipient_id)
            return response

    async def _recent_exists(
        self,
        db: AsyncSession,
        recipient_id: str,
        actor_id: str,
        kind: NotificationType,
        post_id: Optional[str],
        comment_id: Optional[str],
        now: datetime,
    ) -> bool:
        stmt = select(Notification.notification_id).where(
            Notification.user_id == recipient_id,
            Notification.type == kind.value,
            Notification.actor_id == actor_id,
            Notification.post_id == post_id if post_id else Notification.post_id.is_(None),
            Notification.comment_id == comment_id if comment_id else Notification.comment_id.is_(None),
            Notification.created_at > now - self.dedup_window,
        ).limit(1)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    # ── Reads ─────────────────────────────────────────────────────────────

    async def list_for_user(
        self, db: AsyncSession, user_id: str, limit: int, offset: int, unread_only: bool
    ) -> dict:
        async def load() -> NotificationListResponse:
            stmt = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                stmt = stmt.where(Notification.is_read.is_(False))
            stmt = stmt.order_by(Notification.created_at.desc()).offset(offset).limit(limit + 1)
            rows = list((await db.execute(stmt)).scalars().unique().all())
            return NotificationListResponse(
                notifications=[to_response(n) for n in rows[:limit]],
                has_more=len(rows) > limit,
            )

        key = ck.NOTIFICATIONS.key(user_id, limit, offset, unread_only)
        return await cached(key, settings.cache_ttl_notifications, load)

    async def unread_count(self, db: AsyncSession, user_id: str) -> int:
        async def load() -> int:
            stmt = select(func.count()).select_from(Notification).where(
                Notification.user_id == user_id, Notification.is_read.is_(False)
            )
            return (await db.execute(stmt)).scalar_one()

        return await cached(
            ck.NOTIFICATIONS_UNREAD.key(user_id), settings.cache_ttl_unread_count, load
        )

    # ── Mutations ─────────────────────────────────────────────────────────

    async def mark_read(self, db: AsyncSession, user_id: str, notification_id: str) -> NotificationResponse:
        notification = await db.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id or notification.is_read:
            raise NotFoundError("Notification not found or already read")
        notification.is_read = True
        await db.commit()
        await invalidate(Mutation.NOTIFICATION_READ, recipient_id=user_id)
        return to_response(notification)

    async def mark_all_read(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        await db.commit()
        await invalidate(Mutation.NOTIFICATIONS_READ_ALL, recipient_id=user_id)
        return result.rowcount or 0

    async def delete(self, db: AsyncSession, user_id: str, notification_id: str) -> None:
        result = await db.execute(
            delete(Notification).where(
                Notification.notification_id == notification_id,
                Notification.user_id == user_id,
            )
        )
        if not result.rowcount:
            raise NotFoundError("Notification not found")
        await db.commit()
        await invalidate(Mutation.NOTIFICATION_DELETED, recipient_id=user_id)

    async def clear(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(delete(Notification).where(Notification.user_id == user_id))
        await db.commit()
        await invalidate(Mutation.NOTIFICATIONS_CLEARED, recipient_id=user_id)
        return result.rowcount or 0
