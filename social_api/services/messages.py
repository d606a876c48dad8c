"""
Direct messages.

Every mutation here follows the same order: commit the durable write, push
realtime events and notifications, then invalidate the cached conversation
views of both participants.
"""
import logging
import time
from typing import Optional

from opentelemetry import trace
from sqlalchemy import and_, case, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import cache_keys as ck
from social_api.clients.redis_client import cached, incr_with_ttl
from social_api.config import settings
from social_api.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    ValidationError,
)
from social_api.models import Message, NotificationType, User, utcnow
from social_api.realtime.delivery import DeliveryRouter
from social_api.schemas import (
    ConversationListResponse,
    ConversationResponse,
    ConversationSummary,
    MessageResponse,
    ReadReceipt,
)
from social_api.services.invalidation import Mutation, invalidate
from social_api.services.notifications import NotificationService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def to_response(message: Message) -> MessageResponse:
    return MessageResponse(
        message_id=message.message_id,
        sender_id=message.sender_id,
        recipient_id=message.recipient_id,
        sender_username=message.sender.username if message.sender else None,
        content=message.content,
        image_url=message.image_url,
        is_read=message.is_read,
        read_at=message.read_at,
        created_at=message.created_at,
    )


def _between(a: str, b: str):
    return or_(
        and_(Message.sender_id == a, Message.recipient_id == b),
        and_(Message.sender_id == b, Message.recipient_id == a),
    )


async def _check_rate(sender_id: str) -> None:
    minute = int(time.time() // 60)
    count = await incr_with_ttl(ck.MESSAGE_RATE.key(sender_id, minute), 60)
    # None means the counter is unavailable: fail open
    if count is not None and count > settings.message_rate_limit_per_minute:
        raise RateLimitedError(
            "Too many messages, slow down",
            context={"sender_id": sender_id, "count": count},
        )


# ─────────────────────────── Send ─────────────────────────────────────────

async def send_message(
    db: AsyncSession,
    router: DeliveryRouter,
    notifier: NotificationService,
    sender_id: str,
    recipient_id: str,
    content: str,
    image_url: Optional[str] = None,
) -> MessageResponse:
    with tracer.start_as_current_span("messages.send") as span:
        span.set_attribute("message.recipient_id", recipient_id)

        if recipient_id == sender_id:
            raise ValidationError("Cannot send a message to yourself")
        content = (content or "").strip()
        if not content or len(content) > settings.message_max_length:
            raise ValidationError(
                f"Message content must be 1-{settings.message_max_length} characters"
            )
        if await db.get(User, recipient_id) is None:
            raise NotFoundError("Recipient not found")
        await _check_rate(sender_id)

        message = Message(
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content,
            image_url=image_url,
        )
        db.add(message)
        await db.commit()
        await db.refresh(message, ["sender"])
        response = to_response(message)
        logger.info("Message %s sent %s → %s", message.message_id, sender_id, recipient_id)

        router.deliver(recipient_id, "message:received", response)
        await notifier.notify(
            db,
            recipient_id=recipient_id,
            actor_id=sender_id,
            kind=NotificationType.MESSAGE,
            message=content[: settings.message_preview_length],
        )
        await invalidate(Mutation.MESSAGE_SENT, sender_id=sender_id, recipient_id=recipient_id)
        return response


# ─────────────────────────── Read receipts ────────────────────────────────

async def mark_message_read(
    db: AsyncSession,
    router: DeliveryRouter,
    reader_id: str,
    message_id: str,
    sender_id: Optional[str] = None,
) -> MessageResponse:
    """Mark one message read. Only its recipient may do so, and only once."""
    message = await db.get(Message, message_id)
    if (
        message is None
        or message.is_deleted
        or message.recipient_id != reader_id
        or message.is_read
        or (sender_id is not None and message.sender_id != sender_id)
    ):
        raise NotFoundError("Message not found or already read")

    message.is_read = True
    message.read_at = utcnow()
    await db.commit()
    response = to_response(message)

    router.deliver(
        message.sender_id,
        "message:read",
        {"messageId": message.message_id, "readAt": message.read_at, "readBy": reader_id},
    )
    await invalidate(Mutation.MESSAGES_READ, sender_id=message.sender_id, recipient_id=reader_id)
    return response


async def mark_conversation_read(
    db: AsyncSession, router: DeliveryRouter, reader_id: str, sender_id: str
) -> int:
    """Mark everything `sender_id` sent to `reader_id` as read. Returns the count."""
    result = await db.execute(
        update(Message)
        .where(
            Message.sender_id == sender_id,
            Message.recipient_id == reader_id,
            Message.is_read.is_(False),
            Message.is_deleted.is_(False),
        )
        .values(is_read=True, read_at=utcnow())
    )
    await db.commit()
    count = result.rowcount or 0

    router.deliver(sender_id, "conversation:read", {"readBy": reader_id, "count": count})
    await invalidate(Mutation.MESSAGES_READ, sender_id=sender_id, recipient_id=reader_id)
    return count


async def mark_read(
    db: AsyncSession, router: DeliveryRouter, reader_id: str, target_id: str
) -> ReadReceipt:
    """
    POST /messages/{id}/read accepts either a message id or a user id.
    A message addressed to the caller wins; otherwise the id must name a
    user, and the whole conversation with that user is marked read.
    """
    message = await db.get(Message, target_id)
    if message is not None and message.recipient_id == reader_id:
        return ReadReceipt(count=1, message=await mark_message_read(db, router, reader_id, target_id))
    if await db.get(User, target_id) is None:
        raise NotFoundError("Message or user not found")
    return ReadReceipt(count=await mark_conversation_read(db, router, reader_id, target_id))


# ─────────────────────────── Delete ───────────────────────────────────────

async def delete_message(db: AsyncSession, user_id: str, message_id: str) -> None:
    message = await db.get(Message, message_id)
    if message is None or message.is_deleted:
        raise NotFoundError("Message not found")
    if message.sender_id != user_id:
        raise PermissionDeniedError("Only the sender can delete a message")
    message.is_deleted = True
    await db.commit()
    await invalidate(
        Mutation.MESSAGE_DELETED, sender_id=message.sender_id, recipient_id=message.recipient_id
    )


# ─────────────────────────── Reads ────────────────────────────────────────

async def list_conversations(db: AsyncSession, user_id: str, limit: int, offset: int) -> dict:
    async def load() -> ConversationListResponse:
        other = case((Message.sender_id == user_id, Message.recipient_id), else_=Message.sender_id)
        latest = (
            select(other.label("other_id"), func.max(Message.created_at).label("last_at"))
            .where(
                or_(Message.sender_id == user_id, Message.recipient_id == user_id),
                Message.is_deleted.is_(False),
            )
            .group_by(other)
            .order_by(desc("last_at"))
            .offset(offset)
            .limit(limit + 1)
        )
        rows = (await db.execute(latest)).all()
        page = rows[:limit]

        unread_rows = await db.execute(
            select(Message.sender_id, func.count())
            .where(
                Message.recipient_id == user_id,
                Message.is_read.is_(False),
                Message.is_deleted.is_(False),
            )
            .group_by(Message.sender_id)
        )
        unread = dict(unread_rows.all())

        conversations = []
        for other_id, _ in page:
            last = (
                await db.execute(
                    select(Message)
                    .where(_between(user_id, other_id), Message.is_deleted.is_(False))
                    .order_by(Message.created_at.desc(), Message.message_id.desc())
                    .limit(1)
                )
            ).scalars().first()
            counterpart = await db.get(User, other_id)
            conversations.append(
                ConversationSummary(
                    other_user_id=other_id,
                    other_username=counterpart.username if counterpart else None,
                    other_display_name=counterpart.display_name if counterpart else None,
                    last_message=to_response(last),
                    unread_count=unread.get(other_id, 0),
                )
            )
        return ConversationListResponse(conversations=conversations, has_more=len(rows) > limit)

    key = ck.CONVERSATIONS.key(user_id, limit, offset)
    return await cached(key, settings.cache_ttl_conversations, load)


async def get_conversation(
    db: AsyncSession, viewer_id: str, other_id: str, limit: int, cursor: Optional[str]
) -> dict:
    """History with `other_id`, newest page first, oldest-first within the page."""

    async def load() -> ConversationResponse:
        stmt = select(Message).where(_between(viewer_id, other_id), Message.is_deleted.is_(False))
        if cursor:
            anchor = await db.get(Message, cursor)
            if anchor is None:
                raise NotFoundError("Cursor message not found")
            stmt = stmt.where(
                or_(
                    Message.created_at < anchor.created_at,
                    and_(
                        Message.created_at == anchor.created_at,
                        Message.message_id < anchor.message_id,
                    ),
                )
            )
        stmt = stmt.order_by(Message.created_at.desc(), Message.message_id.desc()).limit(limit + 1)
        rows = list((await db.execute(stmt)).scalars().unique().all())
        page = list(reversed(rows[:limit]))
        return ConversationResponse(messages=[to_response(m) for m in page], has_more=len(rows) > limit)

    key = ck.CONVERSATION.key(viewer_id, other_id, limit, cursor)
    return await cached(key, settings.cache_ttl_conversation, load)


async def unread_total(db: AsyncSession, user_id: str) -> int:
    async def load() -> int:
        stmt = select(func.count()).select_from(Message).where(
            Message.recipient_id == user_id,
            Message.is_read.is_(False),
            Message.is_deleted.is_(False),
        )
        return (await db.execute(stmt)).scalar_one()

    return await cached(ck.UNREAD.key(user_id), settings.cache_ttl_unread_count, load)


async def unread_from(db: AsyncSession, user_id: str, other_id: str) -> int:
    stmt = select(func.count()).select_from(Message).where(
        Message.sender_id == other_id,
        Message.recipient_id == user_id,
        Message.is_read.is_(False),
        Message.is_deleted.is_(False),
    )
    return (await db.execute(stmt)).scalar_one()


async def search(db: AsyncSession, user_id: str, other_id: str, query: str, limit: int) -> list[MessageResponse]:
    query = query.strip()
    if len(query) < 2:
        raise ValidationError("Search query must be at least 2 characters")
    stmt = (
        select(Message)
        .where(
            _between(user_id, other_id),
            Message.is_deleted.is_(False),
            func.lower(Message.content).contains(query.lower(), autoescape=True),
        )
        .order_by(Message.created_at.desc())
        .limit(limit)
    )
    rows = (await db.execute(stmt)).scalars().unique().all()
    return [to_response(m) for m in rows]
