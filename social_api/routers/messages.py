"""
Direct message endpoints:
  POST   /messages                           — send a message
  GET    /messages/conversations             — latest message per counterpart
  GET    /messages/conversations/{user_id}   — history with one user
  GET    /messages/unread                    — total unread count
  GET    /messages/unread/{user_id}          — unread count from one user
  GET    /messages/search/{user_id}?q=       — search a conversation
  POST   /messages/{id}/read                 — mark a message, or a whole conversation, read
  DELETE /messages/{id}                      — soft delete (sender only)

HTTP sends and reads push the same realtime events as their WebSocket
counterparts.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from social_api.config import settings
from social_api.database import get_db
from social_api.dependencies import Page, get_current_user_id, get_notifier, get_router
from social_api.realtime.delivery import DeliveryRouter
from social_api.schemas import (
    ConversationListResponse,
    ConversationResponse,
    CountResponse,
    MessageCreate,
    MessageResponse,
    ReadReceipt,
)
from social_api.services import messages
from social_api.services.notifications import NotificationService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    body: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    delivery: DeliveryRouter = Depends(get_router),
    notifier: NotificationService = Depends(get_notifier),
):
    return await messages.send_message(
        db, delivery, notifier, user_id, body.recipient_id, body.content, body.image_url
    )


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    page: Page = Depends(),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await messages.list_conversations(db, user_id, page.limit, page.offset)


@router.get("/conversations/{other_id}", response_model=ConversationResponse)
async def get_conversation(
    other_id: str,
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    cursor: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await messages.get_conversation(db, user_id, other_id, limit, cursor)


@router.get("/unread", response_model=CountResponse)
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return CountResponse(count=await messages.unread_total(db, user_id))


@router.get("/unread/{other_id}", response_model=CountResponse)
async def unread_from(
    other_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return CountResponse(count=await messages.unread_from(db, user_id, other_id))


@router.get("/search/{other_id}", response_model=list[MessageResponse])
async def search_conversation(
    other_id: str,
    q: str = Query(..., min_length=2, max_length=200),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await messages.search(db, user_id, other_id, q, limit)


@router.post("/{target_id}/read", response_model=ReadReceipt)
async def mark_read(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    delivery: DeliveryRouter = Depends(get_router),
):
    return await messages.mark_read(db, delivery, user_id, target_id)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await messages.delete_message(db, user_id, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
