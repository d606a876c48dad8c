"""
Notification endpoints:
  GET    /notifications                 — list (newest first, optional unread filter)
  GET    /notifications/unread/count    — unread badge count
  POST   /notifications/read-all        — mark everything read
  POST   /notifications/{id}/read       — mark one read
  DELETE /notifications/{id}            — delete one
  DELETE /notifications                 — delete all
"""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from social_api.database import get_db
from social_api.dependencies import Page, get_current_user_id, get_notifier
from social_api.schemas import CountResponse, NotificationListResponse, NotificationResponse
from social_api.services.notifications import NotificationService

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    page: Page = Depends(),
    unread: bool = False,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    return await notifier.list_for_user(db, user_id, page.limit, page.offset, unread)


@router.get("/unread/count", response_model=CountResponse)
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    return CountResponse(count=await notifier.unread_count(db, user_id))


@router.post("/read-all", response_model=CountResponse)
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    return CountResponse(count=await notifier.mark_all_read(db, user_id))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    return await notifier.mark_read(db, user_id, notification_id)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    await notifier.delete(db, user_id, notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", response_model=CountResponse)
async def clear_notifications(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    return CountResponse(count=await notifier.clear(db, user_id))
