"""
FastAPI dependencies: caller identity and the per-process realtime objects.

Identity is verified upstream (gateway / auth service) and arrives as the
X-User-Id header. WebSocket clients that cannot set headers may pass
`user_id` as a query parameter instead.
"""
from typing import Optional

from fastapi import Header, HTTPException, Query, Request, WebSocket, status

from social_api.config import settings
from social_api.realtime.delivery import DeliveryRouter
from social_api.realtime.gateway import RealtimeGateway
from social_api.realtime.presence import PresenceRegistry
from social_api.services.notifications import NotificationService


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id


async def get_viewer_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_id or None


def websocket_user_id(websocket: WebSocket) -> Optional[str]:
    return websocket.headers.get("x-user-id") or websocket.query_params.get("user_id") or None


class Page:
    def __init__(
        self,
        limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
        offset: int = Query(0, ge=0),
    ):
        self.limit = limit
        self.offset = offset


def get_gateway(request: Request) -> RealtimeGateway:
    return request.app.state.gateway


def get_presence(request: Request) -> PresenceRegistry:
    return request.app.state.gateway.presence


def get_router(request: Request) -> DeliveryRouter:
    return request.app.state.gateway.router


def get_notifier(request: Request) -> NotificationService:
    return request.app.state.gateway.notifier
