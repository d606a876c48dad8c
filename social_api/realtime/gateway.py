"""
Realtime gateway: connection lifecycle and client → server event dispatch.

    connect()     register with presence, start the outbox writer, send users:online
    dispatch()    route one client frame to its handler and acknowledge it
    disconnect()  unregister, clear typing state, stop the writer

Handlers return the acknowledgement body; SocialAPIError and payload
validation errors become declined acknowledgements. Acks travel through the
same outbox as pushes, so a client sees them in order.
"""
import logging
from typing import Any, Awaitable, Callable, Optional

import pydantic
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_api.exceptions import SocialAPIError
from social_api.realtime.delivery import Connection, DeliveryRouter, Transport
from social_api.realtime.presence import PresenceRegistry
from social_api.realtime.typing_state import TypingTracker
from social_api.schemas import (
    ConversationReadPayload,
    MessageReadPayload,
    MessageSendPayload,
    RealtimeFrame,
    TypingPayload,
)
from social_api.services import messages
from social_api.services.notifications import NotificationService
from social_api.telemetry import REALTIME_EVENTS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Handler = Callable[[Connection, dict], Awaitable[Optional[dict]]]


class RealtimeGateway:
    def __init__(
        self,
        presence: PresenceRegistry,
        router: DeliveryRouter,
        typing: TypingTracker,
        notifier: NotificationService,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.presence = presence
        self.router = router
        self.typing = typing
        self.notifier = notifier
        self.session_factory = session_factory
        self._handlers: dict[str, Handler] = {
            "message:send": self._on_message_send,
            "typing:start": self._on_typing_start,
            "typing:stop": self._on_typing_stop,
            "message:read": self._on_message_read,
            "conversation:read": self._on_conversation_read,
            "ping": self._on_ping,
        }
        # No acknowledgement even when the client asks for one
        self._fire_and_forget = {"typing:start", "typing:stop"}
        presence.subscribe(self._on_presence_change)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def connect(self, user_id: str, transport: Transport) -> Connection:
        connection = self.router.attach(user_id, transport)
        self.presence.register(user_id, connection.connection_id)
        self.router.send(
            connection, "users:online", {"userIds": sorted(self.presence.online_users())}
        )
        logger.info("Connection %s opened for %s", connection.connection_id, user_id)
        return connection

    async def disconnect(self, connection: Connection) -> None:
        went_offline = self.presence.unregister(connection.user_id, connection.connection_id)
        if went_offline:
            self.typing.clear_user(connection.user_id)
        await self.router.detach(connection)
        logger.info("Connection %s closed for %s", connection.connection_id, connection.user_id)

    def _on_presence_change(self, user_id: str, is_online: bool) -> None:
        event = "user:online" if is_online else "user:offline"
        self.router.broadcast(event, {"userId": user_id}, exclude_user=user_id)

    # ── Dispatch ──────────────────────────────────────────────────────────

    async def dispatch(self, connection: Connection, raw: Any) -> None:
        try:
            frame = RealtimeFrame.model_validate(raw)
        except pydantic.ValidationError:
            logger.debug("Malformed frame from %s: %r", connection.user_id, raw)
            ack = raw.get("ack") if isinstance(raw, dict) else None
            if isinstance(ack, (int, str)):
                self.router.acknowledge(connection, ack, {"success": False, "error": "Malformed frame"})
            return

        handler = self._handlers.get(frame.event)
        if handler is None:
            REALTIME_EVENTS_TOTAL.labels(event="unknown", outcome="declined").inc()
            self._reply(connection, frame, {"success": False, "error": f"Unknown event {frame.event}"})
            return

        with tracer.start_as_current_span(f"realtime.{frame.event}") as span:
            span.set_attribute("realtime.user_id", connection.user_id)
            try:
                result = await handler(connection, frame.data) or {}
                body = {"success": True, **result}
                outcome = "ok"
            except pydantic.ValidationError as exc:
                body = {
                    "success": False,
                    "error": "Invalid payload",
                    "details": exc.errors(include_url=False, include_context=False, include_input=False),
                }
                outcome = "declined"
            except SocialAPIError as exc:
                if exc.context:
                    logger.info("Declined %s for %s: %s %s", frame.event, connection.user_id, exc.message, exc.context)
                body = {"success": False, "error": exc.message}
                outcome = "declined"
            except Exception:
                logger.exception("Realtime handler %s failed for %s", frame.event, connection.user_id)
                body = {"success": False, "error": "Internal error"}
                outcome = "declined"

        REALTIME_EVENTS_TOTAL.labels(event=frame.event, outcome=outcome).inc()
        if frame.event not in self._fire_and_forget:
            self._reply(connection, frame, body)

    def _reply(self, connection: Connection, frame: RealtimeFrame, body: dict) -> None:
        if frame.ack is not None:
            self.router.acknowledge(connection, frame.ack, body)

    # ── Handlers ──────────────────────────────────────────────────────────

    async def _on_message_send(self, connection: Connection, data: dict) -> dict:
        payload = MessageSendPayload.model_validate(data)
        async with self.session_factory() as db:
            message = await messages.send_message(
                db,
                self.router,
                self.notifier,
                connection.user_id,
                payload.recipient_id,
                payload.content,
                payload.image_url,
            )
        return {"message": message}

    async def _on_typing_start(self, connection: Connection, data: dict) -> None:
        payload = TypingPayload.model_validate(data)
        self.typing.start_typing(connection.user_id, payload.recipient_id)

    async def _on_typing_stop(self, connection: Connection, data: dict) -> None:
        payload = TypingPayload.model_validate(data)
        self.typing.stop_typing(connection.user_id, payload.recipient_id)

    async def _on_message_read(self, connection: Connection, data: dict) -> dict:
        payload = MessageReadPayload.model_validate(data)
        async with self.session_factory() as db:
            message = await messages.mark_message_read(
                db, self.router, connection.user_id, payload.message_id, payload.sender_id
            )
        return {"messageId": message.message_id, "readAt": message.read_at}

    async def _on_conversation_read(self, connection: Connection, data: dict) -> dict:
        payload = ConversationReadPayload.model_validate(data)
        async with self.session_factory() as db:
            count = await messages.mark_conversation_read(
                db, self.router, connection.user_id, payload.sender_id
            )
        return {"count": count}

    async def _on_ping(self, connection: Connection, data: dict) -> None:
        return None


def build_gateway(session_factory: async_sessionmaker[AsyncSession], clock=None) -> RealtimeGateway:
    """Construct the realtime graph for one process."""
    presence = PresenceRegistry()
    router = DeliveryRouter(presence)
    typing = TypingTracker(router)
    notifier = NotificationService(router, clock=clock) if clock else NotificationService(router)
    return RealtimeGateway(presence, router, typing, notifier, session_factory)
