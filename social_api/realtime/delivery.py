"""
Delivery Router.

Every live connection owns a bounded outbox drained by a single writer task,
so pushes to one connection go out in the order deliver() was called and a
slow client never blocks the code that produced the event.
"""
import asyncio
import logging
import uuid
from typing import Any, Optional, Protocol, Union

from fastapi.encoders import jsonable_encoder

from social_api.config import settings
from social_api.realtime.presence import PresenceRegistry
from social_api.telemetry import DELIVERIES_TOTAL, WS_CONNECTIONS

logger = logging.getLogger(__name__)

AckId = Union[int, str]


class Transport(Protocol):
    async def send_json(self, data: Any) -> None: ...


def event_frame(event: str, data: Any) -> dict:
    return {"event": event, "data": jsonable_encoder(data)}


def ack_frame(ack: AckId, data: dict) -> dict:
    return {"event": "ack", "ack": ack, "data": jsonable_encoder(data)}


class Connection:
    """One WebSocket (or test transport) plus its outbox and writer task."""

    def __init__(self, user_id: str, transport: Transport, outbox_size: int):
        self.connection_id = uuid.uuid4().hex
        self.user_id = user_id
        self.transport = transport
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self._writer: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain())

    def enqueue(self, frame: dict) -> bool:
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    async def _drain(self) -> None:
        while True:
            frame = await self.outbox.get()
            try:
                await self.transport.send_json(frame)
            except Exception as exc:
                # Socket is gone; the receive loop will notice and disconnect
                logger.debug("Send to %s failed: %s", self.connection_id, exc)
            finally:
                self.outbox.task_done()

    async def stop(self) -> None:
        if self._writer is None:
            return
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass
        self._writer = None


class DeliveryRouter:
    def __init__(self, presence: PresenceRegistry, outbox_size: Optional[int] = None):
        self.presence = presence
        self.outbox_size = outbox_size or settings.ws_outbox_size
        self._connections: dict[str, Connection] = {}

    def attach(self, user_id: str, transport: Transport) -> Connection:
        connection = Connection(user_id, transport, self.outbox_size)
        self._connections[connection.connection_id] = connection
        connection.start()
        WS_CONNECTIONS.set(len(self._connections))
        return connection

    async def detach(self, connection: Connection) -> None:
        self._connections.pop(connection.connection_id, None)
        WS_CONNECTIONS.set(len(self._connections))
        await connection.stop()

    def deliver(self, target_user_id: str, event: str, payload: Any) -> int:
        """
        Queue `event` on every live connection of the target user.
        Returns how many connections accepted it. Never raises.
        """
        try:
            connection_ids = self.presence.connections(target_user_id)
            if not connection_ids:
                DELIVERIES_TOTAL.labels(outcome="offline").inc()
                return 0
            frame = event_frame(event, payload)
            delivered = 0
            for connection_id in connection_ids:
                connection = self._connections.get(connection_id)
                if connection is not None and self._push(connection, frame):
                    delivered += 1
            if delivered:
                DELIVERIES_TOTAL.labels(outcome="delivered").inc()
            logger.debug("Delivered %s to %s on %d connection(s)", event, target_user_id, delivered)
            return delivered
        except Exception:
            logger.exception("Delivery of %s to %s failed", event, target_user_id)
            return 0

    def broadcast(self, event: str, payload: Any, exclude_user: Optional[str] = None) -> None:
        """Queue `event` on every connection except those of `exclude_user`."""
        try:
            frame = event_frame(event, payload)
            for connection in list(self._connections.values()):
                if connection.user_id != exclude_user:
                    self._push(connection, frame)
        except Exception:
            logger.exception("Broadcast of %s failed", event)

    def send(self, connection: Connection, event: str, payload: Any) -> None:
        """Queue an event on one specific connection."""
        self._push(connection, event_frame(event, payload))

    def acknowledge(self, connection: Connection, ack: AckId, data: dict) -> None:
        self._push(connection, ack_frame(ack, data))

    async def close(self) -> None:
        """Stop every writer task; used at shutdown."""
        for connection in list(self._connections.values()):
            await self.detach(connection)

    async def flush(self) -> None:
        """Wait until every outbox has been written out."""
        await asyncio.gather(*(c.outbox.join() for c in list(self._connections.values())))

    def _push(self, connection: Connection, frame: dict) -> bool:
        if connection.enqueue(frame):
            return True
        DELIVERIES_TOTAL.labels(outcome="dropped").inc()
        logger.warning(
            "Outbox full for connection %s of %s, dropped %s",
            connection.connection_id, connection.user_id, frame.get("event"),
        )
        return False
