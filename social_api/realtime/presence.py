"""Per-user live connection sets with online/offline transition signals."""
import logging
from typing import Callable

from social_api.telemetry import ONLINE_USERS

logger = logging.getLogger(__name__)

# listener(user_id, is_online)
PresenceListener = Callable[[str, bool], None]


class PresenceRegistry:
    """
    Tracks which connection ids belong to which user.

    A user is online iff their connection set is non-empty. Listeners fire
    once on the 0 → 1 transition and once on the 1 → 0 transition, never for
    a second device joining or leaving.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[str]] = {}
        self._listeners: list[PresenceListener] = []

    def subscribe(self, listener: PresenceListener) -> None:
        self._listeners.append(listener)

    def register(self, user_id: str, connection_id: str) -> bool:
        """Add a connection. Returns True when this made the user online."""
        connections = self._connections.get(user_id)
        if connections is None:
            connections = self._connections[user_id] = set()
        came_online = not connections
        connections.add(connection_id)
        if came_online:
            ONLINE_USERS.set(len(self._connections))
            logger.info("User %s online", user_id)
            self._emit(user_id, True)
        return came_online

    def unregister(self, user_id: str, connection_id: str) -> bool:
        """Remove a connection. Returns True when this made the user offline."""
        connections = self._connections.get(user_id)
        if connections is None or connection_id not in connections:
            return False
        connections.discard(connection_id)
        if connections:
            return False
        del self._connections[user_id]
        ONLINE_USERS.set(len(self._connections))
        logger.info("User %s offline", user_id)
        self._emit(user_id, False)
        return True

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def online_users(self) -> set[str]:
        return set(self._connections)

    def connections(self, user_id: str) -> frozenset[str]:
        return frozenset(self._connections.get(user_id, ()))

    def _emit(self, user_id: str, is_online: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(user_id, is_online)
            except Exception:
                logger.exception("Presence listener failed for %s", user_id)
