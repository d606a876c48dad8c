"""Who is currently typing to whom, keyed by the unordered user pair."""
import logging

from social_api.realtime.delivery import DeliveryRouter

logger = logging.getLogger(__name__)


def pair_key(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a <= b else (b, a)


class TypingTracker:
    def __init__(self, router: DeliveryRouter):
        self.router = router
        self._typing: dict[tuple[str, str], set[str]] = {}

    def start_typing(self, user_id: str, counterpart_id: str) -> None:
        self._typing.setdefault(pair_key(user_id, counterpart_id), set()).add(user_id)
        self.router.deliver(counterpart_id, "typing:start", {"userId": user_id})
        logger.debug("%s started typing to %s", user_id, counterpart_id)

    def stop_typing(self, user_id: str, counterpart_id: str) -> None:
        key = pair_key(user_id, counterpart_id)
        typing = self._typing.get(key)
        if typing is not None:
            typing.discard(user_id)
            if not typing:
                del self._typing[key]
        self.router.deliver(counterpart_id, "typing:stop", {"userId": user_id})
        logger.debug("%s stopped typing to %s", user_id, counterpart_id)

    def is_typing(self, user_id: str, counterpart_id: str) -> bool:
        return user_id in self._typing.get(pair_key(user_id, counterpart_id), ())

    def clear_user(self, user_id: str) -> list[str]:
        """
        Drop every typing entry held by `user_id` and tell each counterpart
        the user stopped. Returns the counterparts that were notified.
        """
        counterparts = []
        for key in [k for k, users in self._typing.items() if user_id in users]:
            users = self._typing[key]
            users.discard(user_id)
            if not users:
                del self._typing[key]
            counterpart = key[1] if key[0] == user_id else key[0]
            counterparts.append(counterpart)
            self.router.deliver(counterpart, "typing:stop", {"userId": user_id})
        return counterparts
