"""
Cache key builder.

Every cached view lives under a KeySpace: a namespace plus a fixed number of
identifying ids. Readers build full keys (ids + page params); the
invalidation table builds wildcard patterns from the ids alone, so both
sides always agree on the layout.

    USER.key("u1")                          → user:u1
    FEED.key("u1", 20, None)                → feed:u1:20:-
    CONVERSATION.pattern("u1", "u2")        → conversation:u1:u2:*
    FEED.pattern()                          → feed:*
"""
from typing import Any

_EMPTY = "-"


def _part(value: Any) -> str:
    if value is None or value == "":
        return _EMPTY
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


class KeySpace:
    def __init__(self, namespace: str, ids: int = 1):
        self.namespace = namespace
        self.ids = ids

    def key(self, *parts: Any) -> str:
        """Full key: namespace, the identifying ids, then any page params."""
        if len(parts) < self.ids:
            raise ValueError(
                f"{self.namespace} keys need {self.ids} id(s), got {len(parts)}"
            )
        return ":".join([self.namespace, *(_part(p) for p in parts)])

    def pattern(self, *ids: Any) -> str:
        """Glob over every key under the given leading ids."""
        if len(ids) > self.ids:
            raise ValueError(
                f"{self.namespace} patterns take at most {self.ids} id(s), got {len(ids)}"
            )
        return ":".join([self.namespace, *(_part(i) for i in ids), "*"])

    def __repr__(self) -> str:
        return f"KeySpace({self.namespace!r}, ids={self.ids})"


# ─────────────────────────── Social graph & posts ─────────────────────────
USER = KeySpace("user")                          # user:{uid}
POST = KeySpace("post")                          # post:{pid}
USER_POSTS = KeySpace("posts:user")              # posts:user:{uid}:{limit}:{cursor}
FEED = KeySpace("feed")                          # feed:{uid}:{limit}:{cursor}
REACTION_COUNTS = KeySpace("reactions:counts")   # reactions:counts:{pid}
REACTIONS = KeySpace("reactions")                # reactions:{pid}:{emoji}:{limit}:{offset}
FOLLOWERS = KeySpace("followers")                # followers:{uid}:{limit}:{offset}
FOLLOWING = KeySpace("following")                # following:{uid}:{limit}:{offset}

# ─────────────────────────── Messaging ────────────────────────────────────
CONVERSATIONS = KeySpace("conversations")        # conversations:{uid}:{limit}:{offset}
CONVERSATION = KeySpace("conversation", ids=2)   # conversation:{viewer}:{other}:{limit}:{cursor}
UNREAD = KeySpace("unread")                      # unread:{uid}
MESSAGE_RATE = KeySpace("ratelimit:message")     # ratelimit:message:{uid}:{minute}

# ─────────────────────────── Notifications ────────────────────────────────
NOTIFICATIONS = KeySpace("notifications")                 # notifications:{uid}:{limit}:{offset}:{unread}
NOTIFICATIONS_UNREAD = KeySpace("notifications:unread")   # notifications:unread:{uid}
