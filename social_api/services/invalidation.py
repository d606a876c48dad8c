"""
Cache invalidation coordinator.

The mapping from a committed mutation to the cache entries it makes stale is
plain data (INVALIDATION_TABLE). plan() turns a mutation plus the ids it
touched into concrete keys and SCAN patterns without any I/O; invalidate()
executes a plan against Redis. Services call invalidate() after the durable
write and after realtime delivery, before returning.
"""
import enum
import logging
from typing import NamedTuple

from social_api import cache_keys as ck
from social_api.clients.redis_client import cache_delete, cache_delete_pattern
from social_api.telemetry import CACHE_INVALIDATIONS_TOTAL

logger = logging.getLogger(__name__)


class Mutation(str, enum.Enum):
    POST_CREATED = "post_created"
    POST_UPDATED = "post_updated"
    POST_DELETED = "post_deleted"
    POST_LIKED = "post_liked"
    POST_UNLIKED = "post_unliked"
    COMMENT_ADDED = "comment_added"
    COMMENT_DELETED = "comment_deleted"
    REACTION_ADDED = "reaction_added"
    REACTION_REMOVED = "reaction_removed"
    FOLLOWED = "followed"
    UNFOLLOWED = "unfollowed"
    FOLLOWER_REMOVED = "follower_removed"
    MESSAGE_SENT = "message_sent"
    MESSAGES_READ = "messages_read"
    MESSAGE_DELETED = "message_deleted"
    NOTIFICATION_CREATED = "notification_created"
    NOTIFICATION_READ = "notification_read"
    NOTIFICATIONS_READ_ALL = "notifications_read_all"
    NOTIFICATION_DELETED = "notification_deleted"
    NOTIFICATIONS_CLEARED = "notifications_cleared"


class Target(NamedTuple):
    """One row entry: a key space, the ref names that fill its ids, exact or wildcard."""
    space: ck.KeySpace
    refs: tuple[str, ...] = ()
    wildcard: bool = False


def _key(space: ck.KeySpace, *refs: str) -> Target:
    return Target(space, refs, wildcard=False)


def _scan(space: ck.KeySpace, *refs: str) -> Target:
    return Target(space, refs, wildcard=True)


_POST = (
    _key(ck.POST, "post_id"),
    _scan(ck.USER_POSTS, "author_id"),
    _scan(ck.FEED),
    _key(ck.USER, "author_id"),
)

_POST_COUNTERS = (_key(ck.POST, "post_id"),)

_REACTIONS = (
    _key(ck.POST, "post_id"),
    _key(ck.REACTION_COUNTS, "post_id"),
    _scan(ck.REACTIONS, "post_id"),
)

_FOLLOW = (
    _key(ck.USER, "follower_id"),
    _key(ck.USER, "followee_id"),
    _scan(ck.FOLLOWERS, "followee_id"),
    _scan(ck.FOLLOWING, "follower_id"),
)

# Reads use recipient_id for the reader: only the recipient can mark read
_CONVERSATION = (
    _scan(ck.CONVERSATIONS, "sender_id"),
    _scan(ck.CONVERSATIONS, "recipient_id"),
    _scan(ck.CONVERSATION, "sender_id", "recipient_id"),
    _scan(ck.CONVERSATION, "recipient_id", "sender_id"),
    _key(ck.UNREAD, "recipient_id"),
)

_NOTIFICATIONS = (
    _scan(ck.NOTIFICATIONS, "recipient_id"),
    _key(ck.NOTIFICATIONS_UNREAD, "recipient_id"),
)

INVALIDATION_TABLE: dict[Mutation, tuple[Target, ...]] = {
    Mutation.POST_CREATED: _POST,
    Mutation.POST_UPDATED: _POST,
    Mutation.POST_DELETED: _POST,
    Mutation.POST_LIKED: _POST_COUNTERS,
    Mutation.POST_UNLIKED: _POST_COUNTERS,
    Mutation.COMMENT_ADDED: _POST_COUNTERS,
    Mutation.COMMENT_DELETED: _POST_COUNTERS,
    Mutation.REACTION_ADDED: _REACTIONS,
    Mutation.REACTION_REMOVED: _REACTIONS,
    Mutation.FOLLOWED: _FOLLOW,
    Mutation.UNFOLLOWED: _FOLLOW,
    Mutation.FOLLOWER_REMOVED: _FOLLOW,
    Mutation.MESSAGE_SENT: _CONVERSATION,
    Mutation.MESSAGES_READ: _CONVERSATION,
    Mutation.MESSAGE_DELETED: _CONVERSATION,
    Mutation.NOTIFICATION_CREATED: _NOTIFICATIONS,
    Mutation.NOTIFICATION_READ: _NOTIFICATIONS,
    Mutation.NOTIFICATIONS_READ_ALL: _NOTIFICATIONS,
    Mutation.NOTIFICATION_DELETED: _NOTIFICATIONS,
    Mutation.NOTIFICATIONS_CLEARED: _NOTIFICATIONS,
}


class InvalidationPlan(NamedTuple):
    keys: tuple[str, ...]
    patterns: tuple[str, ...]


def plan(mutation: Mutation, **refs: str) -> InvalidationPlan:
    """Resolve a mutation's table row into exact keys and SCAN patterns."""
    keys: list[str] = []
    patterns: list[str] = []
    for target in INVALIDATION_TABLE[mutation]:
        missing = [name for name in target.refs if not refs.get(name)]
        if missing:
            raise ValueError(f"{mutation.value} needs {', '.join(missing)}")
        ids = [refs[name] for name in target.refs]
        if target.wildcard:
            entry, bucket = target.space.pattern(*ids), patterns
        else:
            entry, bucket = target.space.key(*ids), keys
        if entry not in bucket:
            bucket.append(entry)
    return InvalidationPlan(tuple(keys), tuple(patterns))


async def invalidate(mutation: Mutation, **refs: str) -> InvalidationPlan:
    """Drop every cache entry a committed mutation made stale. Never raises on Redis errors."""
    result = plan(mutation, **refs)
    CACHE_INVALIDATIONS_TOTAL.labels(mutation=mutation.value).inc()
    await cache_delete(*result.keys)
    for pattern in result.patterns:
        await cache_delete_pattern(pattern)
    logger.debug("Invalidated %s: keys=%s patterns=%s", mutation.value, result.keys, result.patterns)
    return result
