"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.

Realtime payloads accept the camelCase field names that WebSocket clients
send (recipientId, messageId, senderId) as well as snake_case.
"""
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from social_api.config import settings


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


# ──────────────────────────── Users ───────────────────────────────────────

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    display_name: Optional[str] = None


class UserResponse(BaseModel):
    user_id: str
    username: str
    display_name: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class UserProfile(UserResponse):
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    # Live presence, never cached
    is_online: bool = False


class OnlineUsersResponse(BaseModel):
    user_ids: list[str]
    count: int


# ──────────────────────────── Follows ─────────────────────────────────────

class FollowResponse(BaseModel):
    follower_id: str
    followee_id: str
    created: bool


class FollowStatus(BaseModel):
    is_following: bool
    is_followed_by: bool
    is_mutual: bool


class FollowListResponse(BaseModel):
    user_id: str
    users: list[UserResponse]
    has_more: bool


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(BaseModel):
    content: str = Field(..., max_length=5000)
    image_url: Optional[str] = Field(None, max_length=500)

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        return _strip_required(value)


class PostUpdate(BaseModel):
    content: Optional[str] = Field(None, max_length=5000)
    image_url: Optional[str] = Field(None, max_length=500)


class PostResponse(BaseModel):
    post_id: str
    user_id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    content: str
    image_url: Optional[str]
    like_count: int
    comment_count: int
    created_at: datetime
    updated_at: datetime
    # Viewer-specific; filled per request, outside the post cache
    is_liked: Optional[bool] = None
    user_reaction: Optional[str] = None


class PostListResponse(BaseModel):
    posts: list[PostResponse]
    has_more: bool
    next_cursor: Optional[str]


class LikeResponse(BaseModel):
    post_id: str
    liked: bool
    like_count: int


class CommentCreate(BaseModel):
    content: str = Field(..., max_length=2000)
    parent_id: Optional[str] = None

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        return _strip_required(value)


class CommentResponse(BaseModel):
    comment_id: str
    post_id: str
    user_id: str
    username: Optional[str] = None
    parent_id: Optional[str]
    content: str
    created_at: datetime


class CommentListResponse(BaseModel):
    comments: list[CommentResponse]
    has_more: bool


class ReactionRequest(BaseModel):
    emoji: str


class ReactionResponse(BaseModel):
    post_id: str
    user_id: str
    emoji: str
    created_at: datetime

    class Config:
        from_attributes = True


class ReactionCounts(BaseModel):
    post_id: str
    counts: dict[str, int]
    total: int
    user_reaction: Optional[str] = None


class ReactionUser(BaseModel):
    user_id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    emoji: str
    created_at: datetime


class ReactionListResponse(BaseModel):
    post_id: str
    reactions: list[ReactionUser]
    has_more: bool


# ──────────────────────────── Messages ────────────────────────────────────

class MessageCreate(BaseModel):
    recipient_id: str = Field(..., max_length=36)
    content: str = Field(..., max_length=settings.message_max_length)
    image_url: Optional[str] = Field(None, max_length=500)

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        return _strip_required(value)


class MessageResponse(BaseModel):
    message_id: str
    sender_id: str
    recipient_id: str
    sender_username: Optional[str] = None
    content: str
    image_url: Optional[str]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


class ConversationSummary(BaseModel):
    other_user_id: str
    other_username: Optional[str]
    other_display_name: Optional[str]
    last_message: MessageResponse
    unread_count: int


class ConversationListResponse(BaseModel):
    conversations: list[ConversationSummary]
    has_more: bool


class ConversationResponse(BaseModel):
    messages: list[MessageResponse]
    has_more: bool


class CountResponse(BaseModel):
    count: int


class ReadReceipt(BaseModel):
    """Result of POST /messages/{id}/read — one message or a whole conversation."""
    count: int
    message: Optional[MessageResponse] = None


# ──────────────────────────── Notifications ───────────────────────────────

class NotificationResponse(BaseModel):
    notification_id: str
    user_id: str
    type: str
    actor_id: str
    actor_username: Optional[str] = None
    actor_display_name: Optional[str] = None
    post_id: Optional[str]
    comment_id: Optional[str]
    message: Optional[str]
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    has_more: bool


# ──────────────────────────── Realtime frames ─────────────────────────────

class RealtimeFrame(BaseModel):
    event: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    ack: Optional[Union[int, str]] = None


class MessageSendPayload(BaseModel):
    recipient_id: str = Field(..., alias="recipientId", max_length=36)
    content: str = Field(..., max_length=settings.message_max_length)
    image_url: Optional[str] = Field(None, max_length=500)

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        return _strip_required(value)

    class Config:
        populate_by_name = True


class TypingPayload(BaseModel):
    recipient_id: str = Field(..., alias="recipientId", max_length=36)

    class Config:
        populate_by_name = True


class MessageReadPayload(BaseModel):
    message_id: str = Field(..., alias="messageId", max_length=36)
    sender_id: str = Field(..., alias="senderId", max_length=36)

    class Config:
        populate_by_name = True


class ConversationReadPayload(BaseModel):
    sender_id: str = Field(..., alias="senderId", max_length=36)

    class Config:
        populate_by_name = True
