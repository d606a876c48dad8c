"""
Post endpoints:
  POST   /posts                         — create a post
  GET    /posts/feed                    — own + followed authors' posts
  GET    /posts/user/{user_id}          — one author's posts
  GET    /posts/{id}                    — fetch a single post
  PATCH  /posts/{id}                    — edit (author only)
  DELETE /posts/{id}                    — soft delete (author only)
  POST   /posts/{id}/like               — like a post (idempotent)
  DELETE /posts/{id}/like               — unlike
  POST   /posts/{id}/comments           — comment or reply
  GET    /posts/{id}/comments           — list comments
  DELETE /posts/comments/{comment_id}   — soft delete a comment (author only)
  POST   /posts/{id}/react              — set the caller's emoji reaction
  DELETE /posts/{id}/react              — remove it
  GET    /posts/{id}/reactions          — who reacted, newest first
  GET    /posts/{id}/reactions/counts   — reaction counts per emoji

Cached views hold only viewer-independent data; is_liked and user_reaction
are filled in per request.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from opentelemetry import trace
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import cache_keys as ck
from social_api.clients.redis_client import cached
from social_api.config import settings
from social_api.database import get_db
from social_api.dependencies import Page, get_current_user_id, get_notifier, get_viewer_id
from social_api.models import (
    VALID_EMOJIS,
    Comment,
    Follow,
    Like,
    NotificationType,
    Post,
    Reaction,
)
from social_api.schemas import (
    CommentCreate,
    CommentListResponse,
    CommentResponse,
    LikeResponse,
    PostCreate,
    PostListResponse,
    PostResponse,
    PostUpdate,
    ReactionCounts,
    ReactionListResponse,
    ReactionRequest,
    ReactionResponse,
    ReactionUser,
)
from social_api.services.invalidation import Mutation, invalidate
from social_api.services.notifications import NotificationService

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def _build_post_response(post: Post) -> PostResponse:
    username = post.author.username if post.author else None
    display_name = post.author.display_name if post.author else None
    return PostResponse(
        post_id=post.post_id,
        user_id=post.user_id,
        username=username,
        display_name=display_name,
        content=post.content,
        image_url=post.image_url,
        like_count=post.like_count,
        comment_count=post.comment_count,
        created_at=post.created_at,
        updated_at=post.updated_at,
    )


def _build_comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse(
        comment_id=comment.comment_id,
        post_id=comment.post_id,
        user_id=comment.user_id,
        username=comment.author.username if comment.author else None,
        parent_id=comment.parent_id,
        content=comment.content,
        created_at=comment.created_at,
    )


async def _load_post(db: AsyncSession, post_id: str) -> Post:
    post = await db.get(Post, post_id)
    if not post or post.is_deleted:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


async def _load_own_post(db: AsyncSession, post_id: str, user_id: str) -> Post:
    post = await _load_post(db, post_id)
    if post.user_id != user_id:
        raise HTTPException(status_code=403, detail="Only the author can change this post")
    return post


async def _decorate(db: AsyncSession, viewer_id: Optional[str], posts: list[dict]) -> list[dict]:
    """Add the viewer's like / reaction state to cached post dicts."""
    if not viewer_id or not posts:
        return posts
    post_ids = [p["post_id"] for p in posts]
    liked = set(
        (
            await db.execute(
                select(Like.post_id).where(Like.user_id == viewer_id, Like.post_id.in_(post_ids))
            )
        ).scalars()
    )
    reactions = dict(
        (
            await db.execute(
                select(Reaction.post_id, Reaction.emoji).where(
                    Reaction.user_id == viewer_id, Reaction.post_id.in_(post_ids)
                )
            )
        ).all()
    )
    return [
        {**p, "is_liked": p["post_id"] in liked, "user_reaction": reactions.get(p["post_id"])}
        for p in posts
    ]


async def _post_page(db: AsyncSession, stmt, limit: int, cursor: Optional[str]) -> PostListResponse:
    """Newest-first page of posts strictly older than the cursor post."""
    if cursor:
        anchor = await db.get(Post, cursor)
        if not anchor:
            raise HTTPException(status_code=404, detail="Cursor post not found")
        stmt = stmt.where(
            or_(
                Post.created_at < anchor.created_at,
                and_(Post.created_at == anchor.created_at, Post.post_id < anchor.post_id),
            )
        )
    stmt = stmt.order_by(Post.created_at.desc(), Post.post_id.desc()).limit(limit + 1)
    rows = list((await db.execute(stmt)).scalars().unique().all())
    page = rows[:limit]
    return PostListResponse(
        posts=[_build_post_response(p) for p in page],
        has_more=len(rows) > limit,
        next_cursor=page[-1].post_id if len(rows) > limit else None,
    )


# ─────────────────────────── Posts ────────────────────────────────────────

@router.post("", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("create_post") as span:
        post = Post(user_id=user_id, content=body.content, image_url=body.image_url)
        db.add(post)
        await db.commit()
        await db.refresh(post, ["author"])
        span.set_attribute("post.id", post.post_id)

        await invalidate(Mutation.POST_CREATED, post_id=post.post_id, author_id=user_id)
        logger.info("Post created: %s by user %s", post.post_id, user_id)
        return _build_post_response(post)


@router.get("/feed", response_model=PostListResponse)
async def get_feed(
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    cursor: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    async def load() -> PostListResponse:
        followed = select(Follow.followee_id).where(Follow.follower_id == user_id)
        stmt = select(Post).where(
            Post.is_deleted.is_(False),
            or_(Post.user_id == user_id, Post.user_id.in_(followed)),
        )
        return await _post_page(db, stmt, limit, cursor)

    feed = await cached(ck.FEED.key(user_id, limit, cursor), settings.cache_ttl_feed, load)
    return {**feed, "posts": await _decorate(db, user_id, feed["posts"])}


@router.get("/user/{author_id}", response_model=PostListResponse)
async def get_user_posts(
    author_id: str,
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    cursor: Optional[str] = None,
    viewer_id: Optional[str] = Depends(get_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    async def load() -> PostListResponse:
        stmt = select(Post).where(Post.user_id == author_id, Post.is_deleted.is_(False))
        return await _post_page(db, stmt, limit, cursor)

    key = ck.USER_POSTS.key(author_id, limit, cursor)
    posts = await cached(key, settings.cache_ttl_user_posts, load)
    return {**posts, "posts": await _decorate(db, viewer_id, posts["posts"])}


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: str,
    viewer_id: Optional[str] = Depends(get_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    async def load() -> PostResponse:
        return _build_post_response(await _load_post(db, post_id))

    post = await cached(ck.POST.key(post_id), settings.cache_ttl_post, load)
    return (await _decorate(db, viewer_id, [post]))[0]


@router.patch("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: str,
    body: PostUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("update_post"):
        post = await _load_own_post(db, post_id, user_id)
        if body.content is not None:
            content = body.content.strip()
            if not content:
                raise HTTPException(status_code=400, detail="Post content must not be blank")
            post.content = content
        if body.image_url is not None:
            post.image_url = body.image_url
        await db.commit()
        await db.refresh(post)
        response = _build_post_response(post)

        await invalidate(Mutation.POST_UPDATED, post_id=post_id, author_id=user_id)
        return response


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("delete_post"):
        post = await _load_own_post(db, post_id, user_id)
        post.is_deleted = True
        await db.commit()
        await invalidate(Mutation.POST_DELETED, post_id=post_id, author_id=user_id)
        logger.info("Post deleted: %s by user %s", post_id, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)


# ─────────────────────────── Likes ────────────────────────────────────────

@router.post("/{post_id}/like", response_model=LikeResponse)
async def like_post(
    post_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """Like a post — idempotent. Updates like_count on the post row."""
    with tracer.start_as_current_span("like_post"):
        post = await _load_post(db, post_id)
        existing = await db.get(Like, {"user_id": user_id, "post_id": post_id})
        if existing:
            return LikeResponse(post_id=post_id, liked=True, like_count=post.like_count)

        db.add(Like(user_id=user_id, post_id=post_id))
        post.like_count += 1
        await db.commit()
        response = LikeResponse(post_id=post_id, liked=True, like_count=post.like_count)
        author_id = post.user_id

        await notifier.notify(
            db,
            recipient_id=author_id,
            actor_id=user_id,
            kind=NotificationType.LIKE,
            post_id=post_id,
        )
        await invalidate(Mutation.POST_LIKED, post_id=post_id)
        return response


@router.delete("/{post_id}/like", response_model=LikeResponse)
async def unlike_post(
    post_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("unlike_post"):
        post = await _load_post(db, post_id)
        existing = await db.get(Like, {"user_id": user_id, "post_id": post_id})
        if not existing:
            raise HTTPException(status_code=404, detail="Post not liked")

        await db.delete(existing)
        post.like_count = max(post.like_count - 1, 0)
        await db.commit()
        response = LikeResponse(post_id=post_id, liked=False, like_count=post.like_count)

        await invalidate(Mutation.POST_UNLIKED, post_id=post_id)
        return response


# ─────────────────────────── Comments ─────────────────────────────────────

@router.post("/{post_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    post_id: str,
    body: CommentCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """
    Comment on a post, or reply to a comment when parent_id is given.
    A reply notifies the parent comment's author; a top-level comment
    notifies the post author.
    """
    with tracer.start_as_current_span("add_comment"):
        post = await _load_post(db, post_id)
        parent_author_id = None
        if body.parent_id:
            parent = await db.get(Comment, body.parent_id)
            if not parent or parent.is_deleted or parent.post_id != post_id:
                raise HTTPException(status_code=404, detail="Parent comment not found")
            parent_author_id = parent.user_id

        comment = Comment(
            post_id=post_id, user_id=user_id, parent_id=body.parent_id, content=body.content
        )
        db.add(comment)
        post.comment_count += 1
        await db.commit()
        await db.refresh(comment, ["author"])
        response = _build_comment_response(comment)
        post_author_id = post.user_id

        if parent_author_id:
            recipient_id, kind = parent_author_id, NotificationType.REPLY
        else:
            recipient_id, kind = post_author_id, NotificationType.COMMENT
        await notifier.notify(
            db,
            recipient_id=recipient_id,
            actor_id=user_id,
            kind=kind,
            post_id=post_id,
            comment_id=response.comment_id,
        )
        await invalidate(Mutation.COMMENT_ADDED, post_id=post_id)
        return response


@router.get("/{post_id}/comments", response_model=CommentListResponse)
async def list_comments(
    post_id: str,
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
):
    await _load_post(db, post_id)
    stmt = (
        select(Comment)
        .where(Comment.post_id == post_id, Comment.is_deleted.is_(False))
        .order_by(Comment.created_at.asc())
        .offset(page.offset)
        .limit(page.limit + 1)
    )
    rows = list((await db.execute(stmt)).scalars().unique().all())
    return CommentListResponse(
        comments=[_build_comment_response(c) for c in rows[: page.limit]],
        has_more=len(rows) > page.limit,
    )


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("delete_comment"):
        comment = await db.get(Comment, comment_id)
        if not comment or comment.is_deleted:
            raise HTTPException(status_code=404, detail="Comment not found")
        if comment.user_id != user_id:
            raise HTTPException(status_code=403, detail="Only the author can delete this comment")

        comment.is_deleted = True
        post = await db.get(Post, comment.post_id)
        if post:
            post.comment_count = max(post.comment_count - 1, 0)
        post_id = comment.post_id
        await db.commit()

        await invalidate(Mutation.COMMENT_DELETED, post_id=post_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)


# ─────────────────────────── Reactions ────────────────────────────────────

@router.post("/{post_id}/react", response_model=ReactionResponse)
async def react_to_post(
    post_id: str,
    body: ReactionRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Set the caller's reaction; a second call replaces the emoji."""
    if body.emoji not in VALID_EMOJIS:
        raise HTTPException(
            status_code=400, detail=f"Invalid emoji. Allowed: {' '.join(VALID_EMOJIS)}"
        )
    with tracer.start_as_current_span("react_to_post"):
        await _load_post(db, post_id)
        reaction = await db.get(Reaction, {"post_id": post_id, "user_id": user_id})
        if reaction:
            reaction.emoji = body.emoji
        else:
            reaction = Reaction(post_id=post_id, user_id=user_id, emoji=body.emoji)
            db.add(reaction)
        await db.commit()
        response = ReactionResponse.model_validate(reaction)

        await invalidate(Mutation.REACTION_ADDED, post_id=post_id)
        return response


@router.delete("/{post_id}/react", status_code=status.HTTP_204_NO_CONTENT)
async def remove_reaction(
    post_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    reaction = await db.get(Reaction, {"post_id": post_id, "user_id": user_id})
    if not reaction:
        raise HTTPException(status_code=404, detail="Reaction not found")
    await db.delete(reaction)
    await db.commit()

    await invalidate(Mutation.REACTION_REMOVED, post_id=post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{post_id}/reactions/counts", response_model=ReactionCounts)
async def reaction_counts(
    post_id: str,
    viewer_id: Optional[str] = Depends(get_viewer_id),
    db: AsyncSession = Depends(get_db),
):
    async def load() -> ReactionCounts:
        await _load_post(db, post_id)
        rows = await db.execute(
            select(Reaction.emoji, func.count())
            .where(Reaction.post_id == post_id)
            .group_by(Reaction.emoji)
        )
        counts = dict(rows.all())
        return ReactionCounts(post_id=post_id, counts=counts, total=sum(counts.values()))

    result = await cached(ck.REACTION_COUNTS.key(post_id), settings.cache_ttl_reactions, load)
    if viewer_id:
        mine = await db.get(Reaction, {"post_id": post_id, "user_id": viewer_id})
        result["user_reaction"] = mine.emoji if mine else None
    return result


@router.get("/{post_id}/reactions", response_model=ReactionListResponse)
async def list_reactions(
    post_id: str,
    emoji: Optional[str] = Query(None),
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """Users who reacted to a post, optionally filtered to one emoji."""
    async def load() -> ReactionListResponse:
        await _load_post(db, post_id)
        stmt = select(Reaction).where(Reaction.post_id == post_id)
        if emoji:
            stmt = stmt.where(Reaction.emoji == emoji)
        stmt = (
            stmt.order_by(Reaction.created_at.desc())
            .offset(page.offset)
            .limit(page.limit + 1)
        )
        rows = list((await db.execute(stmt)).scalars().unique().all())
        return ReactionListResponse(
            post_id=post_id,
            reactions=[
                ReactionUser(
                    user_id=r.user_id,
                    username=r.user.username if r.user else None,
                    display_name=r.user.display_name if r.user else None,
                    emoji=r.emoji,
                    created_at=r.created_at,
                )
                for r in rows[: page.limit]
            ],
            has_more=len(rows) > page.limit,
        )

    with tracer.start_as_current_span("list_reactions"):
        key = ck.REACTIONS.key(post_id, emoji, page.limit, page.offset)
        return await cached(key, settings.cache_ttl_reactions, load)
