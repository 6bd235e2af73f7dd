"""
Post endpoints (mounted at /api/posts):
  POST   /                          — create a post (multipart, optional image)
  GET    /{id}                      — fetch a single post for the viewer
  PATCH  /{id}                      — edit description (owner only)
  DELETE /{id}                      — delete with likes/comments/saved/media
  POST   /{id}/like, DELETE /{id}/unlike
  POST   /{id}/save, DELETE /{id}/unsave
  GET    /{id}/likes                — users who liked the post
  GET    /{id}/comments             — comments, newest first
  POST   /{id}/comment, DELETE /{id}/comment/{comment_id}

likes_count / comments_count move in the same transaction as the Like or
Comment row they count, using SQL-side arithmetic.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from opentelemetry import trace
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_current_user
from app.clients.minio_client import delete_media_many, is_supported_image, upload_media
from app.config import settings
from app.database import get_db
from app.errors import NotFound, Unauthorized, ValidationFailed
from app.models import Comment, Like, Post, Saved, User
from app.routers.pagination import Page
from app.schemas import (
    CommentCreate,
    CommentResponse,
    LikeResponse,
    PostResponse,
    PostUpdate,
    PublicUser,
    SavedResponse,
)
from app.services import cascade
from app.services.feed import project_posts, public_user
from app.telemetry import POSTS_CREATED_TOTAL

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


async def _get_post(db: AsyncSession, post_id: str, for_update: bool = False) -> Post:
    post = await db.get(Post, post_id, with_for_update=for_update)
    if not post:
        raise NotFound("Post not found")
    return post


async def _get_owned_post(db: AsyncSession, post_id: str, user: User) -> Post:
    post = await _get_post(db, post_id)
    if post.owner_id != user.id:
        raise Unauthorized("You can only modify your own posts")
    return post


async def _project_one(db: AsyncSession, post: Post, viewer: User) -> PostResponse:
    await db.refresh(post)
    projected = await project_posts(db, [post], viewer, settings.post_detail_url_ttl)
    return projected[0]


async def delete_row(db: AsyncSession, model, row_id: str, missing: str) -> None:
    """Delete one row by id. A row already removed by another request is NotFound."""
    result = await db.execute(delete(model).where(model.id == row_id))
    if result.rowcount == 0:
        raise NotFound(missing)


def _bump(column, delta: int, post_id: str):
    return (
        update(Post)
        .where(Post.id == post_id)
        .values({column: column + delta})
        .execution_options(synchronize_session=False)
    )


def _comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        text=comment.text,
        post_id=comment.post_id,
        user=public_user(comment.user),
        created_at=comment.created_at,
    )


# ──────────────────────────── CRUD ────────────────────────────────────────

@router.post("", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    1. Validate and upload the image to MinIO (if provided).
    2. Persist the post row.
    """
    with tracer.start_as_current_span("create_post") as span:
        image_key = None
        if image is not None and image.filename:
            if not is_supported_image(image.content_type):
                raise ValidationFailed("Please upload an image")
            data = await image.read()
            if not data or len(data) > settings.max_upload_bytes:
                raise ValidationFailed("Image is empty or too large")
            image_key = upload_media(data, image.content_type, prefix="posts")

        post = Post(
            owner_id=user.id,
            owner=user,
            description=description.strip() if description else None,
            image_key=image_key,
        )
        db.add(post)
        await db.flush()

        span.set_attribute("post.id", post.id)
        span.set_attribute("post.owner_id", user.id)
        POSTS_CREATED_TOTAL.inc()
        logger.info("Post created: %s by user %s", post.id, user.id)
        return await _project_one(db, post, user)


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id)
    return await _project_one(db, post, user)


@router.patch("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: str,
    body: PostUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_owned_post(db, post_id, user)
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(post, field, value)
    await db.flush()
    return await _project_one(db, post, user)


@router.delete("/{post_id}", response_model=PostResponse)
async def delete_post(
    post_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("delete_post") as span:
        span.set_attribute("post.id", post_id)
        post = await _get_owned_post(db, post_id, user)
        snapshot = await _project_one(db, post, user)
        media_keys = await cascade.delete_post(db, post)
        await db.commit()
        delete_media_many(media_keys)
        return snapshot


# ──────────────────────────── Likes ───────────────────────────────────────

@router.post("/{post_id}/like", response_model=LikeResponse, status_code=status.HTTP_201_CREATED)
async def like_post(
    post_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id, for_update=True)
    existing = await db.execute(
        select(Like.id).where(Like.user_id == user.id, Like.post_id == post.id)
    )
    if existing.scalar_one_or_none():
        raise ValidationFailed("Post already liked")

    like = Like(user_id=user.id, post_id=post.id)
    db.add(like)
    try:
        await db.flush()
    except IntegrityError:
        raise ValidationFailed("Post already liked")
    await db.execute(_bump(Post.likes_count, 1, post.id))
    return like


@router.delete("/{post_id}/unlike", response_model=LikeResponse)
async def unlike_post(
    post_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id, for_update=True)
    existing = await db.execute(
        select(Like).where(Like.user_id == user.id, Like.post_id == post.id)
    )
    like = existing.scalar_one_or_none()
    if not like:
        raise NotFound("Like not found")

    result = LikeResponse.model_validate(like)
    await delete_row(db, Like, like.id, "Like not found")
    await db.execute(_bump(Post.likes_count, -1, post.id))
    return result


@router.get("/{post_id}/likes", response_model=list[PublicUser])
async def list_likes(
    post_id: str,
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id)
    rows = await db.execute(
        select(User)
        .join(Like, Like.user_id == User.id)
        .where(Like.post_id == post.id)
        .order_by(Like.created_at.desc(), Like.id.desc())
        .offset(page.skip)
        .limit(page.limit)
    )
    return [public_user(u) for u in rows.scalars().all()]


# ──────────────────────────── Saved ───────────────────────────────────────

@router.post("/{post_id}/save", response_model=SavedResponse, status_code=status.HTTP_201_CREATED)
async def save_post(
    post_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id)
    existing = await db.execute(
        select(Saved.id).where(Saved.user_id == user.id, Saved.post_id == post.id)
    )
    if existing.scalar_one_or_none():
        raise ValidationFailed("Post already saved")

    saved = Saved(user_id=user.id, post_id=post.id)
    db.add(saved)
    try:
        await db.flush()
    except IntegrityError:
        raise ValidationFailed("Post already saved")
    return saved


@router.delete("/{post_id}/unsave", response_model=SavedResponse)
async def unsave_post(
    post_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id)
    existing = await db.execute(
        select(Saved).where(Saved.user_id == user.id, Saved.post_id == post.id)
    )
    saved = existing.scalar_one_or_none()
    if not saved:
        raise NotFound("Saved not found")

    result = SavedResponse.model_validate(saved)
    await delete_row(db, Saved, saved.id, "Saved not found")
    return result


# ──────────────────────────── Comments ────────────────────────────────────

@router.get("/{post_id}/comments", response_model=list[CommentResponse])
async def list_comments(
    post_id: str,
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id)
    rows = await db.execute(
        select(Comment)
        .where(Comment.post_id == post.id)
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .offset(page.skip)
        .limit(page.limit)
    )
    return [_comment_response(c) for c in rows.scalars().all()]


@router.post("/{post_id}/comment", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    post_id: str,
    body: CommentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id, for_update=True)
    comment = Comment(text=body.text, user_id=user.id, post_id=post.id)
    db.add(comment)
    await db.flush()
    await db.execute(_bump(Post.comments_count, 1, post.id))
    comment.user = user
    return _comment_response(comment)


@router.delete("/{post_id}/comment/{comment_id}", response_model=CommentResponse)
async def delete_comment(
    post_id: str,
    comment_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_post(db, post_id, for_update=True)
    comment = await db.get(Comment, comment_id)
    if not comment or comment.post_id != post.id:
        raise NotFound("Comment not found")
    if comment.user_id != user.id:
        raise Unauthorized("You can only delete your own comments")

    result = _comment_response(comment)
    await delete_row(db, Comment, comment.id, "Comment not found")
    await db.execute(_bump(Post.comments_count, -1, post.id))
    return result
