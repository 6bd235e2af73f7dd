"""
Cascading deletes for posts and users.

These run inside the caller's session, so the whole cascade commits or rolls
back as one transaction. Object-store keys are returned instead of deleted
here: the route removes them only after the commit succeeds.
"""
import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Comment, Follow, Like, Post, Saved, Session, User

logger = logging.getLogger(__name__)


async def delete_post(db: AsyncSession, post: Post) -> list[str]:
    """Delete a post with its likes, comments and saved rows."""
    await db.execute(delete(Like).where(Like.post_id == post.id))
    await db.execute(delete(Comment).where(Comment.post_id == post.id))
    await db.execute(delete(Saved).where(Saved.post_id == post.id))
    await db.delete(post)
    await db.flush()
    logger.info("Deleted post %s (owner=%s)", post.id, post.owner_id)
    return [post.image_key] if post.image_key else []


async def _decrement(db: AsyncSession, model, column, user_id: str) -> None:
    """
    Give back one unit of `column` on every post the user touched through
    `model` (Like → likes_count, Comment → comments_count).
    """
    per_post = await db.execute(
        select(model.post_id, func.count())
        .where(model.user_id == user_id)
        .group_by(model.post_id)
    )
    for post_id, count in per_post.all():
        await db.execute(
            update(Post)
            .where(Post.id == post_id)
            .values({column: column - count})
            .execution_options(synchronize_session=False)
        )


async def delete_user(db: AsyncSession, user: User) -> list[str]:
    """
    Delete a user and everything hanging off them. Counters on other users'
    posts are decremented for the likes and comments removed.
    """
    media_keys: list[str] = []

    owned = await db.execute(select(Post).where(Post.owner_id == user.id))
    for post in owned.scalars().all():
        media_keys.extend(await delete_post(db, post))

    await _decrement(db, Like, Post.likes_count, user.id)
    await _decrement(db, Comment, Post.comments_count, user.id)

    await db.execute(delete(Like).where(Like.user_id == user.id))
    await db.execute(delete(Comment).where(Comment.user_id == user.id))
    await db.execute(delete(Saved).where(Saved.user_id == user.id))
    await db.execute(
        delete(Follow).where(
            (Follow.follower_id == user.id) | (Follow.following_id == user.id)
        )
    )
    await db.execute(delete(Session).where(Session.user_id == user.id))

    if user.avatar_key:
        media_keys.append(user.avatar_key)

    await db.delete(user)
    await db.flush()
    logger.info("Deleted user %s with %d media objects pending", user.id, len(media_keys))
    return media_keys
