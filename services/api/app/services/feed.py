"""
Feed composition and per-viewer post hydration.

  compose_feed     — posts from the viewer's followees, newest first. A viewer
                     who follows nobody sees every post except their own.
  compose_explore  — posts from suggested users (see social_graph), ordered
                     by suggestion rank, then newest first.
  project_posts    — turns Post rows into PostResponse for one viewer:
                     pre-signed media URLs, owner profile, isLiked/isSaved.

isLiked / isSaved are computed with one bulk query per page and exist only
on the response; nothing here writes to the posts table.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.minio_client import get_presigned_url
from app.config import settings
from app.models import Like, Post, Saved, User
from app.schemas import PostResponse, PublicUser
from app.services.social_graph import followee_ids, suggest_user_ids

logger = logging.getLogger(__name__)

NEWEST_FIRST = (Post.created_at.desc(), Post.id.desc())


def public_user(user: User) -> PublicUser:
    return PublicUser(
        id=user.id,
        name=user.name,
        username=user.username,
        avatar_url=get_presigned_url(user.avatar_key, settings.avatar_url_ttl),
    )


async def _viewer_marks(
    db: AsyncSession, model, viewer_id: str, post_ids: list[str]
) -> set[str]:
    rows = await db.execute(
        select(model.post_id).where(model.user_id == viewer_id, model.post_id.in_(post_ids))
    )
    return set(rows.scalars().all())


async def project_posts(
    db: AsyncSession,
    posts: Iterable[Post],
    viewer: Optional[User],
    url_ttl: int,
) -> list[PostResponse]:
    posts = list(posts)
    if not posts:
        return []

    liked: set[str] = set()
    saved: set[str] = set()
    if viewer is not None:
        post_ids = [p.id for p in posts]
        liked = await _viewer_marks(db, Like, viewer.id, post_ids)
        saved = await _viewer_marks(db, Saved, viewer.id, post_ids)

    owners: dict[str, PublicUser] = {}
    projected = []
    for post in posts:
        if post.owner_id not in owners:
            owners[post.owner_id] = public_user(post.owner)
        projected.append(
            PostResponse(
                id=post.id,
                description=post.description,
                image_url=get_presigned_url(post.image_key, url_ttl),
                owner=owners[post.owner_id],
                likes_count=post.likes_count,
                comments_count=post.comments_count,
                is_liked=post.id in liked,
                is_saved=post.id in saved,
                created_at=post.created_at,
                updated_at=post.updated_at,
            )
        )
    return projected


async def compose_feed(
    db: AsyncSession, viewer: User, skip: int, limit: int
) -> list[PostResponse]:
    following = await followee_ids(db, viewer.id)

    query = select(Post)
    if following:
        query = query.where(Post.owner_id.in_(following))
    else:
        # Nobody followed yet: show everyone else's posts rather than nothing
        query = query.where(Post.owner_id != viewer.id)

    rows = await db.execute(query.order_by(*NEWEST_FIRST).offset(skip).limit(limit))
    posts = rows.scalars().all()
    return await project_posts(db, posts, viewer, settings.post_image_url_ttl)


async def compose_explore(
    db: AsyncSession, viewer: User, skip: int, limit: int
) -> list[PostResponse]:
    suggestions = await suggest_user_ids(db, viewer.id)
    if not suggestions.user_ids:
        return []

    rank = case(
        {uid: position for position, uid in enumerate(suggestions.user_ids)},
        value=Post.owner_id,
    )
    rows = await db.execute(
        select(Post)
        .where(Post.owner_id.in_(suggestions.user_ids))
        .order_by(rank.asc(), *NEWEST_FIRST)
        .offset(skip)
        .limit(limit)
    )
    posts = rows.scalars().all()
    logger.debug(
        "Explore for %s: %d posts from %d %s suggestions",
        viewer.id, len(posts), len(suggestions.user_ids), suggestions.strategy,
    )
    return await project_posts(db, posts, viewer, settings.post_image_url_ttl)


async def posts_by_owner(
    db: AsyncSession, owner_id: str, viewer: Optional[User], skip: int, limit: int
) -> list[PostResponse]:
    rows = await db.execute(
        select(Post)
        .where(Post.owner_id == owner_id)
        .order_by(*NEWEST_FIRST)
        .offset(skip)
        .limit(limit)
    )
    return await project_posts(db, rows.scalars().all(), viewer, settings.post_detail_url_ttl)


async def posts_marked_by(
    db: AsyncSession, model, viewer: User, skip: int, limit: int
) -> list[PostResponse]:
    """Posts the viewer liked (model=Like) or saved (model=Saved), latest mark first."""
    rows = await db.execute(
        select(Post)
        .join(model, model.post_id == Post.id)
        .where(model.user_id == viewer.id)
        .order_by(model.created_at.desc(), model.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return await project_posts(db, rows.scalars().all(), viewer, settings.post_detail_url_ttl)
