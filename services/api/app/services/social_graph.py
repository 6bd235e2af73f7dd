"""
Social graph queries and the "who to follow" suggestion ranking.

Ranking is two-tier:

  1. Collaborative — candidates are users followed by the viewer's
     followees, scored by how many followees follow them. Sorted by score
     descending, ties broken by user id ascending.
  2. Cold start — when tier 1 yields nothing (the viewer follows nobody, or
     their followees follow nobody new), every user the viewer doesn't
     already follow, oldest account first (id breaks timestamp ties).

The viewer never appears in their own suggestions.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Follow, Post, User
from app.telemetry import SUGGESTIONS_TOTAL

logger = logging.getLogger(__name__)

COLLABORATIVE = "collaborative"
COLD_START = "cold_start"


@dataclass
class Suggestions:
    user_ids: list[str]
    strategy: str


def followee_ids_query(user_id: str):
    """SELECT of the ids `user_id` follows, usable as an IN (...) subquery."""
    return select(Follow.following_id).where(Follow.follower_id == user_id)


async def followee_ids(db: AsyncSession, user_id: str) -> list[str]:
    result = await db.execute(followee_ids_query(user_id))
    return list(result.scalars().all())


async def suggest_user_ids(db: AsyncSession, viewer_id: str) -> Suggestions:
    followed = followee_ids_query(viewer_id)

    score = func.count(Follow.follower_id).label("score")
    ranked = await db.execute(
        select(Follow.following_id, score)
        .where(
            Follow.follower_id.in_(followed),
            Follow.following_id.not_in(followed),
            Follow.following_id != viewer_id,
        )
        .group_by(Follow.following_id)
        .order_by(score.desc(), Follow.following_id.asc())
    )
    user_ids = [row.following_id for row in ranked]
    if user_ids:
        SUGGESTIONS_TOTAL.labels(strategy=COLLABORATIVE).inc()
        return Suggestions(user_ids, COLLABORATIVE)

    cold = await db.execute(
        select(User.id)
        .where(User.id.not_in(followed), User.id != viewer_id)
        .order_by(User.created_at.asc(), User.id.asc())
    )
    SUGGESTIONS_TOTAL.labels(strategy=COLD_START).inc()
    logger.debug("No collaborative signal for %s — cold-start suggestions", viewer_id)
    return Suggestions(list(cold.scalars().all()), COLD_START)


async def load_users_in_order(db: AsyncSession, user_ids: list[str]) -> list[User]:
    """Fetch users by id and return them in the order of `user_ids`."""
    if not user_ids:
        return []
    rows = await db.execute(select(User).where(User.id.in_(user_ids)))
    by_id = {user.id: user for user in rows.scalars().all()}
    return [by_id[uid] for uid in user_ids if uid in by_id]


async def suggest_users(
    db: AsyncSession, viewer: User, skip: int, limit: int
) -> list[User]:
    suggestions = await suggest_user_ids(db, viewer.id)
    page = suggestions.user_ids[skip: skip + limit]
    return await load_users_in_order(db, page)


async def graph_counts(db: AsyncSession, user_id: str) -> dict[str, int]:
    """Followers, followings and posts of a user, counted from source rows."""
    followers = await db.execute(
        select(func.count()).select_from(Follow).where(Follow.following_id == user_id)
    )
    followings = await db.execute(
        select(func.count()).select_from(Follow).where(Follow.follower_id == user_id)
    )
    posts = await db.execute(
        select(func.count()).select_from(Post).where(Post.owner_id == user_id)
    )
    return {
        "followers_count": followers.scalar_one(),
        "followings_count": followings.scalar_one(),
        "posts_count": posts.scalar_one(),
    }


async def list_followers(
    db: AsyncSession, user_id: str, skip: int, limit: int
) -> list[User]:
    rows = await db.execute(
        select(User)
        .join(Follow, Follow.follower_id == User.id)
        .where(Follow.following_id == user_id)
        .order_by(Follow.created_at.desc(), Follow.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(rows.scalars().all())


async def list_followings(
    db: AsyncSession, user_id: str, skip: int, limit: int
) -> list[User]:
    rows = await db.execute(
        select(User)
        .join(Follow, Follow.following_id == User.id)
        .where(Follow.follower_id == user_id)
        .order_by(Follow.created_at.desc(), Follow.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(rows.scalars().all())
