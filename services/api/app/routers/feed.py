"""
Timeline endpoints (mounted at /api):
  GET /feeds    — posts from followed users, newest first
  GET /explore  — posts from suggested users, by suggestion rank then recency

Both surfaces hydrate each page the same way: pre-signed image URLs, owner
profile, and the viewer's isLiked / isSaved flags.
"""
import logging
import time

from fastapi import APIRouter, Depends
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_current_user
from app.database import get_db
from app.models import User
from app.routers.pagination import Page
from app.schemas import PostResponse
from app.services.feed import compose_explore, compose_feed
from app.telemetry import FEED_LATENCY

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.get("/feeds", response_model=list[PostResponse])
async def get_feed(
    page: Page = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    with tracer.start_as_current_span("get_feed") as span:
        span.set_attribute("user.id", user.id)
        span.set_attribute("page.skip", page.skip)
        span.set_attribute("page.limit", page.limit)

        posts = await compose_feed(db, user, page.skip, page.limit)

        span.set_attribute("feed.posts_returned", len(posts))
    FEED_LATENCY.labels(surface="feed").observe(time.time() - start_time)
    return posts


@router.get("/explore", response_model=list[PostResponse])
async def get_explore(
    page: Page = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    with tracer.start_as_current_span("get_explore") as span:
        span.set_attribute("user.id", user.id)
        span.set_attribute("page.skip", page.skip)
        span.set_attribute("page.limit", page.limit)

        posts = await compose_explore(db, user, page.skip, page.limit)

        span.set_attribute("explore.posts_returned", len(posts))
    FEED_LATENCY.labels(surface="explore").observe(time.time() - start_time)
    return posts
