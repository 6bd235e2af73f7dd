"""
User management endpoints (mounted at /api/users):
  POST   /                       — register
  POST   /login                  — password login
  POST   /oauth-login            — federated login (feature-flagged)
  POST   /logout, /logoutall     — revoke current / all sessions
  GET    /me                     — current user
  PATCH  /me                     — edit profile (allow-listed fields)
  DELETE /me                     — delete account (cascades)
  POST   /me/avatar              — upload avatar
  PATCH  /me/change-password
  GET    /me/user-suggestions    — who to follow
  GET    /me/liked, /me/saved    — the viewer's liked / saved posts
  GET    /search?q=              — username / name substring search
  GET    /{username}             — public profile
  GET    /{username}/posts       — a user's posts
  GET    /{username}/followers, /{username}/followings
  POST   /{username}/follow, DELETE /{username}/unfollow
"""
import logging
import re
import secrets

from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile, status
from opentelemetry import trace
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import (
    clear_session_cookies,
    get_current_user,
    get_optional_user,
    hash_password,
    issue_federated_session,
    issue_session,
    revoke_all_sessions,
    revoke_session,
    set_session_cookies,
    verify_password,
)
from app.clients.minio_client import (
    delete_media,
    delete_media_many,
    get_presigned_url,
    is_supported_image,
    upload_media,
)
from app.config import settings
from app.database import get_db
from app.errors import NotFound, ValidationFailed
from app.models import Follow, Like, Saved, User
from app.routers.pagination import Page
from app.schemas import (
    AuthResponse,
    FollowResponse,
    FollowResult,
    LoginRequest,
    MessageResponse,
    OAuthLoginRequest,
    PasswordChange,
    PostResponse,
    PublicUser,
    UserCreate,
    UserProfile,
    UserResponse,
    UserUpdate,
)
from app.services import cascade, social_graph
from app.services.feed import posts_by_owner, posts_marked_by, public_user

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def user_response(user: User) -> UserResponse:
    response = UserResponse.model_validate(user)
    response.avatar_url = get_presigned_url(user.avatar_key, settings.avatar_url_ttl)
    return response


async def user_profile(db: AsyncSession, user: User) -> UserProfile:
    counts = await social_graph.graph_counts(db, user.id)
    return UserProfile(**user_response(user).model_dump(), **counts)


async def _ensure_unique(db: AsyncSession, user_id: str = "", **fields) -> None:
    for field, value in fields.items():
        if value is None:
            continue
        column = getattr(User, field)
        taken = await db.execute(select(User.id).where(column == value, User.id != user_id))
        if taken.scalar_one_or_none():
            raise ValidationFailed(f"{field.capitalize()} '{value}' already taken")


async def _get_by_username(db: AsyncSession, username: str) -> User:
    result = await db.execute(select(User).where(User.username == username.lower()))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound("User not found")
    return user


# ──────────────────────────── Accounts & sessions ─────────────────────────

@router.post("", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(body: UserCreate, response: Response, db: AsyncSession = Depends(get_db)):
    with tracer.start_as_current_span("register"):
        await _ensure_unique(db, username=body.username, email=body.email)

        user = User(
            name=body.name,
            username=body.username,
            email=body.email,
            password_hash=hash_password(body.password),
            age=body.age,
            bio=body.bio,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            raise ValidationFailed("Username or email already taken")

        token = await issue_session(db, user)
        set_session_cookies(response, token)
        logger.info("Created user %s (id=%s)", user.username, user.id)
        return AuthResponse(user=user_response(user))


@router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, response: Response, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.username == body.username))
    user = result.scalar_one_or_none()
    if not user:
        raise ValidationFailed("No user found")
    if not verify_password(body.password, user.password_hash):
        raise ValidationFailed("Password is incorrect")

    token = await issue_session(db, user)
    set_session_cookies(response, token)
    return AuthResponse(user=user_response(user))


@router.post("/oauth-login", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def oauth_login(
    body: OAuthLoginRequest, response: Response, db: AsyncSession = Depends(get_db)
):
    """
    Federated login. The provider has already authenticated the user
    client-side; this stores the provider token as a session.

    Matching rules: an unknown username creates a new account; a known
    username with the same email and provider logs into that account; a known
    username belonging to someone else gets a new account under `<username>1`.
    """
    if not settings.oauth_login_enabled:
        raise NotFound("Federated login is not enabled")

    profile = body.user
    result = await db.execute(select(User).where(User.username == profile.username))
    user = result.scalar_one_or_none()
    if user is not None and not (
        user.email == profile.email and user.oauth_provider == body.provider
    ):
        username = f"{profile.username}1"
        result = await db.execute(
            select(User).where(
                User.username == username,
                User.email == profile.email,
                User.oauth_provider == body.provider,
            )
        )
        user = result.scalar_one_or_none()
        if user is None:
            await _ensure_unique(db, username=username, email=profile.email)
            user = User(name=profile.name, username=username, email=profile.email)
    elif user is None:
        await _ensure_unique(db, email=profile.email)
        user = User(name=profile.name, username=profile.username, email=profile.email)

    if user.id is None:
        # Federated accounts have no usable password
        user.password_hash = hash_password(secrets.token_urlsafe(32))
        user.oauth_provider = body.provider
        db.add(user)
        await db.flush()
        logger.info("Created %s user %s (id=%s)", body.provider, user.username, user.id)

    wrapper = await issue_federated_session(db, user, body.token)
    set_session_cookies(response, wrapper, federated=True)
    return AuthResponse(user=user_response(user))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await revoke_session(db, user.id, request.state.session_token)
    clear_session_cookies(response)
    return MessageResponse(message="Logout successfully")


@router.post("/logoutall", response_model=MessageResponse)
async def logout_all(
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await revoke_all_sessions(db, user.id)
    clear_session_cookies(response)
    return MessageResponse(message="Logout successfully")


# ──────────────────────────── Current user ────────────────────────────────

@router.get("/me", response_model=UserProfile)
async def get_me(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await user_profile(db, user)


@router.patch("/me", response_model=UserResponse)
async def update_me(
    body: UserUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    updates = body.model_dump(exclude_unset=True)
    for field in ("name", "username", "email", "age"):
        if field in updates and updates[field] is None:
            raise ValidationFailed(f"{field} cannot be null")

    await _ensure_unique(
        db, user.id, username=updates.get("username"), email=updates.get("email")
    )
    for field, value in updates.items():
        setattr(user, field, value)
    try:
        await db.flush()
    except IntegrityError:
        raise ValidationFailed("Username or email already taken")
    return user_response(user)


@router.delete("/me", response_model=UserResponse)
async def delete_me(
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("delete_user") as span:
        span.set_attribute("user.id", user.id)
        snapshot = user_response(user)
        media_keys = await cascade.delete_user(db, user)
        await db.commit()
        delete_media_many(media_keys)
        clear_session_cookies(response)
        return snapshot


@router.post("/me/avatar", response_model=UserResponse)
async def upload_avatar(
    image: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not is_supported_image(image.content_type):
        raise ValidationFailed("Please upload an image")
    data = await image.read()
    if not data or len(data) > settings.max_upload_bytes:
        raise ValidationFailed("Image is empty or too large")

    previous = user.avatar_key
    user.avatar_key = upload_media(data, image.content_type, prefix="avatars")
    await db.commit()
    if previous:
        delete_media(previous)
    return user_response(user)


@router.patch("/me/change-password", response_model=UserResponse)
async def change_password(
    body: PasswordChange,
    user: User = Depends(get_current_user),
):
    if not verify_password(body.old_password, user.password_hash):
        raise ValidationFailed("Password is incorrect")
    user.password_hash = hash_password(body.new_password)
    return user_response(user)


@router.get("/me/user-suggestions", response_model=list[UserResponse])
async def user_suggestions(
    page: Page = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("user_suggestions"):
        users = await social_graph.suggest_users(db, user, page.skip, page.limit)
        return [user_response(u) for u in users]


@router.get("/me/liked", response_model=list[PostResponse])
async def liked_posts(
    page: Page = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await posts_marked_by(db, Like, user, page.skip, page.limit)


@router.get("/me/saved", response_model=list[PostResponse])
async def saved_posts(
    page: Page = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await posts_marked_by(db, Saved, user, page.skip, page.limit)


# ──────────────────────────── Discovery ───────────────────────────────────

def _like_pattern(term: str) -> str:
    """Case-insensitive substring pattern with LIKE wildcards escaped."""
    return "%" + re.sub(r"([\\%_])", r"\\\1", term.lower()) + "%"


@router.get("/search", response_model=list[PublicUser])
async def search_users(
    q: str = Query(..., min_length=1, max_length=100),
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
):
    term = q.strip()
    if not term:
        raise ValidationFailed("Search query cannot be blank")
    pattern = _like_pattern(term)
    rows = await db.execute(
        select(User)
        .where(
            or_(
                func.lower(User.username).like(pattern, escape="\\"),
                func.lower(User.name).like(pattern, escape="\\"),
            )
        )
        .order_by(User.username.asc())
        .offset(page.skip)
        .limit(page.limit)
    )
    return [public_user(u) for u in rows.scalars().all()]


# ──────────────────────────── Public profiles & graph ─────────────────────

@router.get("/{username}", response_model=UserProfile)
async def get_user(username: str, db: AsyncSession = Depends(get_db)):
    user = await _get_by_username(db, username)
    return await user_profile(db, user)


@router.get("/{username}/posts", response_model=list[PostResponse])
async def user_posts(
    username: str,
    page: Page = Depends(),
    viewer: User = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    owner = await _get_by_username(db, username)
    return await posts_by_owner(db, owner.id, viewer, page.skip, page.limit)


@router.get("/{username}/followers", response_model=list[PublicUser])
async def list_followers(
    username: str, page: Page = Depends(), db: AsyncSession = Depends(get_db)
):
    user = await _get_by_username(db, username)
    users = await social_graph.list_followers(db, user.id, page.skip, page.limit)
    return [public_user(u) for u in users]


@router.get("/{username}/followings", response_model=list[PublicUser])
async def list_followings(
    username: str, page: Page = Depends(), db: AsyncSession = Depends(get_db)
):
    user = await _get_by_username(db, username)
    users = await social_graph.list_followings(db, user.id, page.skip, page.limit)
    return [public_user(u) for u in users]


@router.post("/{username}/follow", response_model=FollowResult, status_code=status.HTTP_201_CREATED)
async def follow_user(
    username: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a follower → following edge in the social graph."""
    with tracer.start_as_current_span("follow_user"):
        if user.username == username.lower():
            raise ValidationFailed("Cannot follow yourself")
        target = await _get_by_username(db, username)

        existing = await db.execute(
            select(Follow).where(
                Follow.follower_id == user.id, Follow.following_id == target.id
            )
        )
        if existing.scalar_one_or_none():
            raise ValidationFailed("Already following")

        follow = Follow(follower_id=user.id, following_id=target.id)
        db.add(follow)
        try:
            await db.flush()
        except IntegrityError:
            raise ValidationFailed("Already following")

        logger.info("%s followed %s", user.id, target.id)
        return FollowResult(user=user_response(user), follow=FollowResponse.model_validate(follow))


@router.delete("/{username}/unfollow", response_model=FollowResult)
async def unfollow_user(
    username: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("unfollow_user"):
        if user.username == username.lower():
            raise ValidationFailed("Cannot unfollow yourself")
        target = await _get_by_username(db, username)

        existing = await db.execute(
            select(Follow).where(
                Follow.follower_id == user.id, Follow.following_id == target.id
            )
        )
        follow = existing.scalar_one_or_none()
        if not follow:
            raise NotFound("No follow found")

        result = FollowResult(user=user_response(user), follow=FollowResponse.model_validate(follow))
        await db.execute(delete(Follow).where(Follow.id == follow.id))
        logger.info("%s unfollowed %s", user.id, target.id)
        return result
