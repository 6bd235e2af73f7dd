"""
Session authentication.

A session credential arrives in the `token` cookie (or an
`Authorization: Bearer` header) and takes one of two shapes:

  DirectSession     — a signed JWT {"_id", "jti"}; the JWT string itself is
                      the stored session token.
  FederatedSession  — a signed JWT wrapper {"_id", "token"} issued by
                      federated login (flagged by the `isOAuth` cookie); the
                      embedded provider token is the stored session token.

Either way the user must still hold a matching row in `sessions`, so logout
revokes a token even though its signature stays valid.
"""
import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Union

import bcrypt
from fastapi import Depends, Request, Response
from jose import JWTError, jwt
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.errors import Unauthenticated, ValidationFailed
from app.models import Session, User

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"
OAUTH_COOKIE = "isOAuth"

TOO_MANY_SESSIONS = (
    "You have exceeded the maximum number of sessions allowed. "
    "Please log out of one of your other devices and try again."
)


@dataclass(frozen=True)
class DirectSession:
    token: str


@dataclass(frozen=True)
class FederatedSession:
    wrapper: str


SessionCredential = Union[DirectSession, FederatedSession]


# ──────────────────────────── Passwords ───────────────────────────────────

def hash_password(password: str) -> str:
    """Hash password using bcrypt"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=8)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify password against hashed value"""
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


# ──────────────────────────── Tokens ──────────────────────────────────────

def _sign(claims: dict) -> str:
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _decode(token: str) -> dict:
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise Unauthenticated()
    if not isinstance(claims.get("_id"), str):
        raise Unauthenticated()
    return claims


def resolve_credential(credential: SessionCredential) -> tuple[str, str]:
    """Verify a credential and return (user_id, stored session token)."""
    if isinstance(credential, DirectSession):
        claims = _decode(credential.token)
        return claims["_id"], credential.token
    if isinstance(credential, FederatedSession):
        claims = _decode(credential.wrapper)
        embedded = claims.get("token")
        if not isinstance(embedded, str) or not embedded:
            raise Unauthenticated()
        return claims["_id"], embedded
    raise Unauthenticated()


def read_credential(request: Request) -> Optional[SessionCredential]:
    token = request.cookies.get(TOKEN_COOKIE)
    if not token:
        header = request.headers.get("Authorization", "")
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value:
            return DirectSession(value.strip())
        return None
    if request.cookies.get(OAUTH_COOKIE):
        return FederatedSession(token)
    return DirectSession(token)


async def _count_sessions(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Session).where(Session.user_id == user_id)
    )
    return result.scalar_one()


async def _check_session_cap(db: AsyncSession, user_id: str) -> None:
    # Locking the user row serializes concurrent logins of the same user
    await db.execute(select(User.id).where(User.id == user_id).with_for_update())
    if await _count_sessions(db, user_id) >= settings.max_sessions:
        raise ValidationFailed(TOO_MANY_SESSIONS)


async def issue_session(db: AsyncSession, user: User) -> str:
    """Create a direct session for `user` and return the signed token."""
    await _check_session_cap(db, user.id)
    token = _sign({"_id": user.id, "jti": secrets.token_hex(16)})
    db.add(Session(user_id=user.id, token=token))
    await db.flush()
    return token


async def issue_federated_session(db: AsyncSession, user: User, provider_token: str) -> str:
    """Store the provider token as a session and return the signed wrapper."""
    await _check_session_cap(db, user.id)
    db.add(Session(user_id=user.id, token=provider_token))
    await db.flush()
    return _sign({"_id": user.id, "token": provider_token})


async def revoke_session(db: AsyncSession, user_id: str, session_token: str) -> None:
    await db.execute(
        delete(Session).where(Session.user_id == user_id, Session.token == session_token)
    )


async def revoke_all_sessions(db: AsyncSession, user_id: str) -> None:
    await db.execute(delete(Session).where(Session.user_id == user_id))


# ──────────────────────────── Cookies ─────────────────────────────────────

def _cookie_kwargs() -> dict:
    return {
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": settings.cookie_samesite,
    }


def set_session_cookies(response: Response, token: str, federated: bool = False) -> None:
    max_age = settings.session_cookie_max_age
    response.set_cookie(TOKEN_COOKIE, token, max_age=max_age, **_cookie_kwargs())
    if federated:
        response.set_cookie(OAUTH_COOKIE, "true", max_age=max_age, **_cookie_kwargs())


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(TOKEN_COOKIE, **_cookie_kwargs())
    response.delete_cookie(OAUTH_COOKIE, **_cookie_kwargs())


# ──────────────────────────── Dependencies ────────────────────────────────

async def _resolve_user(
    db: AsyncSession, credential: SessionCredential
) -> tuple[User, str]:
    user_id, session_token = resolve_credential(credential)
    result = await db.execute(
        select(User)
        .join(Session, Session.user_id == User.id)
        .where(User.id == user_id, Session.token == session_token)
    )
    user = result.scalars().first()
    if user is None:
        raise Unauthenticated()
    return user, session_token


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    """
    FastAPI dependency: resolve the session credential to a User.

    The user and the active session token are attached to request.state for
    downstream handlers (logout needs the token).
    """
    credential = read_credential(request)
    if credential is None:
        raise Unauthenticated()
    user, session_token = await _resolve_user(db, credential)
    request.state.user = user
    request.state.session_token = session_token
    return user


async def get_optional_user(
    request: Request, db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """Like get_current_user, but anonymous or stale credentials yield None."""
    credential = read_credential(request)
    if credential is None:
        return None
    try:
        user, session_token = await _resolve_user(db, credential)
    except Unauthenticated:
        return None
    request.state.user = user
    request.state.session_token = session_token
    return user
