"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.

Wire format is camelCase (`likesCount`, `isLiked`, …); Python attributes stay
snake_case. Patch bodies forbid unknown keys, which is how the per-entity
allow-lists of mutable fields are enforced.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
# Path segments under /api/users that would shadow a profile URL
RESERVED_USERNAMES = {"me", "search", "login", "logout", "logoutall", "oauth-login"}


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
    )


class PatchModel(ApiModel):
    model_config = ConfigDict(extra="forbid")


def _check_username(value: str) -> str:
    value = value.lower()
    if value in RESERVED_USERNAMES:
        raise ValueError(f"Username '{value}' is reserved")
    return value


def _check_password(value: str) -> str:
    if "password" in value.lower():
        raise ValueError("Password cannot contain 'password'")
    return value


# ──────────────────────────── Users ───────────────────────────────────────

class UserCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=255)
    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=7, max_length=72)
    age: int = Field(0, ge=0)
    bio: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lowercase(cls, value: str) -> str:
        return value.lower()

    @field_validator("username")
    @classmethod
    def check_username(cls, value: str) -> str:
        return _check_username(value)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_password(value)


class UserUpdate(PatchModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    username: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=255)
    age: Optional[int] = Field(None, ge=0)
    bio: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lowercase(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value is not None else value

    @field_validator("username")
    @classmethod
    def check_username(cls, value: Optional[str]) -> Optional[str]:
        return _check_username(value) if value is not None else value


class LoginRequest(ApiModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def lowercase(cls, value: str) -> str:
        return value.lower()


class OAuthUser(ApiModel):
    name: str = Field(..., min_length=1, max_length=255)
    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)

    @field_validator("username", "email")
    @classmethod
    def lowercase(cls, value: str) -> str:
        return value.lower()


class OAuthLoginRequest(ApiModel):
    user: OAuthUser
    token: str = Field(..., min_length=1)
    # Provider name, e.g. 'google'. The wire key is `OAuth`.
    provider: str = Field(..., min_length=1, alias="OAuth")


class PasswordChange(PatchModel):
    old_password: str
    new_password: str = Field(..., min_length=7, max_length=72)

    @field_validator("new_password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_password(value)


class PublicUser(ApiModel):
    """Owner/author fields embedded in posts, comments and user lists."""
    id: str
    name: str
    username: str
    avatar_url: Optional[str] = None


class UserResponse(ApiModel):
    id: str
    name: str
    username: str
    email: str
    age: int
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    oauth_provider: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UserProfile(UserResponse):
    followers_count: int = 0
    followings_count: int = 0
    posts_count: int = 0


class AuthResponse(ApiModel):
    user: UserResponse


class FollowResponse(ApiModel):
    id: str
    follower_id: str
    following_id: str
    created_at: datetime


class FollowResult(ApiModel):
    user: UserResponse
    follow: FollowResponse


class MessageResponse(ApiModel):
    message: str


# ──────────────────────────── Posts ───────────────────────────────────────

class PostUpdate(PatchModel):
    description: Optional[str] = None


class PostResponse(ApiModel):
    """A post hydrated for one viewer. is_liked / is_saved are never stored."""
    id: str
    description: Optional[str] = None
    image_url: Optional[str] = None   # pre-signed MinIO URL
    owner: PublicUser
    likes_count: int
    comments_count: int
    is_liked: bool = False
    is_saved: bool = False
    created_at: datetime
    updated_at: datetime


class LikeResponse(ApiModel):
    id: str
    user_id: str
    post_id: str
    created_at: datetime


class SavedResponse(LikeResponse):
    pass


class CommentCreate(ApiModel):
    text: str = Field(..., min_length=1)


class CommentResponse(ApiModel):
    id: str
    text: str
    post_id: str
    user: PublicUser
    created_at: datetime
