"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database (MySQL-protocol; SQLite via aiosqlite in tests) ──────────
    database_url: str = "mysql+aiomysql://root:@mysql:3306/social"
    database_echo: bool = False
    create_tables_on_startup: bool = True

    # ── Sessions / auth ───────────────────────────────────────────────────
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    max_sessions: int = 5
    session_cookie_max_age: int = 3 * 60 * 60   # 3h
    cookie_secure: bool = True
    cookie_samesite: str = "none"
    # Provider tokens are not verified server-side; keep off unless the
    # deployment sits behind a trusted identity proxy.
    oauth_login_enabled: bool = False

    # ── MinIO (S3-compatible) ──────────────────────────────────────────────
    minio_endpoint: str = "minio:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_bucket: str = "media"
    minio_use_ssl: bool = False
    minio_region: str = "us-east-1"
    max_upload_bytes: int = 5 * 1024 * 1024

    # Pre-signed URL lifetimes (seconds)
    post_image_url_ttl: int = 60              # feed / explore listings
    post_detail_url_ttl: int = 60 * 10       # single post, profile lists
    avatar_url_ttl: int = 60 * 60 * 24 * 7   # 1 week

    # ── Pagination ─────────────────────────────────────────────────────────
    default_page_size: int = 10
    max_page_size: int = 50

    # ── HTTP ───────────────────────────────────────────────────────────────
    cors_origins: list[str] = ["http://localhost:5173"]

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "social-api"
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
