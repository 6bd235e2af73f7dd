import os

# Must be set before app.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("COOKIE_SAMESITE", "lax")
os.environ.setdefault("CREATE_TABLES_ON_STARTUP", "false")

from dataclasses import dataclass
from uuid import uuid4

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.clients import minio_client
from app.database import Base, get_db
from app.main import app

from factories import PASSWORD


class FakeS3:
    """In-memory stand-in for the boto3 S3 client."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_deletes = False

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[Key] = Body.read()

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://minio.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    def delete_object(self, Bucket, Key):
        if self.fail_deletes:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "DeleteObject")
        self.objects.pop(Key, None)
        self.deleted.append(Key)


@dataclass
class LoggedIn:
    client: AsyncClient
    user: dict

    @property
    def id(self) -> str:
        return self.user["id"]

    @property
    def username(self) -> str:
        return self.user["username"]


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def fake_s3(monkeypatch):
    fake = FakeS3()
    monkeypatch.setattr(minio_client, "_s3", fake)
    return fake


@pytest_asyncio.fixture
async def client_factory(session_factory, fake_s3):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    clients: list[AsyncClient] = []

    def factory() -> AsyncClient:
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(client_factory):
    return client_factory()


@pytest.fixture
def make_user(client_factory):
    """Register a user on a fresh client; the client keeps the session cookie."""

    async def _make(prefix: str = "user", **fields) -> LoggedIn:
        client = client_factory()
        suffix = uuid4().hex[:6]
        payload = {
            "name": fields.pop("name", f"{prefix.title()} {suffix}"),
            "username": fields.pop("username", f"{prefix}_{suffix}"),
            "email": fields.pop("email", f"{prefix}_{suffix}@example.com"),
            "password": fields.pop("password", PASSWORD),
            **fields,
        }
        response = await client.post("/api/users", json=payload)
        assert response.status_code == 201, response.text
        return LoggedIn(client=client, user=response.json()["user"])

    return _make
