import sys
from pathlib import Path

# Add the backend root directory to Python path first
backend_root = Path(__file__).parent.parent
sys.path.insert(0, str(backend_root))

"""
Pytest configuration and fixtures shared by the registry, storage and API tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401
from core.errors import StorageUnavailableError
from core.security import get_password_hash
from db.base import Base
from db.models.map import Map
from db.models.user import User
from services.access import Principal
from services.storage.gateway import SignedUrl, StorageGateway

TEST_PASSWORD = "correct horse battery staple"
TEST_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


class FakeGateway(StorageGateway):
    """In-memory storage backend recording every signing and write."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.signed: List[SignedUrl] = []
        self.fail_keys: Set[str] = set()

    def _signed(self, key: str, method: str, ttl_seconds: int, headers=None) -> SignedUrl:
        signed = SignedUrl(
            url=f"https://storage.test/{key}?sig={method.lower()}&ttl={ttl_seconds}",
            key=key,
            method=method,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
            headers=headers or {},
        )
        self.signed.append(signed)
        return signed

    def sign_upload(self, key: str, content_type: str, ttl_seconds: int = 600) -> SignedUrl:
        return self._signed(key, "PUT", ttl_seconds, {"Content-Type": content_type})

    def sign_download(self, key: str, ttl_seconds: int = 300) -> SignedUrl:
        return self._signed(key, "GET", ttl_seconds)

    def put_object(self, key: str, body: bytes, content_type: str) -> None:
        if key in self.fail_keys:
            raise StorageUnavailableError("Upload to storage failed")
        self.objects[key] = body
        self.content_types[key] = content_type

    def list_objects(self, prefix: str) -> List[str]:
        return sorted(key for key in self.objects if key.startswith(prefix))

    def list_prefixes(self, prefix: str) -> List[str]:
        prefixes = set()
        for key in self.objects:
            if key.startswith(prefix) and "/" in key[len(prefix) :]:
                prefixes.add(prefix + key[len(prefix) :].split("/", 1)[0] + "/")
        return sorted(prefixes)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def _create_user(db, username: str, is_admin: bool = False) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash=TEST_PASSWORD_HASH,
        is_admin=is_admin,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def owner(db) -> User:
    return await _create_user(db, "owner")


@pytest_asyncio.fixture
async def stranger(db) -> User:
    return await _create_user(db, "stranger")


@pytest_asyncio.fixture
async def admin(db) -> User:
    return await _create_user(db, "admin", is_admin=True)


@pytest.fixture
def owner_principal(owner) -> Principal:
    return Principal.from_user(owner)


@pytest.fixture
def stranger_principal(stranger) -> Principal:
    return Principal.from_user(stranger)


@pytest.fixture
def admin_principal(admin) -> Principal:
    return Principal.from_user(admin)


@pytest.fixture
def make_map(db):
    """Insert a map row directly, bypassing the registry."""

    async def _make_map(
        user: User, slug: str, is_published: bool = False, title: Optional[str] = None
    ) -> Map:
        map_obj = Map(
            title=title or slug.replace("-", " ").title(),
            slug=slug,
            user_id=user.id,
            is_published=is_published,
        )
        db.add(map_obj)
        await db.commit()
        await db.refresh(map_obj)
        return map_obj

    return _make_map


@pytest_asyncio.fixture
async def client(session_factory, gateway):
    """HTTP client for the app with the database and storage swapped for test doubles."""
    from httpx import ASGITransport, AsyncClient

    from db.session import get_session
    from main import app
    from services.storage.gateway import get_storage_gateway

    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_storage_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build an ``Authorization`` header for a user."""
    from core.security import create_access_token

    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}

    return _headers
