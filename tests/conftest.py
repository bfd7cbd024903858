"""
Pytest fixtures for the sign-out tracker.

Provides a throwaway SQLite database reset per test, user factories and an
HTTP client bound to the ASGI app.
"""
import os
import tempfile

_tmpdir = tempfile.mkdtemp(prefix="signouts-test-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "0"
for _name in ("ADMIN_USERNAME", "ADMIN_PASSWORD", "ADMIN_PIN"):
    os.environ.pop(_name, None)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.core.database.base import Base  # noqa: E402
from app.core.database.engine import AsyncSessionLocal, engine, init_db  # noqa: E402
from app.features.permissions.catalog import DEFAULT_PERMISSIONS, PermissionCatalog, PermissionName  # noqa: E402
from app.features.settings.service import SystemSettings  # noqa: E402
from app.features.users.auth import create_access_token  # noqa: E402
from app.features.users.service import UserService  # noqa: E402
from app.main import app  # noqa: E402


PASSWORD = "password1"
PIN = "1234"
ALL_PERMISSIONS = [name for name, _ in DEFAULT_PERMISSIONS]


@pytest.fixture(autouse=True)
async def reset_db():
    """Fresh schema, seeded catalog and settings for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await init_db()
    async with AsyncSessionLocal() as session:
        await PermissionCatalog(session).seed_defaults()
        await SystemSettings(session).seed_defaults()
    yield


@pytest.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def make_user(db):
    """Factory creating a user with exactly the given permissions."""
    async def _make(username, permissions=(), rank="SGT", full_name=None, pin=PIN):
        return await UserService(db).create_user(
            username=username,
            password=PASSWORD,
            pin=pin,
            rank=rank,
            full_name=full_name or username.title(),
            created_by=None,
            permissions=permissions,
        )
    return _make


@pytest.fixture
async def admin(make_user):
    return await make_user("admin", ALL_PERMISSIONS, rank="CPT", full_name="Ada Admin")


@pytest.fixture
async def operator(make_user):
    """Holds the basic operator set."""
    return await make_user(
        "operator",
        [
            PermissionName.VIEW_DASHBOARD,
            PermissionName.CREATE_SIGNOUT,
            PermissionName.SIGN_IN_SOLDIERS,
            PermissionName.VIEW_LOGS,
        ],
        rank="SSG",
        full_name="Olive Operator",
    )


@pytest.fixture
async def viewer(make_user):
    return await make_user("viewer", [PermissionName.VIEW_DASHBOARD], rank="", full_name="Vic Viewer")


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def headers_for():
    """Bearer headers for a user id, skipping the login round trip."""
    return auth_headers
