import os
import sys
from pathlib import Path

import pytest

# Ensure required environment variables are present before settings import
os.environ.setdefault("SECRET_KEY", "test-secret")

# Add the backend directory so `audience` package imports resolve during tests
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

import httpx  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from audience.core.security import create_access_token  # noqa: E402
from audience.models import Base  # noqa: E402
from audience.services.evaluator import InMemoryPredicateEvaluator  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_contacts(us: int = 100, pro: int = 40, both: int = 15) -> list[dict]:
    """``us`` contacts in the US, ``pro`` on the pro plan, ``both`` of them overlapping."""

    contacts: list[dict] = []
    for i in range(us):
        plan = "pro" if i < both else "free"
        contacts.append({"_id": f"us-{i}", "email": f"us{i}@example.com", "country": "US", "plan": plan})
    for i in range(pro - both):
        contacts.append({"_id": f"pro-{i}", "email": f"pro{i}@example.com", "country": "DE", "plan": "pro"})
    contacts.append({"_id": "fr-0", "email": "fr0@example.com", "country": "FR", "plan": "free"})
    return contacts


@pytest.fixture
def contacts() -> list[dict]:
    return make_contacts()


@pytest.fixture
def evaluator(contacts) -> InMemoryPredicateEvaluator:
    return InMemoryPredicateEvaluator(contacts)


@pytest.fixture
async def session_factory(anyio_backend):
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(bind=engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
async def app(session_factory, evaluator):
    from audience.core.db import get_session
    from audience.core.rate_limit import limiter
    from audience.main import app as fastapi_app
    from audience.services.evaluator import get_evaluator

    async def _session_override():
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_session] = _session_override
    fastapi_app.dependency_overrides[get_evaluator] = lambda: evaluator
    limiter.reset()
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


def bearer(user_code: str = "u-100", company_id: str = "acme", role: str = "operator") -> dict:
    token = create_access_token({"sub": user_code, "company_id": company_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth() -> dict:
    return bearer()


@pytest.fixture
def admin_auth() -> dict:
    return bearer(user_code="admin-1", role="admin")


async def create_field(client: httpx.AsyncClient, headers: dict, field_key: str, name: str | None = None) -> dict:
    response = await client.post(
        "/api/fields", json={"field_key": field_key, "name": name or field_key.title()}, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()
