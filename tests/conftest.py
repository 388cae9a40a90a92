"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- In-memory SQLite database and key store
- A fake LiteLLM proxy served through httpx.MockTransport
- Reconciliation engine and lifecycle policy wired to both
- API test client with dependency overrides
"""

import json
import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

# Set environment variables BEFORE importing app modules
os.environ.setdefault("LLMREQ_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LITELLM_API_URL", "http://litellm.test")
os.environ.setdefault("LITELLM_MASTER_KEY", "sk-master-test")
os.environ.setdefault("LLMREQ_LOG_FORMAT", "console")

from llmreq.config import Settings
from llmreq.db.models import Base, KeyHistory
from llmreq.models.api import KeyStatus, KeyType
from llmreq.services.key_lifecycle import KeyLifecyclePolicy
from llmreq.services.key_store import SQLAlchemyKeyStore
from llmreq.services.litellm_client import LiteLLMClient
from llmreq.services.provisioning import ProvisioningGate
from llmreq.services.reconciliation import ReconciliationEngine
from llmreq.services.user_locks import UserLockRegistry

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)
USER = "alice@example.com"
OTHER_USER = "bob@example.com"


# ============================================================================
# Fake LiteLLM
# ============================================================================


class FakeLiteLLM:
    """
    In-memory stand-in for the LiteLLM proxy's management API.

    Every request is recorded in `calls`. Set `failures[path_prefix]` to an
    HTTP status code or an httpx exception to make matching calls fail.
    """

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.keys: list[dict[str, Any]] = []
        self.calls: list[tuple[str, str, Any]] = []
        self.failures: dict[str, int | Exception] = {}
        self.wrap_key_list = True
        self.filter_by_owner = True
        self.nest_user_info = True
        self.generated_expires: str | None = None
        self._counter = 0

    # -- Seeding helpers ------------------------------------------------------

    def add_user(self, user_id: str, max_budget: float | None = 1.0, spend: float = 0.0) -> None:
        self.users[user_id] = {
            "user_id": user_id,
            "user_email": user_id,
            "max_budget": max_budget,
            "spend": spend,
        }

    def add_key(
        self,
        user_id: str,
        token: str,
        alias: str,
        spend: float | None = 0.0,
        expires: str | None = None,
        key_name: str | None = None,
    ) -> dict[str, Any]:
        entry = {
            "token": token,
            "key_alias": alias,
            "key_name": key_name or f"sk-...{token[-4:]}",
            "user_id": user_id,
            "spend": spend,
            "expires": expires,
            "models": None,
        }
        self.keys.append(entry)
        return entry

    def rotate_token(self, old_token: str, new_token: str) -> None:
        """Simulate LiteLLM reporting a different identifier for the same key."""
        for entry in self.keys:
            if entry["token"] == old_token:
                entry["token"] = new_token

    def calls_to(self, path_prefix: str) -> list[tuple[str, str, Any]]:
        return [call for call in self.calls if call[1].startswith(path_prefix)]

    # -- Transport ------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        payload = body if body is not None else dict(request.url.params)
        self.calls.append((request.method, path, payload))

        for prefix, failure in self.failures.items():
            if path.startswith(prefix):
                if isinstance(failure, Exception):
                    raise failure
                return httpx.Response(failure, text="upstream failure")

        if path.startswith("/user/info/"):
            return self._user_info(path.removeprefix("/user/info/"))
        if path == "/user/new":
            return self._user_new(body)
        if path == "/key/list":
            return self._key_list(request.url.params.get("user_id"))
        if path == "/key/generate":
            return self._key_generate(body)
        if path == "/key/delete":
            return self._key_delete(body)
        return httpx.Response(404, json={"detail": "not found"})

    def _user_info(self, user_id: str) -> httpx.Response:
        user = self.users.get(user_id)
        if user is None:
            return httpx.Response(404, json={"detail": "User not found"})
        if self.nest_user_info:
            return httpx.Response(200, json={"user_id": user_id, "user_info": user, "keys": []})
        return httpx.Response(200, json=user)

    def _user_new(self, body: dict[str, Any]) -> httpx.Response:
        self.add_user(body["user_id"], max_budget=body.get("max_budget"))
        return httpx.Response(200, json=self.users[body["user_id"]])

    def _key_list(self, user_id: str | None) -> httpx.Response:
        keys = [k for k in self.keys if not self.filter_by_owner or k["user_id"] == user_id]
        if self.wrap_key_list:
            return httpx.Response(200, json={"keys": keys, "total_count": len(keys)})
        return httpx.Response(200, json=keys)

    def _key_generate(self, body: dict[str, Any]) -> httpx.Response:
        self._counter += 1
        secret = f"sk-generated-secret-{self._counter:04d}"
        token = f"hashed-token-{self._counter:04d}"
        self.add_key(
            body["user_id"],
            token,
            body["key_alias"],
            expires=self.generated_expires,
            key_name=f"sk-...{secret[-4:]}",
        )
        return httpx.Response(
            200,
            json={
                "key": secret,
                "token": token,
                "key_alias": body["key_alias"],
                "key_name": f"sk-...{secret[-4:]}",
                "max_budget": body.get("max_budget"),
                "user_id": body["user_id"],
                "expires": self.generated_expires,
            },
        )

    def _key_delete(self, body: dict[str, Any]) -> httpx.Response:
        doomed = set(body["keys"])
        self.keys = [k for k in self.keys if k["token"] not in doomed]
        return httpx.Response(200, json={"deleted_keys": sorted(doomed)})


@pytest.fixture
def fake_litellm() -> FakeLiteLLM:
    """Fresh fake LiteLLM with no users and no keys."""
    return FakeLiteLLM()


@pytest.fixture
async def litellm_client(fake_litellm: FakeLiteLLM) -> AsyncGenerator[LiteLLMClient, None]:
    """LiteLLMClient talking to the fake through httpx.MockTransport."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_litellm.handler))
    client = LiteLLMClient(
        "http://litellm.test", master_key="sk-master-test", http_client=http_client
    )
    yield client
    await http_client.aclose()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Factory for Settings with test defaults and per-test overrides."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "database_url": "sqlite+aiosqlite://",
            "default_budget": 1.0,
            "longterm_key_budget": 20.0,
            "longterm_key_limit": 1,
            "longterm_key_lifetime": "9600h",
            "standard_key_lifetime": None,
            "max_active_keys": 10,
            "provisioning_cache_ttl_seconds": 0.0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def test_settings(make_settings: Callable[..., Settings]) -> Settings:
    return make_settings()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the schema created."""
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
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def key_store(db_session: AsyncSession) -> SQLAlchemyKeyStore:
    return SQLAlchemyKeyStore(db_session)


@pytest.fixture
def seed_record(key_store: SQLAlchemyKeyStore) -> Callable[..., Any]:
    """Factory that persists a KeyHistory record for USER."""

    async def _seed(
        litellm_key_id: str,
        key_name: str,
        status: KeyStatus = KeyStatus.ACTIVE,
        key_type: KeyType = KeyType.STANDARD,
        created_at: datetime = NOW,
        user_id: str = USER,
        revoked_at: datetime | None = None,
        key_mask: str | None = None,
    ) -> KeyHistory:
        record = KeyHistory(
            user_id=user_id,
            litellm_key_id=litellm_key_id,
            key_name=key_name,
            key_mask=key_mask or f"sk-...{litellm_key_id[-4:]}",
            key_type=key_type.value,
            status=status.value,
            created_at=created_at,
            revoked_at=revoked_at,
        )
        await key_store.add(record)
        await key_store.commit()
        return record

    return _seed


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def reconciliation_engine(
    litellm_client: LiteLLMClient, key_store: SQLAlchemyKeyStore
) -> ReconciliationEngine:
    return ReconciliationEngine(
        litellm_client, key_store, locks=UserLockRegistry(), clock=lambda: NOW
    )


@pytest.fixture
def lifecycle_policy(
    litellm_client: LiteLLMClient, key_store: SQLAlchemyKeyStore, test_settings: Settings
) -> KeyLifecyclePolicy:
    return KeyLifecyclePolicy(
        litellm_client, key_store, test_settings, locks=UserLockRegistry(), clock=lambda: NOW
    )


# ============================================================================
# API Fixtures
# ============================================================================


@pytest.fixture
def app(
    litellm_client: LiteLLMClient,
    key_store: SQLAlchemyKeyStore,
    test_settings: Settings,
) -> FastAPI:
    """FastAPI app with upstream client, store and settings overridden."""
    from llmreq.api.dependencies import (
        get_key_store,
        get_litellm_client,
        get_provisioning_gate,
    )
    from llmreq.config import get_settings
    from llmreq.main import app as main_app

    gate = ProvisioningGate(litellm_client, test_settings)

    main_app.dependency_overrides[get_litellm_client] = lambda: litellm_client
    main_app.dependency_overrides[get_provisioning_gate] = lambda: gate
    main_app.dependency_overrides[get_key_store] = lambda: key_store
    main_app.dependency_overrides[get_settings] = lambda: test_settings

    yield main_app

    main_app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app (lifespan is not run)."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-Forwarded-Email": "Alice@Example.com"}
