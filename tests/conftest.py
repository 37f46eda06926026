"""
Pytest configuration and shared fixtures.

Provides an in-memory database, a fake classification backend, seeded
tenants and API keys, and HTTP clients for the CleanMod test suite.

IMPORTANT: Environment variables must be set BEFORE importing app modules
that use pydantic-settings, as Settings validates on import.
"""

import os

# Set test environment variables before importing app modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["HF_API_TOKEN"] = "test-token-not-real"
os.environ["OPENAI_API_KEY"] = "test-key-not-real"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["USAGE_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DEBUG"] = "false"

# Now safe to import everything else
from dataclasses import dataclass

import httpx
import pytest

from app.auth.credentials import CredentialStore, Tenant
from app.config import Settings, get_settings
from app.metrics.store import MetricsStore
from app.pipeline.orchestrator import ModerationPipeline
from app.providers.adapter import ModerationProvider
from app.providers.clients import BackendClients
from app.quota.ledger import QuotaLedger
from app.registry.models import ModelRegistry, ProviderName
from app.store.admin import create_organization, seed_plans
from app.store.audit import AuditLogWriter
from app.store.database import Database

from tests.fakes import FakeBackend


TOXIC_INSULT_RESPONSE = [
    {"label": "toxic", "score": 0.91},
    {"label": "insult", "score": 0.88},
]


@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset all singleton instances between tests.

    This ensures each test starts with a clean state.
    """
    yield

    get_settings.cache_clear()

    from app.metrics import store

    if store._store is not None:
        store._store.reset()

    from app.registry import models

    models._registry_instance = None


@dataclass
class SeededTenant:
    """An organization with an active plan and one API key."""

    org_id: str
    api_key: str
    api_key_id: str
    tenant: Tenant


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        hf_api_token="test-token-not-real",
        openai_api_key="test-key-not-real",
        usage_retry_backoff_seconds=0.0,
        provider_timeout_seconds=1.0,
    )


@pytest.fixture
async def database():
    """Fresh in-memory database with all tables."""
    db = Database("sqlite+aiosqlite://")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend(response=list(TOXIC_INSULT_RESPONSE))


@pytest.fixture
def fake_openai_backend() -> FakeBackend:
    return FakeBackend(
        response=[
            {"label": "harassment", "score": 0.72},
            {"label": "hate", "score": 0.1},
            {"label": "violence", "score": 0.05},
        ]
    )


@pytest.fixture
def registry() -> ModelRegistry:
    return ModelRegistry()


@pytest.fixture
def backend_clients(settings, fake_backend, fake_openai_backend) -> BackendClients:
    return BackendClients(
        settings,
        overrides={
            ProviderName.UNITARY: fake_backend,
            ProviderName.OPENAI: fake_openai_backend,
        },
    )


@pytest.fixture
def provider(backend_clients, registry, settings) -> ModerationProvider:
    return ModerationProvider(clients=backend_clients, registry=registry, settings=settings)


@pytest.fixture
def credential_store(database) -> CredentialStore:
    return CredentialStore(database)


@pytest.fixture
def ledger(database, settings) -> QuotaLedger:
    return QuotaLedger(database, settings)


@pytest.fixture
def metrics_store() -> MetricsStore:
    return MetricsStore()


@pytest.fixture
def pipeline(credential_store, ledger, provider, database, registry, settings, metrics_store):
    return ModerationPipeline(
        credentials=credential_store,
        ledger=ledger,
        provider=provider,
        audit_log=AuditLogWriter(database),
        registry=registry,
        settings=settings,
        metrics=metrics_store,
    )


@pytest.fixture
def make_tenant(database, credential_store):
    """
    Factory fixture for organizations with an API key.

    Usage:
        seeded = await make_tenant(plan_name="free", store_input_preview=True)
    """

    async def _create(
        name: str = "Acme",
        plan_name: str | None = "free",
        store_input_preview: bool = False,
        timezone: str | None = None,
    ) -> SeededTenant:
        await seed_plans(database)
        org = await create_organization(
            database,
            name,
            plan_name=plan_name,
            store_input_preview=store_input_preview,
            timezone=timezone,
        )
        raw_secret, key_id = await credential_store.create_api_key(org.id, "test key")
        resolved = await credential_store.resolve(raw_secret)
        return SeededTenant(
            org_id=org.id,
            api_key=raw_secret,
            api_key_id=key_id,
            tenant=resolved.tenant,
        )

    return _create


@pytest.fixture
async def seeded(make_tenant) -> SeededTenant:
    """Organization on the free plan (5000/month) with one active key."""
    return await make_tenant()


@pytest.fixture
def api_app(settings, database, provider, registry, metrics_store):
    from app.main import create_app

    return create_app(
        settings=settings,
        database=database,
        provider=provider,
        registry=registry,
        metrics=metrics_store,
    )


@pytest.fixture
async def client(api_app):
    """
    Async HTTP client bound to the app.

    ASGITransport does not run the lifespan, so the database fixture
    (created in the test's event loop) is used as-is.
    """
    transport = httpx.ASGITransport(app=api_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def sample_content():
    """Sample content strings for testing."""
    return {
        "safe": "Great article, thanks for sharing!",
        "toxic": "You are disgusting",
        "long": "x" * 500,
    }
