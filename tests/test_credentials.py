"""
Credential Store Tests

Tests for API key generation, header extraction, resolution and revocation.

Test Categories:
1. TestKeyFormat - generate_api_key() / hash_secret()
2. TestExtractApiKey - header precedence
3. TestResolve - resolution to a tenant with its plan
4. TestLifecycle - create / deactivate / last-used
"""

import hashlib
import re
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from app.auth import (
    API_KEY_PREFIX,
    CredentialStore,
    extract_api_key,
    generate_api_key,
    hash_secret,
)
from app.store.models import ApiKey


class TestKeyFormat:
    """Key generation and hashing."""

    def test_prefix_and_length(self):
        key = generate_api_key()

        assert key.startswith(API_KEY_PREFIX)
        # 32 random bytes -> 43 base64url characters without padding
        assert re.fullmatch(r"cm_live_[A-Za-z0-9_-]{43}", key)

    def test_keys_are_unique(self):
        assert len({generate_api_key() for _ in range(50)}) == 50

    def test_hash_is_sha256_hex(self):
        assert hash_secret("cm_live_abc") == hashlib.sha256(b"cm_live_abc").hexdigest()


class TestExtractApiKey:
    """Tests for extract_api_key()."""

    def test_bearer(self):
        assert extract_api_key("Bearer cm_live_x", None) == "cm_live_x"

    def test_bearer_case_insensitive_scheme(self):
        assert extract_api_key("bearer cm_live_x", None) == "cm_live_x"

    def test_x_api_key(self):
        assert extract_api_key(None, "cm_live_y") == "cm_live_y"

    def test_authorization_takes_precedence(self):
        assert extract_api_key("Bearer cm_live_x", "cm_live_y") == "cm_live_x"

    def test_non_bearer_scheme_falls_back(self):
        assert extract_api_key("Basic dXNlcjpwYXNz", "cm_live_y") == "cm_live_y"

    @pytest.mark.parametrize(
        "authorization,x_api_key",
        [(None, None), ("", ""), ("Bearer ", "   "), ("Bearer", None)],
    )
    def test_missing(self, authorization, x_api_key):
        assert extract_api_key(authorization, x_api_key) is None


class TestResolve:
    """Resolution of raw secrets."""

    async def test_resolves_tenant_with_plan(self, seeded, credential_store):
        resolved = await credential_store.resolve(seeded.api_key)

        assert resolved is not None
        assert resolved.api_key_id == seeded.api_key_id
        assert resolved.tenant.id == seeded.org_id
        assert resolved.tenant.monthly_quota == 5000
        assert resolved.tenant.models_allowed == ("english-basic",)

    async def test_tenant_without_subscription(self, make_tenant, credential_store):
        seeded = await make_tenant(name="No plan", plan_name=None)

        resolved = await credential_store.resolve(seeded.api_key)

        assert resolved.tenant.monthly_quota is None
        assert resolved.tenant.models_allowed == ()

    async def test_unknown_secret(self, seeded, credential_store):
        assert await credential_store.resolve("cm_live_unknown") is None

    async def test_empty_secret(self, credential_store):
        assert await credential_store.resolve("") is None

    async def test_lookup_error_reported_as_not_found(self, seeded, database):
        """A store failure looks exactly like an unknown key."""
        broken = CredentialStore(database)
        async with database.engine.begin() as conn:
            await conn.exec_driver_sql("DROP TABLE moderation_logs")
            await conn.exec_driver_sql("DROP TABLE api_keys")

        assert await broken.resolve(seeded.api_key) is None

    async def test_only_hash_is_stored(self, seeded, database):
        async with database.session() as session:
            row = (
                await session.execute(select(ApiKey).where(ApiKey.id == seeded.api_key_id))
            ).scalar_one()

        assert row.key_hash == hash_secret(seeded.api_key)
        assert seeded.api_key not in (row.key_hash, row.name)


class TestLifecycle:
    """Create, deactivate and touch."""

    async def test_deactivated_key_is_not_found(self, seeded, credential_store):
        """Deactivation makes a key indistinguishable from an unknown one."""
        assert await credential_store.deactivate_api_key(seeded.org_id, seeded.api_key_id)

        assert await credential_store.resolve(seeded.api_key) is None

    async def test_deactivate_requires_owning_org(self, make_tenant, credential_store):
        first = await make_tenant(name="First")
        second = await make_tenant(name="Second")

        assert not await credential_store.deactivate_api_key(second.org_id, first.api_key_id)
        assert await credential_store.resolve(first.api_key) is not None

    async def test_deactivate_unknown_key(self, seeded, credential_store):
        assert not await credential_store.deactivate_api_key(seeded.org_id, "missing")

    async def test_default_key_name(self, seeded, credential_store, database):
        _, key_id = await credential_store.create_api_key(seeded.org_id)

        async with database.session() as session:
            row = await session.get(ApiKey, key_id)

        assert row.name.startswith("Key ")
        assert row.is_active

    async def test_touch_last_used(self, seeded, credential_store, database):
        now = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)

        assert await credential_store.touch_last_used(seeded.api_key_id, now)

        async with database.session() as session:
            row = await session.get(ApiKey, seeded.api_key_id)

        assert row.last_used_at.replace(tzinfo=None) == now.replace(tzinfo=None)

    async def test_touch_failure_is_swallowed(self, seeded, database):
        store = CredentialStore(database)
        async with database.engine.begin() as conn:
            await conn.exec_driver_sql("DROP TABLE moderation_logs")
            await conn.exec_driver_sql("DROP TABLE api_keys")

        assert await store.touch_last_used(seeded.api_key_id) is False

    async def test_load_tenant(self, seeded, credential_store):
        tenant = await credential_store.load_tenant(seeded.org_id)

        assert tenant == seeded.tenant
        assert await credential_store.load_tenant("missing") is None
