"""
Credential Store Adapter

API keys are capability tokens scoped to one tenant. Only a SHA-256 digest
of the secret is stored; the raw secret is shown once, at creation.

Resolution never distinguishes an inactive key from an unknown one, and any
lookup error is reported the same way, so callers cannot probe for the
existence of a key.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from app.store.audit import sha256_hex
from app.store.database import Database
from app.store.models import ApiKey, Organization, Subscription, utcnow

logger = logging.getLogger(__name__)


API_KEY_PREFIX = "cm_live_"

ACTIVE_SUBSCRIPTION_STATUS = "active"


def generate_api_key() -> str:
    """
    Generate a new API key in the format cm_live_<random>.

    32 random bytes, base64url-encoded without padding.
    """
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"


def hash_secret(raw_secret: str) -> str:
    """One-way hash used to store and look up API keys."""
    return sha256_hex(raw_secret)


def extract_api_key(authorization: str | None, x_api_key: str | None) -> str | None:
    """
    Pull the raw secret out of the request headers.

    `Authorization: Bearer <secret>` takes precedence over `x-api-key`.
    Blank values count as absent.
    """
    if authorization:
        scheme, _, value = authorization.strip().partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()

    if x_api_key and x_api_key.strip():
        return x_api_key.strip()

    return None


@dataclass(frozen=True)
class Tenant:
    """
    The organization a credential acts for, with its active plan (if any).

    Attributes:
        id: Organization identifier
        name: Display name
        monthly_quota: Quota of the active plan; None means no active subscription
        models_allowed: Model keys of the active plan, in plan order
        store_input_preview: Whether logs keep a truncated input preview
        timezone: IANA zone for billing months, None for the service default
    """

    id: str
    name: str
    monthly_quota: int | None = None
    models_allowed: tuple[str, ...] = field(default_factory=tuple)
    store_input_preview: bool = False
    timezone: str | None = None


@dataclass(frozen=True)
class ResolvedCredential:
    api_key_id: str
    tenant: Tenant


def _tenant_from(org: Organization) -> Tenant:
    active = next(
        (s for s in org.subscriptions if s.status == ACTIVE_SUBSCRIPTION_STATUS),
        None,
    )
    plan = active.plan if active is not None else None
    return Tenant(
        id=org.id,
        name=org.name,
        monthly_quota=plan.monthly_quota if plan is not None else None,
        models_allowed=tuple(plan.models_allowed or ()) if plan is not None else (),
        store_input_preview=bool(org.store_input_preview),
        timezone=org.timezone,
    )


class CredentialStore:
    """
    Resolves and manages API keys.

    Usage:
        store = CredentialStore(database)
        raw, key_id = await store.create_api_key(org_id)
        resolved = await store.resolve(raw)          # ResolvedCredential
        await store.deactivate_api_key(org_id, key_id)
        await store.resolve(raw)                     # None
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    async def resolve(self, raw_secret: str) -> ResolvedCredential | None:
        """
        Resolve a raw secret to its tenant.

        Returns:
            ResolvedCredential for an active key, None otherwise (unknown key,
            inactive key, or lookup failure)
        """
        if not raw_secret:
            return None

        stmt = (
            select(ApiKey)
            .where(ApiKey.key_hash == hash_secret(raw_secret), ApiKey.is_active.is_(True))
            .options(
                selectinload(ApiKey.organization)
                .selectinload(Organization.subscriptions)
                .selectinload(Subscription.plan)
            )
        )

        try:
            async with self._database.session() as session:
                api_key = (await session.execute(stmt)).scalar_one_or_none()
        except Exception as e:
            logger.error(f"API key lookup failed: {e}")
            return None

        if api_key is None or api_key.organization is None:
            return None

        return ResolvedCredential(api_key_id=api_key.id, tenant=_tenant_from(api_key.organization))

    async def load_tenant(self, org_id: str) -> Tenant | None:
        """Tenant view of an organization, or None if it does not exist."""
        stmt = (
            select(Organization)
            .where(Organization.id == org_id)
            .options(selectinload(Organization.subscriptions).selectinload(Subscription.plan))
        )
        async with self._database.session() as session:
            org = (await session.execute(stmt)).scalar_one_or_none()
        return _tenant_from(org) if org is not None else None

    async def touch_last_used(self, api_key_id: str, now: datetime | None = None) -> bool:
        """
        Record the key's last use. Best-effort: failures are logged, not raised.

        Returns:
            Whether the timestamp was written
        """
        try:
            async with self._database.session() as session:
                await session.execute(
                    update(ApiKey)
                    .where(ApiKey.id == api_key_id)
                    .values(last_used_at=now or utcnow())
                )
                await session.commit()
            return True
        except Exception as e:
            logger.warning(f"Failed to update last_used_at for API key {api_key_id}: {e}")
            return False

    async def create_api_key(self, org_id: str, name: str | None = None) -> tuple[str, str]:
        """
        Create an active key for `org_id`.

        Returns:
            (raw_secret, api_key_id). The raw secret is not retrievable later.
        """
        raw_secret = generate_api_key()
        key_name = (name or "").strip() or f"Key {utcnow().isoformat(timespec='seconds')}"

        api_key = ApiKey(org_id=org_id, name=key_name, key_hash=hash_secret(raw_secret), is_active=True)
        async with self._database.session() as session:
            session.add(api_key)
            await session.commit()

        logger.info(f"Created API key {api_key.id} ({key_name}) for org {org_id}")
        return raw_secret, api_key.id

    async def deactivate_api_key(self, org_id: str, api_key_id: str) -> bool:
        """
        Soft-revoke a key belonging to `org_id`.

        Returns:
            False when no such key exists for the organization
        """
        async with self._database.session() as session:
            result = await session.execute(
                update(ApiKey)
                .where(ApiKey.id == api_key_id, ApiKey.org_id == org_id)
                .values(is_active=False)
            )
            await session.commit()

        deactivated = result.rowcount > 0
        if deactivated:
            logger.info(f"Deactivated API key {api_key_id} for org {org_id}")
        return deactivated
