"""
Quota Ledger

Per-tenant monthly quota enforcement backed by daily usage counters.

Admission and recording are deliberately separate operations:
- check_and_admit() runs before the provider call, so a request that will be
  rejected never costs an external call.
- record_usage() runs only after the request fully succeeded, so failed
  requests are never charged.

The pair is not transactional. Under a concurrent burst from one tenant a
few requests may be admitted past the nominal quota before the counters
catch up; the overshoot is bounded by that tenant's in-flight requests.
Every increment is a single atomic upsert in the database, and an increment
whose commit outcome is unknown is never retried, so no request is counted
twice.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func, select

from app.auth.credentials import Tenant
from app.config import Settings, get_settings
from app.store.database import Database, UsageWriteUncertain
from app.store.models import UsageCounter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admitted:
    quota: int
    used: int


@dataclass(frozen=True)
class QuotaExceeded:
    """Usage already reached the quota for the current billing month."""

    quota: int
    used: int


def resolve_timezone(name: str | None) -> tzinfo:
    """Map an IANA zone name to a tzinfo. Unknown names fall back to UTC."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown billing timezone '{name}', using UTC")
        return timezone.utc


def local_date(now: datetime, tz: tzinfo) -> date:
    """Calendar date of `now` on the given clock. Naive datetimes are taken as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz).date()


def billing_period(today: date) -> tuple[date, date]:
    """
    Calendar month containing `today`, as a half-open window.

    Returns:
        (first day of the month, first day of the next month)
    """
    start = today.replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class QuotaLedger:
    """
    Reads and writes tenant usage.

    Usage:
        ledger = QuotaLedger(database)
        match await ledger.check_and_admit(tenant, now):
            case QuotaExceeded(quota=q, used=u):
                ...
            case Admitted():
                ...
        await ledger.record_usage(tenant, now)
    """

    def __init__(self, database: Database, settings: Settings | None = None) -> None:
        self._database = database
        self._settings = settings or get_settings()
        self._pending: deque[tuple[str, date]] = deque()
        self._flush_lock = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        """Increments waiting to be replayed after a failed recording."""
        return len(self._pending)

    def quota_for(self, tenant: Tenant) -> int:
        if tenant.monthly_quota is not None:
            return tenant.monthly_quota
        return self._settings.default_monthly_quota

    def today_for(self, tenant: Tenant, now: datetime) -> date:
        tz = resolve_timezone(tenant.timezone or self._settings.billing_timezone)
        return local_date(now, tz)

    async def usage_between(self, org_id: str, start: date, end: date) -> int:
        """Sum of counters with start <= date < end."""
        stmt = select(func.coalesce(func.sum(UsageCounter.count), 0)).where(
            UsageCounter.org_id == org_id,
            UsageCounter.day >= start,
            UsageCounter.day < end,
        )
        async with self._database.session() as session:
            return int((await session.execute(stmt)).scalar_one())

    async def current_usage(self, tenant: Tenant, now: datetime) -> int:
        start, end = billing_period(self.today_for(tenant, now))
        return await self.usage_between(tenant.id, start, end)

    async def check_and_admit(self, tenant: Tenant, now: datetime) -> Admitted | QuotaExceeded:
        """
        Compare the current month's usage with the tenant's quota.

        Raises:
            SQLAlchemyError: If usage could not be read.
        """
        quota = self.quota_for(tenant)
        used = await self.current_usage(tenant, now)

        if used >= quota:
            logger.info(f"Quota exceeded for org {tenant.id}: {used}/{quota}")
            return QuotaExceeded(quota=quota, used=used)

        return Admitted(quota=quota, used=used)

    async def record_usage(self, tenant: Tenant, now: datetime) -> bool:
        """
        Add one request to today's counter. Never raises.

        Queued increments from earlier failures are replayed first. If the
        increment still fails after the configured retries it is queued.

        Returns:
            Whether this increment reached the database, or may have
        """
        await self.flush_pending()

        day = self.today_for(tenant, now)
        if await self._increment_with_retry(tenant.id, day):
            return True

        self._pending.append((tenant.id, day))
        logger.error(
            f"Usage increment for org {tenant.id} on {day} queued "
            f"({len(self._pending)} pending)"
        )
        return False

    async def flush_pending(self) -> int:
        """
        Replay queued increments, stopping at the first failure.

        Concurrent callers replay one at a time; each entry is taken off the
        queue before it is written and put back at the front if the write fails.

        Returns:
            Number of increments written
        """
        flushed = 0
        async with self._flush_lock:
            while self._pending:
                org_id, day = self._pending.popleft()
                try:
                    await self._database.increment_usage(org_id, day)
                except UsageWriteUncertain as e:
                    logger.error(f"Queued usage for org {org_id} on {day} not replayed again: {e}")
                    flushed += 1
                    continue
                except Exception as e:
                    self._pending.appendleft((org_id, day))
                    logger.warning(
                        f"Replaying queued usage failed, {len(self._pending)} still pending: {e}"
                    )
                    break
                flushed += 1

        if flushed:
            logger.info(f"Replayed {flushed} queued usage increments")
        return flushed

    async def _increment_with_retry(self, org_id: str, day: date) -> bool:
        attempts = self._settings.usage_retry_attempts
        backoff = self._settings.usage_retry_backoff_seconds

        for attempt in range(1, attempts + 1):
            try:
                await self._database.increment_usage(org_id, day)
                return True
            except UsageWriteUncertain as e:
                # The statement ran; retrying could count the request twice.
                logger.error(f"Usage increment for org {org_id} not retried: {e}")
                return True
            except Exception as e:
                logger.warning(
                    f"Usage increment failed for org {org_id} "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
                if attempt < attempts and backoff > 0:
                    await asyncio.sleep(backoff * 2 ** (attempt - 1))

        return False
