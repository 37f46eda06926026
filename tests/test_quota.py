"""
Quota Ledger Tests

Tests for billing windows, admission, and usage recording.

Test Categories:
1. TestBillingPeriod - calendar-month windows
2. TestCheckAndAdmit - admission against plan and default quotas
3. TestRecordUsage - atomic increments, retries, queueing and replay
"""

import asyncio
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.credentials import Tenant
from app.config import Settings
from app.pipeline import PipelineSuccess
from app.quota import Admitted, QuotaExceeded, QuotaLedger, billing_period, local_date, resolve_timezone
from app.store.database import UsageWriteUncertain
from app.store.models import UsageCounter


NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)


async def _set_usage(database, org_id: str, day: date, count: int) -> None:
    async with database.session() as session:
        session.add(UsageCounter(org_id=org_id, day=day, count=count))
        await session.commit()


class TestBillingPeriod:
    """Tests for billing_period() and clock helpers."""

    def test_mid_month(self):
        assert billing_period(date(2026, 10, 16)) == (date(2026, 10, 1), date(2026, 11, 1))

    def test_first_day(self):
        assert billing_period(date(2026, 2, 1)) == (date(2026, 2, 1), date(2026, 3, 1))

    def test_december_rolls_over(self):
        assert billing_period(date(2026, 12, 31)) == (date(2026, 12, 1), date(2027, 1, 1))

    def test_naive_datetime_is_utc(self):
        assert local_date(datetime(2026, 10, 31, 23, 30), timezone.utc) == date(2026, 10, 31)

    def test_unknown_timezone_falls_back_to_utc(self):
        assert resolve_timezone("Not/AZone") is timezone.utc
        assert resolve_timezone(None) is timezone.utc
        assert resolve_timezone("utc") is timezone.utc


class TestCheckAndAdmit:
    """Admission decisions."""

    async def test_quota_reached_is_rejected(self, seeded, ledger, database):
        """5000 used of 5000 is rejected with the diagnostic numbers."""
        await _set_usage(database, seeded.org_id, date(2026, 10, 1), 3000)
        await _set_usage(database, seeded.org_id, date(2026, 10, 15), 2000)

        result = await ledger.check_and_admit(seeded.tenant, NOW)

        assert result == QuotaExceeded(quota=5000, used=5000)

    async def test_below_quota_admitted(self, seeded, ledger, database):
        await _set_usage(database, seeded.org_id, date(2026, 10, 2), 4999)

        result = await ledger.check_and_admit(seeded.tenant, NOW)

        assert result == Admitted(quota=5000, used=4999)

    async def test_previous_month_not_counted(self, seeded, ledger, database):
        await _set_usage(database, seeded.org_id, date(2026, 9, 30), 5000)
        await _set_usage(database, seeded.org_id, date(2026, 11, 1), 5000)

        result = await ledger.check_and_admit(seeded.tenant, NOW)

        assert result == Admitted(quota=5000, used=0)

    async def test_other_tenants_not_counted(self, make_tenant, ledger, database):
        first = await make_tenant(name="First")
        second = await make_tenant(name="Second")
        await _set_usage(database, second.org_id, date(2026, 10, 3), 5000)

        assert isinstance(await ledger.check_and_admit(first.tenant, NOW), Admitted)
        assert isinstance(await ledger.check_and_admit(second.tenant, NOW), QuotaExceeded)

    async def test_default_quota_without_subscription(self, database):
        settings = Settings(default_monthly_quota=10)
        ledger = QuotaLedger(database, settings)
        tenant = Tenant(id="org-without-plan", name="Loose")

        result = await ledger.check_and_admit(tenant, NOW)

        assert result == Admitted(quota=10, used=0)

    async def test_zero_quota_rejects(self, database):
        ledger = QuotaLedger(database, Settings(default_monthly_quota=0))

        result = await ledger.check_and_admit(Tenant(id="org", name="Zero"), NOW)

        assert result == QuotaExceeded(quota=0, used=0)


class TestRecordUsage:
    """Recording usage after a successful request."""

    async def test_increments_todays_counter(self, seeded, ledger, database):
        assert await ledger.record_usage(seeded.tenant, NOW)
        assert await ledger.record_usage(seeded.tenant, NOW)

        async with database.session() as session:
            rows = (
                await session.execute(
                    select(UsageCounter).where(UsageCounter.org_id == seeded.org_id)
                )
            ).scalars().all()

        assert len(rows) == 1
        assert rows[0].day == date(2026, 10, 16)
        assert rows[0].count == 2

    async def test_increment_usage_is_upsert(self, seeded, database):
        """The store-level increment creates then adds, never resets."""
        day = date(2026, 10, 16)

        assert await database.increment_usage(seeded.org_id, day) == 1
        assert await database.increment_usage(seeded.org_id, day) == 2
        assert await database.increment_usage(seeded.org_id, day, amount=3) == 5

    async def test_new_day_new_row(self, seeded, ledger, database):
        await ledger.record_usage(seeded.tenant, NOW)
        await ledger.record_usage(seeded.tenant, datetime(2026, 10, 17, 1, 0, tzinfo=timezone.utc))

        async with database.session() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(UsageCounter).where(
                        UsageCounter.org_id == seeded.org_id
                    )
                )
            ).scalar_one()

        assert total == 2
        assert await ledger.current_usage(seeded.tenant, NOW) == 2

    async def test_recorded_usage_reaches_quota(self, make_tenant, database):
        ledger = QuotaLedger(database, Settings(default_monthly_quota=2))
        seeded = await make_tenant(plan_name=None)

        await ledger.record_usage(seeded.tenant, NOW)
        assert isinstance(await ledger.check_and_admit(seeded.tenant, NOW), Admitted)

        await ledger.record_usage(seeded.tenant, NOW)
        assert await ledger.check_and_admit(seeded.tenant, NOW) == QuotaExceeded(quota=2, used=2)

    async def test_retries_then_succeeds(self, seeded, database, settings):
        ledger = QuotaLedger(database, settings)
        real_increment = database.increment_usage
        database.increment_usage = AsyncMock(side_effect=[RuntimeError("locked"), 1])

        try:
            assert await ledger.record_usage(seeded.tenant, NOW)
        finally:
            database.increment_usage = real_increment

        assert ledger.pending_count == 0

    async def test_exhausted_retries_queue_and_replay(self, seeded, database, settings):
        """A failed increment is queued, not raised, and replayed later."""
        ledger = QuotaLedger(database, settings)
        real_increment = database.increment_usage
        failing = AsyncMock(side_effect=RuntimeError("database is locked"))
        database.increment_usage = failing

        try:
            assert await ledger.record_usage(seeded.tenant, NOW) is False
        finally:
            database.increment_usage = real_increment

        assert failing.await_count == settings.usage_retry_attempts
        assert ledger.pending_count == 1

        # The next recording replays the queued increment first.
        assert await ledger.record_usage(seeded.tenant, NOW)
        assert ledger.pending_count == 0
        assert await ledger.current_usage(seeded.tenant, NOW) == 2

    async def test_flush_pending_stops_on_failure(self, seeded, database, settings):
        ledger = QuotaLedger(database, settings)
        ledger._pending.extend([(seeded.org_id, date(2026, 10, 16))] * 2)
        real_increment = database.increment_usage
        database.increment_usage = AsyncMock(side_effect=RuntimeError("down"))

        try:
            assert await ledger.flush_pending() == 0
        finally:
            database.increment_usage = real_increment

        assert ledger.pending_count == 2
        assert await ledger.flush_pending() == 2
        assert ledger.pending_count == 0

    @pytest.mark.parametrize("attempts", [1, 2])
    async def test_attempts_setting(self, seeded, database, attempts):
        ledger = QuotaLedger(
            database, Settings(usage_retry_attempts=attempts, usage_retry_backoff_seconds=0)
        )
        real_increment = database.increment_usage
        failing = AsyncMock(side_effect=RuntimeError("down"))
        database.increment_usage = failing

        try:
            await ledger.record_usage(seeded.tenant, NOW)
        finally:
            database.increment_usage = real_increment

        assert failing.await_count == attempts


class TestUncertainCommit:
    """An increment whose commit fails is never applied twice."""

    async def test_commit_failure_is_uncertain(self, seeded, database, monkeypatch):
        real_commit = AsyncSession.commit

        async def commit_then_fail(self):
            await real_commit(self)
            raise OperationalError("COMMIT", {}, Exception("connection lost"))

        monkeypatch.setattr(AsyncSession, "commit", commit_then_fail)
        with pytest.raises(UsageWriteUncertain):
            await database.increment_usage(seeded.org_id, date(2026, 10, 16))
        monkeypatch.undo()

        async with database.session() as session:
            count = (
                await session.execute(
                    select(UsageCounter.count).where(UsageCounter.org_id == seeded.org_id)
                )
            ).scalar_one()
        assert count == 1

    async def test_record_usage_does_not_retry_after_commit(
        self, seeded, ledger, database, monkeypatch
    ):
        """A lost commit acknowledgement counts the request once, not twice."""
        real_commit = AsyncSession.commit

        async def commit_then_fail(self):
            await real_commit(self)
            raise OperationalError("COMMIT", {}, Exception("connection lost"))

        monkeypatch.setattr(AsyncSession, "commit", commit_then_fail)
        assert await ledger.record_usage(seeded.tenant, NOW)
        monkeypatch.undo()

        assert ledger.pending_count == 0
        assert await ledger.current_usage(seeded.tenant, NOW) == 1

    async def test_uncertain_increment_not_retried(self, seeded, database, settings):
        ledger = QuotaLedger(database, settings)
        real_increment = database.increment_usage
        uncertain = AsyncMock(side_effect=UsageWriteUncertain("commit failed"))
        database.increment_usage = uncertain

        try:
            assert await ledger.record_usage(seeded.tenant, NOW)
        finally:
            database.increment_usage = real_increment

        assert uncertain.await_count == 1
        assert ledger.pending_count == 0


class TestConcurrentReplay:
    """Concurrent recordings share one replay queue."""

    async def test_concurrent_flushes_replay_each_entry_once(self, database, settings):
        ledger = QuotaLedger(database, settings)
        day = date(2026, 10, 16)
        ledger._pending.extend([("org-a", day), ("org-b", day)])
        written: list[tuple[str, date]] = []

        async def slow_increment(org_id, when, amount=1):
            await asyncio.sleep(0.01)
            written.append((org_id, when))
            return 1

        database.increment_usage = slow_increment

        results = await asyncio.gather(ledger.flush_pending(), ledger.flush_pending())

        assert sorted(results) == [0, 2]
        assert written == [("org-a", day), ("org-b", day)]
        assert ledger.pending_count == 0

    async def test_failed_replay_keeps_order(self, database, settings):
        ledger = QuotaLedger(database, settings)
        day = date(2026, 10, 16)
        ledger._pending.extend([("org-a", day), ("org-b", day)])
        database.increment_usage = AsyncMock(side_effect=RuntimeError("down"))

        assert await ledger.flush_pending() == 0

        assert list(ledger._pending) == [("org-a", day), ("org-b", day)]

    async def test_concurrent_requests_with_queued_usage(self, pipeline, seeded, ledger, database):
        """Two requests racing to replay a queued increment both succeed and count once each."""
        today = datetime.now(timezone.utc).date()
        ledger._pending.append((seeded.org_id, today))
        body = b'{"text": "hello"}'

        outcomes = await asyncio.gather(
            pipeline.run(seeded.api_key, body),
            pipeline.run(seeded.api_key, body),
        )

        assert all(isinstance(outcome, PipelineSuccess) for outcome in outcomes)
        assert ledger.pending_count == 0
        assert await ledger.current_usage(seeded.tenant, datetime.now(timezone.utc)) == 3
