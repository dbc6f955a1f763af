"""Tests for the scheduled notification job: isolation, locking and triggers."""

import json
import logging

import pytest
from apscheduler.triggers.cron import CronTrigger

from notifier.logging_config import RunJsonFormatter
from notifier.worker.scanner import ScanKind, ScanResult
from notifier.worker.scheduler import JOB_ID, setup_scheduler
from notifier.worker.tasks import NotificationTaskRunner


class FakeScanner:
    """Stands in for the threshold scanner; one kind can be made to fail."""

    def __init__(self, failing_kind=None):
        self.failing_kind = failing_kind
        self.calls = []

    @property
    def kinds(self):
        return list(ScanKind)

    async def scan(self, kind, now=None, window_hours=None):
        self.calls.append(kind)
        if kind == self.failing_kind:
            raise RuntimeError(f"{kind.value} query failed")
        return ScanResult(kind=kind.value, processed=2, notified=1)


class FakeLock:
    def __init__(self, token="token", error=None):
        self.token = token
        self.error = error
        self.released = []

    async def acquire(self, run_id, ttl_seconds=None):
        if self.error:
            raise self.error
        return self.token

    async def release(self, run_id, token):
        self.released.append(token)
        return True

    async def close(self):
        pass


@pytest.mark.asyncio
async def test_one_failing_routine_does_not_stop_the_others():
    scanner = FakeScanner(failing_kind=ScanKind.PROMOTION_ENDING_SOON)
    lock = FakeLock()
    runner = NotificationTaskRunner(scanner=scanner, lock_manager=lock)

    summary = await runner.handle_scheduled_notifications()

    assert sorted(scanner.calls) == sorted(ScanKind)
    assert summary["status"] == "completed_with_errors"
    assert "error" in summary["results"][ScanKind.PROMOTION_ENDING_SOON.value]
    for kind in ScanKind:
        if kind is not ScanKind.PROMOTION_ENDING_SOON:
            assert summary["results"][kind.value]["notified"] == 1
    assert lock.released == ["token"]


@pytest.mark.asyncio
async def test_held_lock_skips_the_run():
    scanner = FakeScanner()
    runner = NotificationTaskRunner(scanner=scanner, lock_manager=FakeLock(token=None))

    summary = await runner.handle_scheduled_notifications()

    assert summary["status"] == "skipped"
    assert scanner.calls == []


@pytest.mark.asyncio
async def test_unreachable_lock_store_still_runs():
    scanner = FakeScanner()
    lock = FakeLock(error=ConnectionError("redis down"))
    runner = NotificationTaskRunner(scanner=scanner, lock_manager=lock)

    summary = await runner.handle_scheduled_notifications()

    assert summary["status"] == "completed"
    assert len(scanner.calls) == 4
    assert lock.released == []


@pytest.mark.asyncio
async def test_manual_trigger_uses_the_same_path():
    scanner = FakeScanner()
    runner = NotificationTaskRunner(scanner=scanner, lock_manager=FakeLock())

    summary = await runner.trigger_scheduled_notifications()

    assert summary["trigger"] == "manual"
    assert summary["status"] == "completed"
    assert runner.last_summary is summary


def test_scheduler_registers_hourly_job():
    scheduler = setup_scheduler()

    job = scheduler.get_job(JOB_ID)

    assert job is not None
    assert isinstance(job.trigger, CronTrigger)
    assert job.max_instances == 1
    assert job.coalesce is True


@pytest.mark.asyncio
async def test_run_records_carry_run_context(caplog):
    runner = NotificationTaskRunner(scanner=FakeScanner(), lock_manager=FakeLock())

    with caplog.at_level(logging.INFO, logger="notifier.worker.tasks"):
        summary = await runner.trigger_scheduled_notifications()

    records = [r for r in caplog.records if r.name == "notifier.worker.tasks"]
    assert records
    assert {r.run_id for r in records} == {summary["run_id"]}
    assert {r.trigger for r in records} == {"manual"}


def test_json_formatter_includes_run_context():
    formatter = RunJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    record = logging.LogRecord(
        "notifier.worker.tasks", logging.INFO, __file__, 1, "run finished", None, None
    )
    record.run_id = "abc123"
    record.trigger = "scheduled"

    payload = json.loads(formatter.format(record))

    assert payload["run_id"] == "abc123"
    assert payload["trigger"] == "scheduled"
    assert payload["level"] == "INFO"
    assert "scan_kind" not in payload
