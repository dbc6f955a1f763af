"""Tests for the subscription ending-soon and expired scans."""

from datetime import timedelta

import pytest
from sqlalchemy import select, text

from notifier.db.models import (
    Notification,
    NotificationType,
    SubscriptionStatus,
    UserSubscription,
)
from notifier.worker import subscription_scans
from notifier.worker.scanner import ScanKind, ThresholdScanner
from notifier.worker.subscription_scans import SubscriptionEndingSoonScan, SubscriptionExpiredScan


async def _notifications(session_factory, type: NotificationType):
    async with session_factory() as db:
        result = await db.execute(select(Notification).where(Notification.type == type.value))
        return list(result.scalars().all())


async def _statuses(session_factory):
    async with session_factory() as db:
        result = await db.execute(
            select(UserSubscription.id, UserSubscription.status).order_by(UserSubscription.id)
        )
        return {row.id: row.status for row in result.all()}


def _scanner(session_factory, routine_cls, sub_batch_size=None):
    routine = routine_cls(session_factory=session_factory, sub_batch_size=sub_batch_size)
    return ThresholdScanner(session_factory=session_factory, page_size=50, routines=[routine])


@pytest.mark.asyncio
async def test_expired_transitions_and_notifies_exactly_once(seed, session_factory, now):
    users = [await seed.user() for _ in range(3)]
    for user in users:
        await seed.subscription(user, ends_at=now - timedelta(minutes=20))
    scanner = _scanner(session_factory, SubscriptionExpiredScan)

    first = await scanner.scan(ScanKind.SUBSCRIPTION_EXPIRED, now=now)
    second = await scanner.scan(ScanKind.SUBSCRIPTION_EXPIRED, now=now)

    assert first.processed == 3
    assert first.expired == 3
    assert first.notified == 3
    assert second.processed == 0
    assert second.expired == 0

    assert set((await _statuses(session_factory)).values()) == {SubscriptionStatus.EXPIRED.value}
    notifications = await _notifications(session_factory, NotificationType.SUBSCRIPTION_EXPIRED)
    assert sorted(n.user_id for n in notifications) == sorted(u.id for u in users)
    assert {n.title for n in notifications} == {"Subscription Expired"}
    assert {n.message for n in notifications} == {"Your subscription has expired"}


@pytest.mark.asyncio
async def test_expired_ignores_rows_outside_window_or_not_active(seed, session_factory, now):
    user = await seed.user()
    await seed.subscription(user, ends_at=now)  # not ended yet
    await seed.subscription(user, ends_at=now - timedelta(hours=3))  # outside look-back
    await seed.subscription(
        user, ends_at=now - timedelta(minutes=5), status=SubscriptionStatus.CANCELLED
    )
    scanner = _scanner(session_factory, SubscriptionExpiredScan)

    result = await scanner.scan(ScanKind.SUBSCRIPTION_EXPIRED, now=now)

    assert result.processed == 0
    assert await _notifications(session_factory, NotificationType.SUBSCRIPTION_EXPIRED) == []


@pytest.mark.asyncio
async def test_expired_recent_notification_still_expires(seed, session_factory, now):
    user = await seed.user()
    first = await seed.subscription(user, ends_at=now - timedelta(minutes=40))
    second = await seed.subscription(user, ends_at=now - timedelta(minutes=10))
    scanner = _scanner(session_factory, SubscriptionExpiredScan)

    result = await scanner.scan(ScanKind.SUBSCRIPTION_EXPIRED, now=now)

    statuses = await _statuses(session_factory)
    assert statuses[first.id] == SubscriptionStatus.EXPIRED.value
    assert statuses[second.id] == SubscriptionStatus.EXPIRED.value
    assert result.expired == 2
    assert result.notified == 1
    assert len(await _notifications(session_factory, NotificationType.SUBSCRIPTION_EXPIRED)) == 1


@pytest.mark.asyncio
async def test_failed_sub_batch_rolls_back_only_itself(seed, session_factory, now, monkeypatch):
    users = [await seed.user() for _ in range(5)]
    subscriptions = [
        await seed.subscription(user, ends_at=now - timedelta(minutes=15)) for user in users
    ]

    calls = {"count": 0}
    insert = subscription_scans.insert_skip_duplicates

    async def failing_second_insert(db, model, rows):
        calls["count"] += 1
        if calls["count"] == 2:
            raise RuntimeError("insert failed")
        return await insert(db, model, rows)

    monkeypatch.setattr(subscription_scans, "insert_skip_duplicates", failing_second_insert)
    scanner = _scanner(session_factory, SubscriptionExpiredScan, sub_batch_size=2)

    result = await scanner.scan(ScanKind.SUBSCRIPTION_EXPIRED, now=now)

    assert result.processed == 5
    assert result.failed_batches == 1
    assert result.expired == 3
    assert result.notified == 3

    statuses = await _statuses(session_factory)
    rolled_back = {subscriptions[2].id, subscriptions[3].id}
    for sub_id, status in statuses.items():
        expected = SubscriptionStatus.ACTIVE if sub_id in rolled_back else SubscriptionStatus.EXPIRED
        assert status == expected.value

    notified_users = {
        n.user_id
        for n in await _notifications(session_factory, NotificationType.SUBSCRIPTION_EXPIRED)
    }
    assert notified_users == {users[0].id, users[1].id, users[4].id}


@pytest.mark.asyncio
async def test_expired_row_that_fails_preparation_is_left_active(
    seed, session_factory, now, monkeypatch
):
    users = [await seed.user() for _ in range(3)]
    subscriptions = [
        await seed.subscription(user, ends_at=now - timedelta(minutes=15)) for user in users
    ]
    routine = SubscriptionExpiredScan(session_factory=session_factory)
    original = routine.dedup.already_notified

    async def flaky(db, subject, type, window, now):
        if subject.id == users[1].id:
            raise RuntimeError("dedup lookup failed")
        return await original(db, subject, type, window, now)

    monkeypatch.setattr(routine.dedup, "already_notified", flaky)
    scanner = ThresholdScanner(session_factory=session_factory, routines=[routine])

    result = await scanner.scan(ScanKind.SUBSCRIPTION_EXPIRED, now=now)

    assert result.errors == 1
    assert result.failed_batches == 0
    assert result.expired == 2
    statuses = await _statuses(session_factory)
    assert statuses[subscriptions[1].id] == SubscriptionStatus.ACTIVE.value
    assert statuses[subscriptions[0].id] == SubscriptionStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_ending_soon_bulk_notifies_with_dedup(seed, session_factory, now):
    users = [await seed.user() for _ in range(4)]
    for user in users:
        await seed.subscription(user, ends_at=now + timedelta(hours=30))
    # Second qualifying subscription for the same user
    await seed.subscription(users[0], ends_at=now + timedelta(hours=40))
    await seed.subscription(users[1], ends_at=now + timedelta(hours=49))  # outside the window
    scanner = _scanner(session_factory, SubscriptionEndingSoonScan, sub_batch_size=3)

    first = await scanner.scan(ScanKind.SUBSCRIPTION_ENDING_SOON, now=now)
    second = await scanner.scan(ScanKind.SUBSCRIPTION_ENDING_SOON, now=now)

    assert first.processed == 5
    assert first.notified == 4
    assert second.processed == 5
    assert second.notified == 0

    notifications = await _notifications(session_factory, NotificationType.SUBSCRIPTION_ENDING_SOON)
    assert sorted(n.user_id for n in notifications) == sorted(u.id for u in users)
    assert {n.title for n in notifications} == {"Subscription Ending Soon"}

    # Ending soon never changes the status
    assert set((await _statuses(session_factory)).values()) == {SubscriptionStatus.ACTIVE.value}


@pytest.mark.asyncio
async def test_ending_soon_failed_insert_is_counted(seed, session_factory, now, monkeypatch):
    user = await seed.user()
    await seed.subscription(user, ends_at=now + timedelta(hours=5))

    async def failing_insert(db, model, rows):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(subscription_scans, "insert_skip_duplicates", failing_insert)
    scanner = _scanner(session_factory, SubscriptionEndingSoonScan)

    result = await scanner.scan(ScanKind.SUBSCRIPTION_ENDING_SOON, now=now)

    assert result.processed == 1
    assert result.notified == 0
    assert result.failed_batches == 1
    assert await _notifications(session_factory, NotificationType.SUBSCRIPTION_ENDING_SOON) == []


def _failing_lookup_for(user_id, original):
    """Dedup lookup that issues a broken query for one user."""

    async def lookup(db, subject, type, window, now):
        if subject.id == user_id:
            await db.execute(text("SELECT id FROM missing_notifications_table"))
        return await original(db, subject, type, window, now)

    return lookup


@pytest.mark.asyncio
async def test_expired_database_error_in_one_row_keeps_the_batch(
    seed, session_factory, now, monkeypatch
):
    users = [await seed.user() for _ in range(3)]
    subscriptions = [
        await seed.subscription(user, ends_at=now - timedelta(minutes=20)) for user in users
    ]
    routine = SubscriptionExpiredScan(session_factory=session_factory)
    lookup = _failing_lookup_for(users[0].id, routine.dedup.already_notified)
    monkeypatch.setattr(routine.dedup, "already_notified", lookup)
    scanner = ThresholdScanner(session_factory=session_factory, routines=[routine])

    result = await scanner.scan(ScanKind.SUBSCRIPTION_EXPIRED, now=now)

    assert result.errors == 1
    assert result.failed_batches == 0
    assert result.expired == 2
    assert result.notified == 2
    statuses = await _statuses(session_factory)
    assert statuses[subscriptions[0].id] == SubscriptionStatus.ACTIVE.value
    assert statuses[subscriptions[1].id] == SubscriptionStatus.EXPIRED.value
    assert statuses[subscriptions[2].id] == SubscriptionStatus.EXPIRED.value
    notifications = await _notifications(session_factory, NotificationType.SUBSCRIPTION_EXPIRED)
    assert sorted(n.user_id for n in notifications) == [users[1].id, users[2].id]


@pytest.mark.asyncio
async def test_ending_soon_database_error_in_one_row_keeps_the_rest(
    seed, session_factory, now, monkeypatch
):
    users = [await seed.user() for _ in range(3)]
    for user in users:
        await seed.subscription(user, ends_at=now + timedelta(hours=10))
    routine = SubscriptionEndingSoonScan(session_factory=session_factory)
    lookup = _failing_lookup_for(users[0].id, routine.dedup.already_notified)
    monkeypatch.setattr(routine.dedup, "already_notified", lookup)
    scanner = ThresholdScanner(session_factory=session_factory, routines=[routine])

    result = await scanner.scan(ScanKind.SUBSCRIPTION_ENDING_SOON, now=now)

    assert result.errors == 1
    assert result.notified == 2
    notifications = await _notifications(session_factory, NotificationType.SUBSCRIPTION_ENDING_SOON)
    assert sorted(n.user_id for n in notifications) == [users[1].id, users[2].id]
