"""Scan routines for user subscriptions nearing or past their end date."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from notifier.config import settings
from notifier.db.bulk import chunked, insert_skip_duplicates
from notifier.db.models import Notification, NotificationType, SubscriptionStatus, UserSubscription
from notifier.notify import formatters
from notifier.notify.dedupe import SubjectKey
from notifier.worker.scanner import ScanContext, ScanKind, ScanRoutine, TimeWindow
from notifier.worker.write_groups import SUBSCRIPTION_EXPIRED_WRITES

logger = logging.getLogger(__name__)


def _notification_row(user_id: int, type: NotificationType, now: datetime) -> Dict[str, Any]:
    if type is NotificationType.SUBSCRIPTION_EXPIRED:
        title, message = formatters.subscription_expired()
    else:
        title, message = formatters.subscription_ending_soon()
    return {
        "user_id": user_id,
        "type": type.value,
        "title": title,
        "message": message,
        "read": False,
        "created_at": now,
    }


class _SubscriptionScan(ScanRoutine):
    """Active subscriptions whose end date falls in the window."""

    notification_type: NotificationType

    @property
    def id_column(self):
        return UserSubscription.id

    def build_query(self, window: TimeWindow) -> Select:
        return select(
            UserSubscription.id,
            UserSubscription.user_id,
            UserSubscription.ends_at,
        ).where(
            UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            UserSubscription.ends_at.is_not(None),
            window.predicate(UserSubscription.ends_at),
        )

    async def _collect_recipients(
        self, db: AsyncSession, batch: Sequence[Row], ctx: ScanContext
    ) -> Tuple[List[Row], List[int]]:
        """
        Run the dedup gate for every row of a sub-batch.

        A row whose check fails is counted and left out; it never reaches a
        write statement. Each check runs in its own savepoint so a failed
        query leaves the surrounding transaction usable for the other rows.

        Returns:
            (rows prepared without error, user ids to notify)
        """
        prepared: List[Row] = []
        user_ids: List[int] = []
        for row in batch:
            try:
                if row.user_id is None:
                    raise ValueError(f"subscription {row.id} has no user")
                async with db.begin_nested():
                    notified = await self.dedup.already_notified(
                        db,
                        SubjectKey.user(row.user_id),
                        self.notification_type,
                        ctx.dedup_window,
                        ctx.now,
                    )
            except Exception as e:
                ctx.result.errors += 1
                logger.error(
                    f"Error preparing subscription {row.id} ({self.kind.value}): {e}",
                    exc_info=True,
                )
                continue

            prepared.append(row)
            # A user with several qualifying subscriptions gets one notification
            if not notified and row.user_id not in user_ids:
                user_ids.append(row.user_id)
        return prepared, user_ids


class SubscriptionEndingSoonScan(_SubscriptionScan):
    """Warn users once before their active subscription ends."""

    kind = ScanKind.SUBSCRIPTION_ENDING_SOON
    notification_type = NotificationType.SUBSCRIPTION_ENDING_SOON

    def default_window_hours(self) -> float:
        return settings.subscription_ending_soon_hours

    def window(self, now: datetime, hours: float) -> TimeWindow:
        return TimeWindow.ending_soon(now, hours)

    async def process_page(self, rows: Sequence[Row], ctx: ScanContext) -> None:
        for batch in chunked(rows, self.sub_batch_size):
            async with self.session_factory() as db:
                _, user_ids = await self._collect_recipients(db, batch, ctx)

            if not user_ids:
                continue

            notifications = [
                _notification_row(user_id, self.notification_type, ctx.now)
                for user_id in user_ids
            ]
            try:
                async with self.session_factory() as db:
                    await insert_skip_duplicates(db, Notification, notifications)
                    await db.commit()
            except Exception as e:
                ctx.result.failed_batches += 1
                logger.error(
                    f"Error creating {len(notifications)} subscription ending soon "
                    f"notifications: {e}",
                    exc_info=True,
                )
                continue

            ctx.result.notified += len(notifications)


class SubscriptionExpiredScan(_SubscriptionScan):
    """
    Expire subscriptions whose end date just passed and notify their users.

    Each sub-batch is one all-or-nothing write group: the status updates and
    the notifications commit together or not at all. A rolled back sub-batch
    leaves its rows ACTIVE; with the default one hour look-back they will not
    be picked up again once they leave the window.
    """

    kind = ScanKind.SUBSCRIPTION_EXPIRED
    notification_type = NotificationType.SUBSCRIPTION_EXPIRED
    write_group = SUBSCRIPTION_EXPIRED_WRITES

    def default_window_hours(self) -> float:
        return settings.ended_lookback_hours

    def window(self, now: datetime, hours: float) -> TimeWindow:
        return TimeWindow.just_ended(now, hours)

    async def process_page(self, rows: Sequence[Row], ctx: ScanContext) -> None:
        for batch in chunked(rows, self.sub_batch_size):

            async def expire_batch(db: AsyncSession, batch=batch) -> Tuple[int, int]:
                return await self._expire_batch(db, batch, ctx)

            try:
                [(expired, notified)] = await self.write_group.execute(
                    self.session_factory, [expire_batch]
                )
            except Exception as e:
                ctx.result.failed_batches += 1
                logger.error(
                    f"Rolled back expired subscription batch of {len(batch)} rows "
                    f"(ids {batch[0].id}-{batch[-1].id}): {e}",
                    exc_info=True,
                )
                continue

            ctx.result.expired += expired
            ctx.result.notified += notified

    async def _expire_batch(
        self, db: AsyncSession, batch: Sequence[Row], ctx: ScanContext
    ) -> Tuple[int, int]:
        prepared, user_ids = await self._collect_recipients(db, batch, ctx)
        if not prepared:
            return 0, 0

        result = await db.execute(
            update(UserSubscription)
            .where(
                UserSubscription.id.in_([row.id for row in prepared]),
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .values(status=SubscriptionStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        expired = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(prepared)

        notifications = [
            _notification_row(user_id, self.notification_type, ctx.now) for user_id in user_ids
        ]
        notified = await insert_skip_duplicates(db, Notification, notifications)
        return expired, notified
