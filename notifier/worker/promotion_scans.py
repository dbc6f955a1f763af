"""Scan routines for promotions that are about to end or have just ended."""

import logging
from abc import abstractmethod
from datetime import datetime
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.engine import Row
from sqlalchemy.sql import Select

from notifier.config import settings
from notifier.db.models import NotificationType, Product, Promotion, Store
from notifier.notify.dedupe import SubjectKey
from notifier.notify.service import NotificationService
from notifier.worker.scanner import ScanContext, ScanKind, ScanRoutine, TimeWindow
from notifier.worker.write_groups import PROMOTION_ENDED_WRITES

logger = logging.getLogger(__name__)


def _active_promotions_in(window: TimeWindow) -> Select:
    """Active promotions ending inside the window, with their owner resolved."""
    return (
        select(
            Promotion.id,
            Promotion.product_id,
            Product.store_id,
            Store.owner_id,
        )
        .outerjoin(Product, Promotion.product_id == Product.id)
        .outerjoin(Store, Product.store_id == Store.id)
        .where(
            Promotion.active.is_(True),
            Promotion.ends_at.is_not(None),
            window.predicate(Promotion.ends_at),
        )
    )


class _PromotionScan(ScanRoutine):
    """Shared per-row loop: one session per row, failures isolated."""

    notification_type: NotificationType

    @property
    def id_column(self):
        return Promotion.id

    def build_query(self, window: TimeWindow) -> Select:
        return _active_promotions_in(window)

    async def process_page(self, rows: Sequence[Row], ctx: ScanContext) -> None:
        for row in rows:
            try:
                if row.owner_id is None:
                    # Product or store missing
                    logger.debug(f"Promotion {row.id} has no owning store, skipping")
                    continue
                if await self.handle_row(row, ctx):
                    ctx.result.notified += 1
            except Exception as e:
                ctx.result.errors += 1
                logger.error(
                    f"Error processing promotion {row.id} ({self.kind.value}): {e}",
                    exc_info=True,
                )

    async def _already_notified(self, row: Row, ctx: ScanContext) -> bool:
        async with self.session_factory() as db:
            return await self.dedup.already_notified(
                db,
                SubjectKey.promotion(row.id),
                self.notification_type,
                ctx.dedup_window,
                ctx.now,
            )

    @abstractmethod
    async def handle_row(self, row: Row, ctx: ScanContext) -> bool:
        """Process one row; return True when a notification was created."""


class PromotionEndingSoonScan(_PromotionScan):
    """Warn the store owner once before an active promotion ends."""

    kind = ScanKind.PROMOTION_ENDING_SOON
    notification_type = NotificationType.PROMOTION_ENDING_SOON

    def default_window_hours(self) -> float:
        return settings.promotion_ending_soon_hours

    def window(self, now: datetime, hours: float) -> TimeWindow:
        return TimeWindow.ending_soon(now, hours)

    async def handle_row(self, row: Row, ctx: ScanContext) -> bool:
        if await self._already_notified(row, ctx):
            return False

        async with self.session_factory() as db:
            notification = await NotificationService(db).notify_promotion_ending_soon(row.id)
            if notification is None:
                return False
            await db.commit()
        return True


class PromotionEndedScan(_PromotionScan):
    """Notify the store owner and deactivate promotions that just ended."""

    kind = ScanKind.PROMOTION_ENDED
    notification_type = NotificationType.PROMOTION_ENDED
    write_group = PROMOTION_ENDED_WRITES

    def default_window_hours(self) -> float:
        return settings.ended_lookback_hours

    def window(self, now: datetime, hours: float) -> TimeWindow:
        return TimeWindow.just_ended(now, hours)

    async def handle_row(self, row: Row, ctx: ScanContext) -> bool:
        if await self._already_notified(row, ctx):
            return False

        promotion_id = row.id

        async def notify(db):
            return await NotificationService(db).notify_promotion_ended(promotion_id)

        async def deactivate(db):
            result = await db.execute(
                update(Promotion)
                .where(Promotion.id == promotion_id, Promotion.active.is_(True))
                .values(active=False)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

        notification, deactivated = await self.write_group.execute(
            self.session_factory, [notify, deactivate]
        )
        if deactivated:
            ctx.result.expired += 1
            logger.debug(f"Deactivated ended promotion {promotion_id}")
        return notification is not None
