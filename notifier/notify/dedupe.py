"""Deduplication gate for scheduled notifications."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.db.models import Notification, NotificationType

logger = logging.getLogger(__name__)


class SubjectScope(str, Enum):
    """What a dedup key is scoped to."""

    PROMOTION = "promotion"  # entity-scoped: one notification per promotion
    USER = "user"  # recipient-scoped: one notification per user


@dataclass(frozen=True)
class SubjectKey:
    """Identity used to scope deduplication."""

    scope: SubjectScope
    id: int

    @classmethod
    def promotion(cls, promotion_id: int) -> "SubjectKey":
        return cls(SubjectScope.PROMOTION, promotion_id)

    @classmethod
    def user(cls, user_id: int) -> "SubjectKey":
        return cls(SubjectScope.USER, user_id)


_SUBJECT_COLUMNS = {
    SubjectScope.PROMOTION: Notification.promotion_id,
    SubjectScope.USER: Notification.user_id,
}


class DedupGate:
    """
    Decides whether an equivalent notification was already sent.

    The check and the later insert are not atomic: two concurrent scans can
    both pass the gate and create a duplicate. Notifications are best-effort
    so that is tolerated. Replace this class to move to a unique constraint or
    an idempotency key; scan routines only depend on ``already_notified``.
    """

    async def already_notified(
        self,
        db: AsyncSession,
        subject: SubjectKey,
        type: NotificationType,
        window: timedelta,
        now: datetime,
    ) -> bool:
        """
        Check for a notification for ``subject`` and ``type`` created inside the window.

        Args:
            db: Session to query with (may be inside a transaction)
            subject: Promotion or user the notification is about
            type: Notification type
            window: Look-back interval
            now: Reference time of the scan

        Returns:
            True if a matching notification exists (skip), False otherwise
        """
        column = _SUBJECT_COLUMNS[subject.scope]
        query = (
            select(Notification.id)
            .where(
                column == subject.id,
                Notification.type == NotificationType(type).value,
                Notification.created_at >= now - window,
            )
            .limit(1)
        )
        result = await db.execute(query)
        exists = result.first() is not None
        if exists:
            logger.debug(
                f"Skipping {NotificationType(type).value} for {subject.scope.value} {subject.id}: "
                f"already notified in the last {window}"
            )
        return exists


# Global gate instance
dedup_gate = DedupGate()
