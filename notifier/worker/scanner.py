"""Threshold scanner: paged walks over time-windowed entities.

Each scan routine describes one monitored kind (which rows qualify and what to
do with a page of them). The scanner owns the page loop:

- pages are fetched in ascending id order, ``page_size`` rows at a time,
  strictly after the cursor (the id of the previous page's last row)
- the loop ends on an empty page or a short page
- the cursor is a local variable; it is never persisted, so every invocation
  starts again from the beginning of the window
- rows are handed to the routine one page at a time and dropped before the
  next fetch, which bounds memory by the page size
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_
from sqlalchemy.engine import Row
from sqlalchemy.sql import Select

from notifier import metrics
from notifier.config import settings
from notifier.db.session import AsyncSessionLocal
from notifier.notify.dedupe import DedupGate, dedup_gate

logger = logging.getLogger(__name__)


class ScanKind(str, Enum):
    """Monitored entity kinds, one scan routine each."""

    PROMOTION_ENDING_SOON = "promotion_ending_soon"
    PROMOTION_ENDED = "promotion_ended"
    SUBSCRIPTION_ENDING_SOON = "subscription_ending_soon"
    SUBSCRIPTION_EXPIRED = "subscription_expired"


@dataclass(frozen=True)
class TimeWindow:
    """Time range a row's end timestamp must fall into."""

    start: datetime
    end: datetime
    include_end: bool = True

    @classmethod
    def ending_soon(cls, now: datetime, hours: float) -> "TimeWindow":
        """``[now, now + hours]``"""
        return cls(start=now, end=now + timedelta(hours=hours), include_end=True)

    @classmethod
    def just_ended(cls, now: datetime, hours: float = 1) -> "TimeWindow":
        """``[now - hours, now)``"""
        return cls(start=now - timedelta(hours=hours), end=now, include_end=False)

    @property
    def length(self) -> timedelta:
        return self.end - self.start

    def predicate(self, column):
        upper = column <= self.end if self.include_end else column < self.end
        return and_(column >= self.start, upper)

    def contains(self, value: Optional[datetime]) -> bool:
        if value is None:
            return False
        if self.include_end:
            return self.start <= value <= self.end
        return self.start <= value < self.end


@dataclass
class ScanResult:
    """Counters for one scan routine run."""

    kind: str
    processed: int = 0
    notified: int = 0
    expired: int = 0
    errors: int = 0
    failed_batches: int = 0
    pages: int = 0
    duration_seconds: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ScanContext:
    """Per-invocation state handed to a routine with each page."""

    now: datetime
    window: TimeWindow
    dedup_window: timedelta
    result: ScanResult


class ScanRoutine(ABC):
    """One monitored kind: its window, its query and its per-page procedure."""

    kind: ScanKind

    def __init__(
        self,
        session_factory=None,
        dedup: Optional[DedupGate] = None,
        sub_batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.dedup = dedup or dedup_gate
        self.sub_batch_size = sub_batch_size or settings.notification_batch_size

    @property
    @abstractmethod
    def id_column(self):
        """Primary key column the cursor walks over."""

    @abstractmethod
    def default_window_hours(self) -> float:
        ...

    @abstractmethod
    def window(self, now: datetime, hours: float) -> TimeWindow:
        ...

    @abstractmethod
    def build_query(self, window: TimeWindow) -> Select:
        """Projection of the qualifying rows; must expose an ``id`` column."""

    @abstractmethod
    async def process_page(self, rows: Sequence[Row], ctx: ScanContext) -> None:
        """Handle one page. Must not raise for a single bad row."""

    def dedup_window(self, window: TimeWindow) -> timedelta:
        """Look-back used by the dedup gate; sized to one scan's window."""
        return window.length


def default_routines(session_factory=None, dedup=None, sub_batch_size=None) -> List[ScanRoutine]:
    """The four routines run by the hourly trigger."""
    from notifier.worker.promotion_scans import PromotionEndedScan, PromotionEndingSoonScan
    from notifier.worker.subscription_scans import (
        SubscriptionEndingSoonScan,
        SubscriptionExpiredScan,
    )

    kwargs = dict(session_factory=session_factory, dedup=dedup, sub_batch_size=sub_batch_size)
    return [
        PromotionEndingSoonScan(**kwargs),
        PromotionEndedScan(**kwargs),
        SubscriptionEndingSoonScan(**kwargs),
        SubscriptionExpiredScan(**kwargs),
    ]


class ThresholdScanner:
    """Runs scan routines page by page."""

    def __init__(
        self,
        session_factory=None,
        page_size: Optional[int] = None,
        routines: Optional[Iterable[ScanRoutine]] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.page_size = page_size or settings.scan_page_size
        if routines is None:
            routines = default_routines(session_factory=self.session_factory)
        self.routines: Dict[ScanKind, ScanRoutine] = {r.kind: r for r in routines}

    @property
    def kinds(self) -> List[ScanKind]:
        return list(self.routines)

    async def scan(
        self,
        kind: ScanKind,
        now: Optional[datetime] = None,
        window_hours: Optional[float] = None,
    ) -> ScanResult:
        """
        Walk every row of ``kind`` inside the window and process it.

        Row and sub-batch failures are absorbed by the routine and counted.
        A failed page fetch propagates to the caller.

        Args:
            kind: Which routine to run
            now: Reference time (defaults to current UTC time)
            window_hours: Override of the routine's window length

        Returns:
            ScanResult with the counters of this run
        """
        routine = self.routines[ScanKind(kind)]
        now = now or datetime.utcnow()
        hours = window_hours if window_hours is not None else routine.default_window_hours()
        window = routine.window(now, hours)
        result = ScanResult(kind=routine.kind.value)
        ctx = ScanContext(
            now=now,
            window=window,
            dedup_window=routine.dedup_window(window),
            result=result,
        )

        logger.info(
            f"Scanning {routine.kind.value} (window {window.start.isoformat()} -> "
            f"{window.end.isoformat()}, page size {self.page_size})"
        )
        started = time.monotonic()
        query = routine.build_query(window)
        cursor: Optional[int] = None

        while True:
            rows = await self._fetch_page(query, routine.id_column, cursor)
            result.pages += 1
            if not rows:
                break

            await routine.process_page(rows, ctx)

            page_length = len(rows)
            result.processed += page_length
            cursor = rows[-1].id

            if page_length < self.page_size:
                break

        result.duration_seconds = time.monotonic() - started
        metrics.record_scan_result(routine.kind.value, result)

        summary = (
            f"{routine.kind.value}: processed {result.processed} rows in {result.pages} pages, "
            f"notified {result.notified}"
        )
        if result.expired:
            summary += f", transitioned {result.expired}"
        if result.errors or result.failed_batches:
            summary += f", {result.errors} row errors, {result.failed_batches} failed batches"
        logger.info(f"{summary} ({result.duration_seconds:.2f}s)")
        return result

    async def _fetch_page(self, query: Select, id_column, cursor: Optional[int]) -> List[Row]:
        """Fetch the next page strictly after ``cursor``."""
        page_query = query.order_by(id_column.asc()).limit(self.page_size)
        if cursor is not None:
            page_query = page_query.where(id_column > cursor)

        async with self.session_factory() as db:
            result = await db.execute(page_query)
            return list(result.all())
