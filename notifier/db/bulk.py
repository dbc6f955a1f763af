"""Multi-row insert helpers shared by the scan routines."""

import logging
from typing import Any, Dict, List, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def insert_skip_duplicates(
    db: AsyncSession,
    model,
    rows: Sequence[Dict[str, Any]],
) -> int:
    """
    Insert many rows in one statement with ``ON CONFLICT DO NOTHING``.

    The clause only skips rows that violate a unique constraint. The
    ``notifications`` table has none beyond its primary key, so there it
    behaves as a plain multi-row insert and duplicates are kept out by the
    dedup gate alone.

    Args:
        db: Session (the caller owns the transaction)
        model: Mapped class to insert into
        rows: Column -> value mappings

    Returns:
        Number of rows submitted (0 for an empty input, no statement issued)
    """
    if not rows:
        return 0

    dialect = db.get_bind().dialect.name
    insert_fn = _DIALECT_INSERTS.get(dialect)
    if insert_fn is None:
        raise NotImplementedError(f"Duplicate-skipping insert not supported on {dialect}")

    stmt = insert_fn(model).values(list(rows)).on_conflict_do_nothing()
    await db.execute(stmt)
    logger.debug(f"Bulk inserted {len(rows)} {model.__tablename__} rows (skip duplicates)")
    return len(rows)


def chunked(items: Sequence, size: int) -> List[Sequence]:
    """Split a page into sub-batches of at most ``size`` items."""
    if size <= 0:
        raise ValueError("size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]
