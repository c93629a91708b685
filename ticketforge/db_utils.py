"""Database utility functions for cross-database compatibility."""

import logging
from typing import Any, TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _dialect_insert(session: AsyncSession, model: type[T]):
    """Return an INSERT construct that supports ON CONFLICT for the session's dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")


async def upsert_many(
    session: AsyncSession,
    model: type[T],
    values_list: list[dict[str, Any]],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    ignore_duplicates: bool = False,
) -> int:
    """
    Insert rows, resolving conflicts on `conflict_columns`.

    Args:
        session: AsyncSession instance
        model: SQLModel table class
        values_list: Column values per row (all rows share the same keys)
        conflict_columns: Columns that define uniqueness
        update_columns: Columns to overwrite on conflict (defaults to all
            non-conflict columns). Ignored when ignore_duplicates is set.
        ignore_duplicates: ON CONFLICT DO NOTHING instead of DO UPDATE

    Returns:
        Number of rows submitted

    Example:
        await upsert_many(
            session,
            TicketLegOutcome,
            rows,
            conflict_columns=["ticket_id", "fixture_id", "market", "side", "line"],
            ignore_duplicates=True,
        )
    """
    if not values_list:
        return 0

    stmt = _dialect_insert(session, model).values(values_list)

    if ignore_duplicates:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
    else:
        if update_columns is None:
            update_columns = [k for k in values_list[0].keys() if k not in conflict_columns]
        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=conflict_columns,
                set_={col: getattr(stmt.excluded, col) for col in update_columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)

    await session.execute(stmt)
    logger.debug(f"Upserted {len(values_list)} rows into {model.__tablename__}")
    return len(values_list)
