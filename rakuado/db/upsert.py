"""Dialect-aware INSERT ... ON CONFLICT DO UPDATE.

SQLite and PostgreSQL both support native upserts; this picks the right
`insert()` construct for the session's bind so callers can replace a row
by its natural key atomically.
"""
from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession, table):
    """Return the dialect-specific insert() for `table` (ORM class or Table)."""
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert not supported for dialect {name!r}")


async def replace_by_key(
    session: AsyncSession,
    table,
    key_columns: Iterable[str],
    values: dict[str, Any],
) -> None:
    """Insert `values`, or overwrite the given non-key columns of the existing row."""
    keys = list(key_columns)
    stmt = dialect_insert(session, table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=keys,
        set_={k: getattr(stmt.excluded, k) for k in values if k not in keys},
    )
    await session.execute(stmt)
