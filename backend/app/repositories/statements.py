"""Dialect-aware statement builders shared by the repositories."""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session


def insert_ignoring_conflicts(
    session: Session,
    model: type,
    values: dict[str, Any],
    *,
    index_elements: Sequence[str],
) -> bool:
    """Insert ``values`` unless a row with the same key exists; True if inserted."""

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values)
    else:
        raise NotImplementedError(f"ON CONFLICT DO NOTHING is not supported for {dialect}")
    stmt = stmt.on_conflict_do_nothing(index_elements=list(index_elements))
    result = session.execute(stmt)
    return bool(result.rowcount)
