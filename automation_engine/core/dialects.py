"""Dialect-aware statement helpers for SQLite (local/test) and PostgreSQL."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from sqlalchemy import ColumnElement, Select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def dialect_name(session: Session) -> str:
    return session.get_bind().dialect.name


def insert_ignoring_conflicts(
    session: Session,
    model: Any,
    values: Dict[str, Any],
    *,
    index_elements: Sequence[str],
    index_where: Optional[ColumnElement[bool]] = None,
) -> bool:
    """Run ``INSERT ... ON CONFLICT DO NOTHING``; return whether a row was written."""

    module = postgresql if dialect_name(session) == "postgresql" else sqlite
    stmt = module.insert(model.__table__).values(**values).on_conflict_do_nothing(
        index_elements=list(index_elements),
        index_where=index_where,
    )
    result = session.execute(stmt)
    return result.rowcount == 1


def lock_rows(session: Session, stmt: Select, *, skip_locked: bool = True) -> Select:
    """Add ``FOR UPDATE [SKIP LOCKED]`` where the database supports row locks."""

    if dialect_name(session) == "sqlite":
        return stmt
    return stmt.with_for_update(skip_locked=skip_locked)
