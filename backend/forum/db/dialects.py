"""Small helpers for statements whose SQL differs between Postgres and SQLite."""

from sqlalchemy import ColumnElement, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_name(db: AsyncSession) -> str:
    """Name of the dialect the session is bound to ("postgresql" or "sqlite")."""
    return db.get_bind().dialect.name


def insert_ignoring_conflicts(db: AsyncSession, model: type, index_elements: list[str]):
    """INSERT ... ON CONFLICT DO NOTHING for the session's backend."""
    insert = postgresql.insert if dialect_name(db) == "postgresql" else sqlite.insert
    return insert(model).on_conflict_do_nothing(index_elements=index_elements)


def least(db: AsyncSession, *expressions: ColumnElement) -> ColumnElement:
    """Row-wise minimum. Callers must coalesce NULLs first: SQLite min() propagates them."""
    if dialect_name(db) == "postgresql":
        return func.least(*expressions)
    return func.min(*expressions)
