"""Dialect-aware helpers shared by the repositories."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession


def dialect_insert(session: AsyncSession):
    name = session.bind.dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect: {name}")


def build_row(model: type[SQLModel], **values: Any) -> dict[str, Any]:
    """Column values for a core INSERT, with the model's Python-side defaults applied."""

    return model(**values).model_dump(exclude={"id"})


async def insert_ignore(
    session: AsyncSession,
    model: type[SQLModel],
    rows: Sequence[dict[str, Any]],
    conflict_columns: Iterable[str],
) -> int:
    """INSERT ... ON CONFLICT DO NOTHING; returns the number of inserted rows."""

    if not rows:
        return 0
    stmt = (
        dialect_insert(session)(model.__table__)
        .values(list(rows))
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
    )
    conn = await session.connection()
    result = await conn.execute(stmt)
    return max(result.rowcount or 0, 0)


__all__ = ["build_row", "dialect_insert", "insert_ignore"]
