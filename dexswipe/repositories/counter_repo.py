"""UTC calendar-day scan counters."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlmodel.ext.asyncio.session import AsyncSession

from dexswipe.models import ScanCounter
from dexswipe.models.base import utcnow
from .base import build_row, insert_ignore


async def get_scan_count(session: AsyncSession, stage: str, day: str) -> int:
    table = ScanCounter.__table__
    conn = await session.connection()
    value = (
        await conn.execute(
            select(table.c.count).where(table.c.stage == stage, table.c.day == day)
        )
    ).scalar_one_or_none()
    return int(value or 0)


async def increment_scan_count(session: AsyncSession, stage: str, day: str, by: int = 1) -> int:
    """Atomic increment; returns the new value."""

    table = ScanCounter.__table__
    await insert_ignore(
        session,
        ScanCounter,
        [build_row(ScanCounter, stage=stage, day=day, count=0)],
        ("stage", "day"),
    )
    conn = await session.connection()
    value = (
        await conn.execute(
            update(table)
            .where(table.c.stage == stage, table.c.day == day)
            .values(count=table.c.count + by, updated_at=utcnow())
            .returning(table.c.count)
        )
    ).scalar_one()
    await session.commit()
    return int(value)


__all__ = ["get_scan_count", "increment_scan_count"]
