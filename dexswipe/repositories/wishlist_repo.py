"""Read access to client wishlists (editing lives outside this service)."""

from __future__ import annotations

from sqlalchemy import select
from sqlmodel.ext.asyncio.session import AsyncSession

from dexswipe.models import WishlistItem
from dexswipe.models.base import as_utc


async def list_wishlist(session: AsyncSession, client_id: str, limit: int) -> list[WishlistItem]:
    table = WishlistItem.__table__
    stmt = (
        select(table)
        .where(table.c.client_id == client_id)
        .order_by(table.c.created_at.desc(), table.c.id.desc())
        .limit(limit)
    )
    conn = await session.connection()
    items = []
    for row in (await conn.execute(stmt)).all():
        item = WishlistItem(**dict(row._mapping))
        item.captured_at = as_utc(item.captured_at)
        item.created_at = as_utc(item.created_at)
        items.append(item)
    return items


__all__ = ["list_wishlist"]
