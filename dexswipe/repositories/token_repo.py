"""Token snapshots, the feed ranking query and per-client seen state."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence

from sqlalchemy import and_, exists, func, or_, select
from sqlmodel.ext.asyncio.session import AsyncSession

from dexswipe.models import SeenToken, Token
from dexswipe.models.base import as_utc, utcnow
from .base import build_row, dialect_insert, insert_ignore

MARKET_FIELDS = (
    "pair_address",
    "price_usd",
    "liquidity_usd",
    "volume_24h",
    "fdv",
    "market_cap",
    "price_change_5m",
    "price_change_15m",
    "price_change_1h",
    "buys_24h",
    "sells_24h",
    "pair_created_at",
    "last_fetched_at",
)
PROFILE_FIELDS = ("name", "symbol", "logo_url", "website_url", "description", "boost_amount")

_DATETIME_FIELDS = ("pair_created_at", "last_fetched_at", "created_at", "updated_at")


@dataclass(frozen=True, slots=True)
class FeedCursor:
    """Keyset position: (updated_at, id) of the last consumed candidate."""

    updated_at: datetime
    id: int

    def encode(self) -> str:
        raw = f"{as_utc(self.updated_at).isoformat()}|{self.id}".encode()
        return base64.urlsafe_b64encode(raw).decode().rstrip("=")

    @classmethod
    def decode(cls, value: str | None) -> "FeedCursor | None":
        """Unreadable cursors restart from the top instead of failing the request."""

        if not value:
            return None
        try:
            padded = value + "=" * (-len(value) % 4)
            stamp, _, ident = base64.urlsafe_b64decode(padded.encode()).decode().partition("|")
            return cls(updated_at=as_utc(datetime.fromisoformat(stamp)), id=int(ident))
        except (ValueError, UnicodeDecodeError):
            return None


def _to_token(mapping) -> Token:
    token = Token(**dict(mapping))
    for field in _DATETIME_FIELDS:
        setattr(token, field, as_utc(getattr(token, field)))
    return token


async def _upsert(
    session: AsyncSession,
    rows: Sequence[dict[str, Any]],
    *,
    replace: Iterable[str],
    keep_existing: Iterable[str],
    touch: bool = True,
) -> int:
    # A single upsert statement may not touch the same row twice.
    rows = list({(row["chain_id"], row["token_address"]): row for row in rows}.values())
    if not rows:
        return 0
    table = Token.__table__
    stmt = dialect_insert(session)(table).values(rows)
    excluded = stmt.excluded
    set_ = {name: excluded[name] for name in replace}
    set_.update({name: func.coalesce(excluded[name], table.c[name]) for name in keep_existing})
    if touch:
        set_["updated_at"] = excluded.updated_at
    stmt = stmt.on_conflict_do_update(index_elements=["chain_id", "token_address"], set_=set_)
    conn = await session.connection()
    result = await conn.execute(stmt)
    await session.commit()
    return max(result.rowcount or 0, 0)


async def upsert_snapshots(
    session: AsyncSession,
    snapshots: Sequence[dict[str, Any]],
    *,
    touch: bool = True,
) -> int:
    """Write market fields; profile fields are only filled where the snapshot has them.

    With ``touch=False`` existing rows keep their ``updated_at``, so the feed ranking
    order (and any cursor handed out over it) does not move.
    """

    now = utcnow()
    rows = [build_row(Token, **{**snapshot, "updated_at": now}) for snapshot in snapshots]
    return await _upsert(
        session, rows, replace=MARKET_FIELDS, keep_existing=PROFILE_FIELDS, touch=touch
    )


async def upsert_stubs(session: AsyncSession, stubs: Sequence[dict[str, Any]]) -> int:
    """Discovery rows: profile fields only, market data untouched."""

    now = utcnow()
    rows = [build_row(Token, **{**stub, "updated_at": now}) for stub in stubs]
    return await _upsert(session, rows, replace=(), keep_existing=PROFILE_FIELDS)


async def get_tokens(session: AsyncSession, token_ids: Iterable[str]) -> dict[str, Token]:
    ids = list(dict.fromkeys(token_ids))
    if not ids:
        return {}
    table = Token.__table__
    conn = await session.connection()
    rows = (await conn.execute(select(table).where(table.c.token_id.in_(ids)))).all()
    return {token.token_id: token for token in map(_to_token, (row._mapping for row in rows))}


async def rank_candidates(
    session: AsyncSession,
    client_id: str,
    *,
    limit: int,
    cursor: FeedCursor | None = None,
    chains: Sequence[str] | None = None,
    min_liquidity_usd: float | None = None,
    min_volume_24h: float | None = None,
    min_fdv: float | None = None,
) -> list[Token]:
    """Priced tokens the client has not seen, newest snapshot first."""

    table = Token.__table__
    seen = SeenToken.__table__
    stmt = select(table).where(
        table.c.price_usd.is_not(None),
        ~exists().where(seen.c.client_id == client_id, seen.c.token_id == table.c.token_id),
    )
    if chains:
        stmt = stmt.where(table.c.chain_id.in_(list(chains)))
    if min_liquidity_usd is not None:
        stmt = stmt.where(table.c.liquidity_usd >= min_liquidity_usd)
    if min_volume_24h is not None:
        stmt = stmt.where(table.c.volume_24h >= min_volume_24h)
    if min_fdv is not None:
        stmt = stmt.where(table.c.fdv >= min_fdv)
    if cursor is not None:
        stmt = stmt.where(
            or_(
                table.c.updated_at < cursor.updated_at,
                and_(table.c.updated_at == cursor.updated_at, table.c.id < cursor.id),
            )
        )
    stmt = stmt.order_by(table.c.updated_at.desc(), table.c.id.desc()).limit(limit)
    conn = await session.connection()
    return [_to_token(row._mapping) for row in (await conn.execute(stmt)).all()]


def is_stale(token: Token, max_age: timedelta, now: datetime | None = None) -> bool:
    if token.last_fetched_at is None:
        return True
    return (now or utcnow()) - as_utc(token.last_fetched_at) >= max_age


async def mark_seen(session: AsyncSession, client_id: str, token_ids: Iterable[str]) -> int:
    rows = [
        build_row(SeenToken, client_id=client_id, token_id=token_id)
        for token_id in dict.fromkeys(token_ids)
    ]
    inserted = await insert_ignore(session, SeenToken, rows, ("client_id", "token_id"))
    await session.commit()
    return inserted


__all__ = [
    "FeedCursor",
    "MARKET_FIELDS",
    "PROFILE_FIELDS",
    "get_tokens",
    "is_stale",
    "mark_seen",
    "rank_candidates",
    "upsert_snapshots",
    "upsert_stubs",
]
