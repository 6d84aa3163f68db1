"""Provider result caches with freshness checks and scam permanence."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Generic, Sequence, TypeVar

from loguru import logger
from sqlalchemy import and_, select, update
from sqlmodel.ext.asyncio.session import AsyncSession

from dexswipe.models import RugpullCache, TokenSecurityCache, UrlRiskCache
from dexswipe.models.base import as_utc, utcnow
from dexswipe.models.cache import CacheEntryBase
from .base import build_row, insert_ignore

EntryT = TypeVar("EntryT", bound=CacheEntryBase)


class PutOutcome(str):
    INSERTED = "inserted"
    UPDATED = "updated"
    DENY_KEPT = "deny_kept"
    STALE = "stale"


class CacheStore(Generic[EntryT]):
    """Keyed access to one cache table.

    ``put`` is a conditional write rather than a lock: a row with ``always_deny`` set
    only accepts another denying verdict; anything weaker can at most move its
    ``scanned_at`` forward so the token is not re-scanned.
    """

    def __init__(self, model: type[EntryT], key_columns: Sequence[str]) -> None:
        self.model = model
        self.key_columns = tuple(key_columns)
        self._table = model.__table__

    def _key_filter(self, key: tuple):
        if len(key) != len(self.key_columns):
            raise ValueError(f"{self._table.name} key must have {len(self.key_columns)} part(s)")
        return and_(*(self._table.c[name] == value for name, value in zip(self.key_columns, key)))

    def key_of(self, entry: EntryT) -> tuple:
        return tuple(getattr(entry, name) for name in self.key_columns)

    async def get(self, session: AsyncSession, key: tuple) -> EntryT | None:
        conn = await session.connection()
        row = (await conn.execute(select(self._table).where(self._key_filter(key)))).first()
        return self._to_model(row._mapping) if row else None

    async def get_many(self, session: AsyncSession, keys: Sequence[tuple]) -> dict[tuple, EntryT]:
        unique = list(dict.fromkeys(keys))
        if not unique:
            return {}
        table = self._table
        conn = await session.connection()
        found: dict[tuple, EntryT] = {}
        if len(self.key_columns) == 1:
            column = table.c[self.key_columns[0]]
            stmt = select(table).where(column.in_([key[0] for key in unique]))
            for row in (await conn.execute(stmt)).all():
                entry = self._to_model(row._mapping)
                found[self.key_of(entry)] = entry
            return found
        # (chain_id, address) keys: one IN query per leading component.
        grouped: dict[Any, list[Any]] = {}
        for head, tail in unique:
            grouped.setdefault(head, []).append(tail)
        head_col, tail_col = (table.c[name] for name in self.key_columns)
        for head, tails in grouped.items():
            stmt = select(table).where(head_col == head, tail_col.in_(tails))
            for row in (await conn.execute(stmt)).all():
                entry = self._to_model(row._mapping)
                found[self.key_of(entry)] = entry
        return found

    async def put(
        self,
        session: AsyncSession,
        key: tuple,
        values: dict[str, Any],
        *,
        scanned_at: datetime | None = None,
    ) -> str:
        scanned_at = as_utc(scanned_at) or utcnow()
        table = self._table
        new_denies = bool(values.get("always_deny"))
        payload = {**values, "always_deny": new_denies, "scanned_at": scanned_at, "updated_at": utcnow()}
        conn = await session.connection()

        guard = [self._key_filter(key), table.c.scanned_at <= scanned_at]
        if not new_denies:
            guard.append(table.c.always_deny.is_(False))
        result = await conn.execute(update(table).where(*guard).values(**payload))
        if result.rowcount:
            await session.commit()
            return PutOutcome.UPDATED

        row = build_row(
            self.model,
            **dict(zip(self.key_columns, key)),
            **{k: v for k, v in payload.items() if k != "updated_at"},
        )
        if await insert_ignore(session, self.model, [row], self.key_columns):
            await session.commit()
            return PutOutcome.INSERTED

        if not new_denies:
            result = await conn.execute(
                update(table)
                .where(
                    self._key_filter(key),
                    table.c.always_deny.is_(True),
                    table.c.scanned_at < scanned_at,
                )
                .values(scanned_at=scanned_at, updated_at=utcnow())
            )
            if result.rowcount:
                await session.commit()
                logger.debug("{table}: kept deny verdict for {key}", table=table.name, key=key)
                return PutOutcome.DENY_KEPT
        await session.commit()
        logger.debug("{table}: ignored out-of-order write for {key}", table=table.name, key=key)
        return PutOutcome.STALE

    @staticmethod
    def is_fresh(entry: CacheEntryBase | None, ttl: timedelta, now: datetime | None = None) -> bool:
        if entry is None:
            return False
        now = now or utcnow()
        return now - as_utc(entry.scanned_at) < ttl

    def _to_model(self, mapping) -> EntryT:
        entry = self.model(**dict(mapping))
        entry.scanned_at = as_utc(entry.scanned_at)
        entry.created_at = as_utc(entry.created_at)
        entry.updated_at = as_utc(entry.updated_at)
        return entry


def security_cache() -> CacheStore[TokenSecurityCache]:
    return CacheStore(TokenSecurityCache, ("chain_id", "token_address"))


def rugpull_cache() -> CacheStore[RugpullCache]:
    return CacheStore(RugpullCache, ("chain_id", "token_address"))


def url_cache() -> CacheStore[UrlRiskCache]:
    return CacheStore(UrlRiskCache, ("url",))


__all__ = ["CacheStore", "PutOutcome", "rugpull_cache", "security_cache", "url_cache"]
