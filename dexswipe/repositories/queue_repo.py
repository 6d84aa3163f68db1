"""Lease-based work queue over the per-stage job tables.

Claims are a single conditional UPDATE ... RETURNING, so two concurrent workers can
never receive the same row. Every later mutation is guarded by the lease timestamp the
claim returned: a worker whose lease was reclaimed cannot overwrite the new owner.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, Iterable, Sequence, TypeVar

from loguru import logger
from sqlalchemy import and_, or_, select, update
from sqlmodel.ext.asyncio.session import AsyncSession

from dexswipe.models import JobStatus, QueueJobBase
from dexswipe.models.base import as_utc, utcnow
from .base import build_row, insert_ignore

JobT = TypeVar("JobT", bound=QueueJobBase)

_DATETIME_FIELDS = ("locked_at", "next_run_at", "last_run_at", "created_at", "updated_at")


class EnqueueResult(str):
    INSERTED = "inserted"
    ALREADY_PENDING = "already_pending"


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Exponential retry delay: min(base * 2**min(attempts, 6), cap)."""

    base: timedelta
    cap: timedelta
    max_exponent: int = 6

    def delay(self, attempts: int) -> timedelta:
        return min(self.base * (2 ** min(max(attempts, 0), self.max_exponent)), self.cap)


class WorkQueue(Generic[JobT]):
    """Queue operations for one stage table."""

    def __init__(
        self,
        model: type[JobT],
        *,
        backoff: BackoffPolicy,
        lease_timeout: timedelta,
        terminal_suppress: timedelta,
    ) -> None:
        self.model = model
        self.backoff = backoff
        self.lease_timeout = lease_timeout
        self.terminal_suppress = terminal_suppress
        self._table = model.__table__

    @property
    def stage(self) -> str:
        return self._table.name

    async def enqueue(
        self,
        session: AsyncSession,
        key: tuple[str, str],
        *,
        run_at: datetime | None = None,
    ) -> str:
        """Idempotent insert; an existing row is left untouched."""

        inserted = await self.enqueue_many(session, [key], run_at=run_at)
        return EnqueueResult.INSERTED if inserted else EnqueueResult.ALREADY_PENDING

    async def enqueue_many(
        self,
        session: AsyncSession,
        keys: Iterable[tuple[str, str]],
        *,
        run_at: datetime | None = None,
    ) -> int:
        unique = list(dict.fromkeys(keys))
        if not unique:
            return 0
        run_at = run_at or utcnow()
        rows = [
            build_row(self.model, chain_id=chain_id, token_address=address, next_run_at=run_at)
            for chain_id, address in unique
        ]
        inserted = await insert_ignore(session, self.model, rows, ("chain_id", "token_address"))
        await session.commit()
        if inserted:
            logger.debug("{stage}: enqueued {count} new job(s)", stage=self.stage, count=inserted)
        return inserted

    def _eligible(self, now: datetime):
        table = self._table
        return or_(
            and_(
                table.c.status.in_([JobStatus.PENDING, JobStatus.FAILED, JobStatus.COMPLETED]),
                table.c.next_run_at <= now,
            ),
            and_(
                table.c.status == JobStatus.PROCESSING,
                or_(table.c.locked_at.is_(None), table.c.locked_at <= now - self.lease_timeout),
            ),
        )

    async def dequeue(
        self,
        session: AsyncSession,
        batch_size: int,
        *,
        now: datetime | None = None,
    ) -> list[JobT]:
        """Atomically claim up to batch_size due jobs, oldest next_run_at first."""

        if batch_size <= 0:
            return []
        now = now or utcnow()
        table = self._table
        eligible = self._eligible(now)
        candidates = (
            select(table.c.id)
            .where(eligible)
            .order_by(table.c.next_run_at.asc(), table.c.id.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(table)
            .where(table.c.id.in_(candidates))
            .where(eligible)
            .values(status=JobStatus.PROCESSING, locked_at=now, updated_at=now)
            .returning(*table.c)
        )
        conn = await session.connection()
        result = await conn.execute(stmt)
        jobs = [self._to_model(row._mapping) for row in result.all()]
        await session.commit()
        jobs.sort(key=lambda job: (job.next_run_at, job.id or 0))
        if jobs:
            logger.debug("{stage}: claimed {count} job(s)", stage=self.stage, count=len(jobs))
        return jobs

    async def complete(
        self,
        session: AsyncSession,
        job: JobT,
        *,
        next_run_at: datetime,
        error: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        now = now or utcnow()
        return await self._release(
            session,
            job,
            now=now,
            status=JobStatus.COMPLETED,
            attempts=job.attempts,
            next_run_at=next_run_at,
            last_error=error,
        )

    async def fail(
        self,
        session: AsyncSession,
        job: JobT,
        error: str,
        *,
        now: datetime | None = None,
    ) -> datetime:
        """Record a failure and push next_run_at out by the backoff delay."""

        now = now or utcnow()
        attempts = job.attempts + 1
        next_run_at = now + self.backoff.delay(attempts)
        await self._release(
            session,
            job,
            now=now,
            status=JobStatus.FAILED,
            attempts=attempts,
            next_run_at=next_run_at,
            last_error=error[:2000],
        )
        logger.debug(
            "{stage}: {chain}:{addr} failed (attempt {attempts}), retry at {at}: {error}",
            stage=self.stage,
            chain=job.chain_id,
            addr=job.token_address,
            attempts=attempts,
            at=next_run_at.isoformat(),
            error=error,
        )
        return next_run_at

    async def suppress(
        self,
        session: AsyncSession,
        job: JobT,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Terminal completion: the token is not looked at again for years."""

        now = now or utcnow()
        logger.debug(
            "{stage}: {chain}:{addr} suppressed: {reason}",
            stage=self.stage,
            chain=job.chain_id,
            addr=job.token_address,
            reason=reason,
        )
        return await self.complete(
            session, job, next_run_at=now + self.terminal_suppress, error=reason, now=now
        )

    async def defer(
        self,
        session: AsyncSession,
        job: JobT,
        reason: str,
        *,
        until: datetime,
        now: datetime | None = None,
    ) -> bool:
        """Expected postponement (budget, daily cap); attempts are not touched."""

        return await self.complete(session, job, next_run_at=until, error=reason, now=now)

    async def get(self, session: AsyncSession, key: tuple[str, str]) -> JobT | None:
        found = await self.get_many(session, [key])
        return found.get(key)

    async def get_many(
        self,
        session: AsyncSession,
        keys: Sequence[tuple[str, str]],
    ) -> dict[tuple[str, str], JobT]:
        """Detached snapshots of the rows; never tracked by the session."""

        table = self._table
        found: dict[tuple[str, str], JobT] = {}
        by_chain: dict[str, set[str]] = {}
        for chain_id, address in keys:
            by_chain.setdefault(chain_id, set()).add(address)
        conn = await session.connection()
        for chain_id, addresses in by_chain.items():
            stmt = select(table).where(
                table.c.chain_id == chain_id,
                table.c.token_address.in_(sorted(addresses)),
            )
            for row in (await conn.execute(stmt)).all():
                job = self._to_model(row._mapping)
                found[job.key] = job
        return found

    async def _release(
        self,
        session: AsyncSession,
        job: JobT,
        *,
        now: datetime,
        status: str,
        attempts: int,
        next_run_at: datetime,
        last_error: str | None,
    ) -> bool:
        table = self._table
        stmt = (
            update(table)
            .where(table.c.id == job.id)
            .where(table.c.status == JobStatus.PROCESSING)
            .where(table.c.locked_at == job.locked_at)
            .values(
                status=status,
                attempts=attempts,
                locked_at=None,
                last_error=last_error,
                next_run_at=next_run_at,
                last_run_at=now,
                updated_at=now,
            )
        )
        conn = await session.connection()
        result = await conn.execute(stmt)
        await session.commit()
        if not result.rowcount:
            logger.warning(
                "{stage}: lease on {chain}:{addr} was lost before release",
                stage=self.stage,
                chain=job.chain_id,
                addr=job.token_address,
            )
            return False
        job.status = status
        job.attempts = attempts
        job.locked_at = None
        job.last_error = last_error
        job.next_run_at = next_run_at
        job.last_run_at = now
        return True

    def _to_model(self, mapping) -> JobT:
        return self._normalize(self.model(**dict(mapping)))

    @staticmethod
    def _normalize(job: JobT) -> JobT:
        for field in _DATETIME_FIELDS:
            setattr(job, field, as_utc(getattr(job, field)))
        return job


__all__ = ["BackoffPolicy", "EnqueueResult", "WorkQueue"]
