"""DexScreener market refresh worker.

Claims market jobs, refreshes them per chain in chunks of at most 30 addresses,
upserts the best-pair snapshot and feeds tokens that pass the plan's liquidity and
volume gate into the security and quality queues.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import StageQueueSettings
from dexswipe.models import MarketUpdateJob, QualityScanJob, SecurityScanJob
from dexswipe.models.base import as_utc, utcnow
from dexswipe.repositories import WorkQueue, upsert_snapshots
from dexswipe.services.chains import ChainRegistry
from dexswipe.services.plan import PlanConfig
from dexswipe.services.providers.dexscreener import MAX_ADDRESSES_PER_CALL, DexScreenerClient, MarketSnapshot
from dexswipe.services.providers.errors import ProviderError
from .base import Outcome, WorkerReport, group_by_chain

STAGE = "market"
NO_PAIR_FOUND = "no_pair_found"
NO_MARKET_ACTIVITY = "no_market_activity"
NO_PAIR_RETRY = timedelta(hours=6)
INACTIVITY_WINDOW = timedelta(hours=24)


def is_inactive(snapshot: MarketSnapshot, now: datetime) -> bool:
    """No volume and no trades in 24h on a pair that is itself older than 24h."""

    if snapshot.pair_created_at is None:
        return False
    if now - as_utc(snapshot.pair_created_at) < INACTIVITY_WINDOW:
        return False
    return (snapshot.volume_24h or 0) == 0 and (snapshot.txns_24h or 0) == 0


def passes_quality_gate(snapshot: MarketSnapshot, plan: PlanConfig) -> bool:
    return (snapshot.liquidity_usd or 0) >= plan.min_liquidity_usd and (
        snapshot.volume_24h or 0
    ) >= plan.min_volume_24h_usd


class MarketWorker:
    def __init__(
        self,
        *,
        session_maker: async_sessionmaker[AsyncSession],
        queue: WorkQueue[MarketUpdateJob],
        security_queue: WorkQueue[SecurityScanJob],
        quality_queue: WorkQueue[QualityScanJob],
        dexscreener: DexScreenerClient,
        registry: ChainRegistry,
        plan: PlanConfig,
        stage: StageQueueSettings,
    ) -> None:
        self._session_maker = session_maker
        self._queue = queue
        self._security_queue = security_queue
        self._quality_queue = quality_queue
        self._dexscreener = dexscreener
        self._registry = registry
        self._plan = plan
        self._stage = stage
        self._rescan = timedelta(minutes=stage.success_rescan_minutes)

    async def run(self) -> WorkerReport:
        report = WorkerReport(stage=STAGE)
        claimed = 0
        while claimed < self._stage.max_jobs_per_run:
            batch_size = min(self._stage.batch_size, self._stage.max_jobs_per_run - claimed)
            async with self._session_maker() as session:
                jobs = await self._queue.dequeue(session, batch_size)
            if not jobs:
                break
            claimed += len(jobs)
            await self.process_batch(jobs, report)
        report.log_summary()
        return report

    async def process_batch(self, jobs: list[MarketUpdateJob], report: WorkerReport) -> None:
        async def run_chain(chain_id: str, chain_jobs: list[MarketUpdateJob]) -> None:
            for start in range(0, len(chain_jobs), MAX_ADDRESSES_PER_CALL):
                await self._process_chunk(chain_id, chain_jobs[start : start + MAX_ADDRESSES_PER_CALL], report)

        await asyncio.gather(
            *(run_chain(chain_id, chain_jobs) for chain_id, chain_jobs in group_by_chain(jobs).items())
        )

    async def _process_chunk(self, chain_id: str, chunk: list[MarketUpdateJob], report: WorkerReport) -> None:
        casing = self._registry.casing(chain_id)
        try:
            snapshots = await self._dexscreener.tokens(chain_id, [job.token_address for job in chunk], casing)
        except ProviderError as exc:
            logger.warning(
                "DexScreener refresh of {count} {chain} token(s) failed: {error}",
                count=len(chunk),
                chain=chain_id,
                error=exc,
            )
            now = utcnow()
            async with self._session_maker() as session:
                for job in chunk:
                    await self._queue.fail(session, job, str(exc), now=now)
                    report.add(job, Outcome.FAILED, str(exc))
            return

        now = utcnow()
        found = [snapshot for snapshot in snapshots.values() if snapshot is not None]
        async with self._session_maker() as session:
            await upsert_snapshots(session, [snapshot.to_row(now) for snapshot in found])

            gated: list[tuple[str, str]] = []
            for job in chunk:
                snapshot = snapshots.get(job.token_address)
                if snapshot is None:
                    released = await self._queue.complete(
                        session, job, next_run_at=now + NO_PAIR_RETRY, error=NO_PAIR_FOUND, now=now
                    )
                    report.add(job, Outcome.COMPLETED if released else Outcome.LEASE_LOST, NO_PAIR_FOUND)
                    continue
                if is_inactive(snapshot, now):
                    released = await self._queue.suppress(session, job, NO_MARKET_ACTIVITY, now=now)
                    report.add(job, Outcome.SUPPRESSED if released else Outcome.LEASE_LOST, NO_MARKET_ACTIVITY)
                    continue
                released = await self._queue.complete(session, job, next_run_at=now + self._rescan, now=now)
                report.add(job, Outcome.COMPLETED if released else Outcome.LEASE_LOST)
                if passes_quality_gate(snapshot, self._plan):
                    gated.append(job.key)

            if gated:
                secured = [key for key in gated if self._registry.is_security_supported(key[0])]
                await self._security_queue.enqueue_many(session, secured)
                await self._quality_queue.enqueue_many(session, gated)
                logger.debug(
                    "{chain}: {count} token(s) passed the quality gate", chain=chain_id, count=len(gated)
                )


__all__ = ["MarketWorker", "NO_MARKET_ACTIVITY", "NO_PAIR_FOUND", "STAGE", "is_inactive", "passes_quality_gate"]
