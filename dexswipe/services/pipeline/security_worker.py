"""GoPlus token security worker.

Per job, in order: unsupported chain and cached deny verdicts are suppressed, fresh
cache entries complete without spending, then the daily cap and the CU ledger decide
whether a paid scan happens. Jobs run concurrently per chain and sequentially within
a chain.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import StageQueueSettings
from dexswipe.models import SecurityScanJob
from dexswipe.models.base import utcnow
from dexswipe.repositories import CacheStore, WorkQueue
from dexswipe.services.budget import (
    CU_BUDGET_EXHAUSTED,
    DAILY_SCAN_CAP_REACHED,
    BudgetGovernor,
    DailyLedger,
    RunLedger,
    next_utc_midnight,
)
from dexswipe.services.chains import ChainRegistry
from dexswipe.services.providers.errors import PermanentProviderError, ProviderError
from dexswipe.services.providers.goplus import GoPlusClient
from dexswipe.services.risk.signals import security_cache_values
from .base import Outcome, WorkerReport, group_by_chain

STAGE = "security"
SECURITY_OPERATION = "token_security"


class SecurityWorker:
    def __init__(
        self,
        *,
        session_maker: async_sessionmaker[AsyncSession],
        queue: WorkQueue[SecurityScanJob],
        cache: CacheStore,
        goplus: GoPlusClient,
        governor: BudgetGovernor,
        registry: ChainRegistry,
        stage: StageQueueSettings,
        budget_retry: timedelta,
    ) -> None:
        self._session_maker = session_maker
        self._queue = queue
        self._cache = cache
        self._goplus = goplus
        self._governor = governor
        self._registry = registry
        self._stage = stage
        self._budget_retry = budget_retry
        self._ttl = timedelta(hours=governor.plan.cache_ttl_hours)

    async def run(self) -> WorkerReport:
        report = WorkerReport(stage=STAGE)
        ledger = self._governor.start_run()
        async with self._session_maker() as session:
            daily = await self._governor.open_daily_ledger(session, STAGE)

        claimed = 0
        while claimed < self._stage.max_jobs_per_run:
            batch_size = min(self._stage.batch_size, self._stage.max_jobs_per_run - claimed)
            async with self._session_maker() as session:
                jobs = await self._queue.dequeue(session, batch_size)
            if not jobs:
                break
            claimed += len(jobs)
            await self.process_batch(jobs, ledger, daily, report)
            if ledger.exhausted or report.daily_cap_reached:
                break

        report.cu_used = ledger.cu_used
        report.budget_exhausted = ledger.exhausted
        report.log_summary()
        return report

    async def process_batch(
        self,
        jobs: list[SecurityScanJob],
        ledger: RunLedger,
        daily: DailyLedger,
        report: WorkerReport,
    ) -> None:
        """One task per chain; jobs of a chain go one after another."""

        async def run_chain(chain_jobs: list[SecurityScanJob]) -> None:
            for job in chain_jobs:
                await self._process(job, ledger, daily, report)

        await asyncio.gather(*(run_chain(chain_jobs) for chain_jobs in group_by_chain(jobs).values()))

    async def _process(
        self,
        job: SecurityScanJob,
        ledger: RunLedger,
        daily: DailyLedger,
        report: WorkerReport,
    ) -> None:
        now = utcnow()
        async with self._session_maker() as session:
            mapping = self._registry.get(job.chain_id)
            if mapping is None or not mapping.security_supported:
                await self._suppress(session, job, "unsupported_chain", report, now)
                return

            key = job.key
            entry = await self._cache.get(session, key)
            if entry is not None and entry.always_deny:
                reason = "always_deny:" + ",".join(entry.deny_reasons or [])
                await self._suppress(session, job, reason, report, now)
                return
            if self._cache.is_fresh(entry, self._ttl, now):
                await self._complete(session, job, entry.scanned_at + self._ttl, report, Outcome.CACHED, now)
                return

            if not daily.can_scan_today():
                report.daily_cap_reached = True
                await self._defer(session, job, DAILY_SCAN_CAP_REACHED, next_utc_midnight(now), report, now)
                return
            cost = self._governor.estimate_cost(SECURITY_OPERATION, mapping.family.name)
            if not self._governor.can_afford(ledger, cost):
                self._governor.exhaust(ledger)
                await self._defer(session, job, CU_BUDGET_EXHAUSTED, now + self._budget_retry, report, now)
                return
            # No await between the checks above and these reservations.
            self._governor.charge(ledger, cost)
            daily.reserve()
            await self._governor.record_scan(session, daily)

            try:
                payloads = await self._goplus.token_security(mapping, [job.token_address])
            except PermanentProviderError as exc:
                await self._suppress(session, job, str(exc), report, now)
                return
            except ProviderError as exc:
                logger.warning(
                    "GoPlus scan {chain}:{addr} failed: {error}",
                    chain=job.chain_id,
                    addr=job.token_address,
                    error=exc,
                )
                await self._queue.fail(session, job, str(exc), now=now)
                report.add(job, Outcome.FAILED, str(exc))
                return

            _, values = security_cache_values(mapping.family, payloads.get(job.token_address))
            outcome = await self._cache.put(session, key, values, scanned_at=now)
            logger.debug(
                "GoPlus scan {chain}:{addr}: cache {outcome}, deny={deny}",
                chain=job.chain_id,
                addr=job.token_address,
                outcome=outcome,
                deny=values["always_deny"],
            )
            if values["always_deny"]:
                await self._suppress(session, job, "always_deny:" + ",".join(values["deny_reasons"]), report, now)
                return
            await self._complete(session, job, now + self._ttl, report, Outcome.COMPLETED, now)

    async def _complete(self, session, job, next_run_at: datetime, report, outcome: str, now) -> None:
        released = await self._queue.complete(session, job, next_run_at=next_run_at, now=now)
        report.add(job, outcome if released else Outcome.LEASE_LOST)

    async def _suppress(self, session, job, reason: str, report, now) -> None:
        released = await self._queue.suppress(session, job, reason, now=now)
        report.add(job, Outcome.SUPPRESSED if released else Outcome.LEASE_LOST, reason)

    async def _defer(self, session, job, reason: str, until: datetime, report, now) -> None:
        released = await self._queue.defer(session, job, reason, until=until, now=now)
        report.add(job, Outcome.DEFERRED if released else Outcome.LEASE_LOST, reason)


__all__ = ["SECURITY_OPERATION", "STAGE", "SecurityWorker"]
