"""GoPlus quality worker: website phishing / dApp checks and EVM rug-pull detection."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import QualitySettings, StageQueueSettings
from dexswipe.models import QualityScanJob
from dexswipe.models.base import utcnow
from dexswipe.repositories import CacheStore, WorkQueue, get_tokens
from dexswipe.services.budget import CU_BUDGET_EXHAUSTED, BudgetGovernor, RunLedger
from dexswipe.services.chains import ChainMapping, ChainRegistry, token_id
from dexswipe.services.providers.errors import PermanentProviderError, ProviderError
from dexswipe.services.providers.goplus import GoPlusClient
from dexswipe.services.risk.signals import rugpull_cache_values, url_cache_values
from .base import Outcome, WorkerReport, group_by_chain

STAGE = "quality"


class _BudgetDeferred(Exception):
    """Internal signal: the ledger cannot pay for the next check."""


class QualityWorker:
    def __init__(
        self,
        *,
        session_maker: async_sessionmaker[AsyncSession],
        queue: WorkQueue[QualityScanJob],
        url_cache: CacheStore,
        rugpull_cache: CacheStore,
        goplus: GoPlusClient,
        governor: BudgetGovernor,
        registry: ChainRegistry,
        stage: StageQueueSettings,
        quality: QualitySettings,
        budget_retry: timedelta,
    ) -> None:
        self._session_maker = session_maker
        self._queue = queue
        self._url_cache = url_cache
        self._rugpull_cache = rugpull_cache
        self._goplus = goplus
        self._governor = governor
        self._registry = registry
        self._stage = stage
        self._link_ttl = timedelta(hours=quality.link_ttl_hours)
        self._rugpull_ttl = timedelta(hours=quality.rugpull_ttl_hours)
        self._rescan = timedelta(minutes=stage.success_rescan_minutes)
        self._budget_retry = budget_retry

    async def run(self) -> WorkerReport:
        report = WorkerReport(stage=STAGE)
        ledger = self._governor.start_run()
        claimed = 0
        while claimed < self._stage.max_jobs_per_run:
            batch_size = min(self._stage.batch_size, self._stage.max_jobs_per_run - claimed)
            async with self._session_maker() as session:
                jobs = await self._queue.dequeue(session, batch_size)
            if not jobs:
                break
            claimed += len(jobs)
            await self.process_batch(jobs, ledger, report)
            if ledger.exhausted:
                break
        report.cu_used = ledger.cu_used
        report.budget_exhausted = ledger.exhausted
        report.log_summary()
        return report

    async def process_batch(self, jobs: list[QualityScanJob], ledger: RunLedger, report: WorkerReport) -> None:
        async def run_chain(chain_jobs: list[QualityScanJob]) -> None:
            for job in chain_jobs:
                await self._process(job, ledger, report)

        await asyncio.gather(*(run_chain(chain_jobs) for chain_jobs in group_by_chain(jobs).values()))

    def _pay(self, ledger: RunLedger, cost: int) -> None:
        if not self._governor.can_afford(ledger, cost):
            self._governor.exhaust(ledger)
            raise _BudgetDeferred()
        self._governor.charge(ledger, cost)

    async def _process(self, job: QualityScanJob, ledger: RunLedger, report: WorkerReport) -> None:
        now = utcnow()
        mapping = self._registry.get(job.chain_id)
        async with self._session_maker() as session:
            tid = token_id(job.chain_id, job.token_address)
            token = (await get_tokens(session, [tid])).get(tid)
            website = token.website_url if token is not None else None
            try:
                if website:
                    await self._check_url(session, website, ledger)
                if mapping is not None and mapping.rugpull_supported:
                    await self._check_rugpull(session, mapping, job, ledger)
            except _BudgetDeferred:
                released = await self._queue.defer(
                    session, job, CU_BUDGET_EXHAUSTED, until=now + self._budget_retry, now=now
                )
                report.add(job, Outcome.DEFERRED if released else Outcome.LEASE_LOST, CU_BUDGET_EXHAUSTED)
                return
            except ProviderError as exc:
                logger.warning(
                    "GoPlus quality checks {chain}:{addr} failed: {error}",
                    chain=job.chain_id,
                    addr=job.token_address,
                    error=exc,
                )
                await self._queue.fail(session, job, str(exc), now=now)
                report.add(job, Outcome.FAILED, str(exc))
                return

            released = await self._queue.complete(session, job, next_run_at=now + self._rescan, now=now)
            report.add(job, Outcome.COMPLETED if released else Outcome.LEASE_LOST)

    async def _check_url(self, session: AsyncSession, url: str, ledger: RunLedger) -> None:
        entry = await self._url_cache.get(session, (url,))
        if entry is not None and (entry.always_deny or self._url_cache.is_fresh(entry, self._link_ttl)):
            return
        cost = self._governor.estimate_cost("phishing_site") + self._governor.estimate_cost("dapp_security")
        self._pay(ledger, cost)
        phishing, dapp = await asyncio.gather(
            self._goplus.phishing_site(url),
            self._goplus.dapp_security(url),
        )
        _, values = url_cache_values(phishing, dapp)
        outcome = await self._url_cache.put(session, (url,), values, scanned_at=utcnow())
        logger.debug(
            "URL check {url}: {outcome}, phishing={phishing}",
            url=url,
            outcome=outcome,
            phishing=values["is_phishing"],
        )

    async def _check_rugpull(
        self,
        session: AsyncSession,
        mapping: ChainMapping,
        job: QualityScanJob,
        ledger: RunLedger,
    ) -> None:
        entry = await self._rugpull_cache.get(session, job.key)
        if entry is not None and (entry.always_deny or self._rugpull_cache.is_fresh(entry, self._rugpull_ttl)):
            return
        self._pay(ledger, self._governor.estimate_cost("rugpull", mapping.family.name))
        try:
            payload = await self._goplus.rugpull(mapping, job.token_address)
        except PermanentProviderError as exc:
            logger.debug(
                "Rug-pull check skipped for {chain}:{addr}: {error}",
                chain=job.chain_id,
                addr=job.token_address,
                error=exc,
            )
            return
        _, values = rugpull_cache_values(payload)
        await self._rugpull_cache.put(session, job.key, values, scanned_at=utcnow())


__all__ = ["QualityWorker", "STAGE"]
