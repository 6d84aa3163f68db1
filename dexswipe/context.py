"""Process-wide services for DexSwipe: plan, registry, provider clients, queues, workers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import AppSettings, get_settings
from dexswipe.models import MarketUpdateJob, QualityScanJob, SecurityScanJob
from dexswipe.repositories import CacheStore, WorkQueue, rugpull_cache, security_cache, url_cache
from .services.budget import BudgetGovernor, CostTable
from .services.chains import ChainRegistry
from .services.feed import FeedAggregator
from .services.pipeline.base import build_queue
from .services.pipeline.discovery import DiscoveryService
from .services.pipeline.market_worker import MarketWorker
from .services.pipeline.quality_worker import QualityWorker
from .services.pipeline.security_worker import SecurityWorker
from .services.plan import PlanConfig, load_plan_config
from .services.providers.dexscreener import DexScreenerClient
from .services.providers.goplus import GoPlusClient
from .services.providers.http_client import ProviderClient, RetryPolicy


@dataclass(slots=True)
class ServiceContext:
    settings: AppSettings
    session_maker: async_sessionmaker[AsyncSession]
    plan: PlanConfig
    registry: ChainRegistry
    governor: BudgetGovernor
    http: ProviderClient
    dexscreener: DexScreenerClient
    goplus: GoPlusClient
    market_queue: WorkQueue[MarketUpdateJob]
    security_queue: WorkQueue[SecurityScanJob]
    quality_queue: WorkQueue[QualityScanJob]
    security_cache: CacheStore
    rugpull_cache: CacheStore
    url_cache: CacheStore
    feed: FeedAggregator

    def discovery(self) -> DiscoveryService:
        return DiscoveryService(
            session_maker=self.session_maker,
            market_queue=self.market_queue,
            dexscreener=self.dexscreener,
            registry=self.registry,
            cfg=self.settings.discovery,
        )

    def market_worker(self) -> MarketWorker:
        return MarketWorker(
            session_maker=self.session_maker,
            queue=self.market_queue,
            security_queue=self.security_queue,
            quality_queue=self.quality_queue,
            dexscreener=self.dexscreener,
            registry=self.registry,
            plan=self.plan,
            stage=self.settings.queue.market,
        )

    def security_worker(self) -> SecurityWorker:
        return SecurityWorker(
            session_maker=self.session_maker,
            queue=self.security_queue,
            cache=self.security_cache,
            goplus=self.goplus,
            governor=self.governor,
            registry=self.registry,
            stage=self.settings.queue.security,
            budget_retry=timedelta(minutes=self.settings.queue.budget_retry_minutes),
        )

    def quality_worker(self) -> QualityWorker:
        return QualityWorker(
            session_maker=self.session_maker,
            queue=self.quality_queue,
            url_cache=self.url_cache,
            rugpull_cache=self.rugpull_cache,
            goplus=self.goplus,
            governor=self.governor,
            registry=self.registry,
            stage=self.settings.queue.quality,
            quality=self.settings.quality,
            budget_retry=timedelta(minutes=self.settings.queue.budget_retry_minutes),
        )


def build_context(
    settings: AppSettings,
    session_maker: async_sessionmaker[AsyncSession],
    *,
    http: ProviderClient | None = None,
) -> ServiceContext:
    plan = load_plan_config(settings.plan)
    registry = ChainRegistry(settings.chains)
    governor = BudgetGovernor(plan, CostTable(settings.plan.cu_costs))
    http = http or ProviderClient(
        user_agent=settings.dexscreener.user_agent,
        retry=RetryPolicy.from_settings(settings.dexscreener.retry),
    )
    dexscreener = DexScreenerClient(http, settings.dexscreener)
    goplus = GoPlusClient(http, settings.goplus)
    queue_cfg = settings.queue
    market_queue = build_queue(MarketUpdateJob, queue_cfg.market, queue_cfg)
    security_queue = build_queue(SecurityScanJob, queue_cfg.security, queue_cfg)
    quality_queue = build_queue(QualityScanJob, queue_cfg.quality, queue_cfg)
    sec_cache, rug_cache, link_cache = security_cache(), rugpull_cache(), url_cache()
    feed = FeedAggregator(
        dexscreener=dexscreener,
        goplus=goplus,
        registry=registry,
        governor=governor,
        security_cache=sec_cache,
        rugpull_cache=rug_cache,
        url_cache=link_cache,
        security_queue=security_queue,
        cfg=settings.feed,
    )
    return ServiceContext(
        settings=settings,
        session_maker=session_maker,
        plan=plan,
        registry=registry,
        governor=governor,
        http=http,
        dexscreener=dexscreener,
        goplus=goplus,
        market_queue=market_queue,
        security_queue=security_queue,
        quality_queue=quality_queue,
        security_cache=sec_cache,
        rugpull_cache=rug_cache,
        url_cache=link_cache,
        feed=feed,
    )


_context: ServiceContext | None = None


def get_context() -> ServiceContext:
    """Lazy process-wide context bound to the default engine."""

    global _context
    if _context is None:
        from .middlewares.db import get_session_maker

        _context = build_context(get_settings(), get_session_maker())
    return _context


__all__ = ["ServiceContext", "build_context", "get_context"]
