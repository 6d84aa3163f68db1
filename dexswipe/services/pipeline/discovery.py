"""Token discovery from DexScreener profiles, boosts and search."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import DiscoverySettings
from dexswipe.models import MarketUpdateJob
from dexswipe.repositories import WorkQueue, upsert_stubs
from dexswipe.services.chains import ChainRegistry
from dexswipe.services.providers.dexscreener import DexScreenerClient, DiscoveredToken
from dexswipe.services.providers.errors import ProviderError


@dataclass(slots=True)
class DiscoveryReport:
    found: int = 0
    unique: int = 0
    enqueued: int = 0
    failed_sources: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "found": self.found,
            "unique": self.unique,
            "enqueued": self.enqueued,
            "failed_sources": list(self.failed_sources),
        }


def merge_discoveries(
    tokens: list[DiscoveredToken],
    registry: ChainRegistry,
) -> dict[tuple[str, str], DiscoveredToken]:
    """Deduplicate by (chain, normalized address); first hit wins, the largest boost is kept."""

    merged: dict[tuple[str, str], DiscoveredToken] = {}
    for token in tokens:
        key = registry.token_key(token.chain_id, token.token_address)
        current = merged.get(key)
        if current is None:
            token.token_address = key[1]
            merged[key] = token
            continue
        current.logo_url = current.logo_url or token.logo_url
        current.website_url = current.website_url or token.website_url
        current.description = current.description or token.description
        if token.boost_amount is not None:
            current.boost_amount = max(current.boost_amount or 0.0, token.boost_amount)
    return merged


class DiscoveryService:
    def __init__(
        self,
        *,
        session_maker: async_sessionmaker[AsyncSession],
        market_queue: WorkQueue[MarketUpdateJob],
        dexscreener: DexScreenerClient,
        registry: ChainRegistry,
        cfg: DiscoverySettings,
    ) -> None:
        self._session_maker = session_maker
        self._market_queue = market_queue
        self._dexscreener = dexscreener
        self._registry = registry
        self._cfg = cfg

    async def run(self) -> DiscoveryReport:
        report = DiscoveryReport()
        sources = {
            "profiles": self._dexscreener.latest_profiles(),
            "boosts_latest": self._dexscreener.latest_boosts(),
            "boosts_top": self._dexscreener.top_boosts(),
        }
        for query in self._cfg.search_queries:
            sources[f"search:{query}"] = self._dexscreener.search(query)

        results = await asyncio.gather(*sources.values(), return_exceptions=True)
        tokens: list[DiscoveredToken] = []
        for name, result in zip(sources, results):
            if isinstance(result, ProviderError):
                logger.warning("Discovery source {name} failed: {error}", name=name, error=result)
                report.failed_sources.append(name)
                continue
            if isinstance(result, BaseException):
                raise result
            tokens.extend(result)
        report.found = len(tokens)

        merged = merge_discoveries(tokens, self._registry)
        report.unique = len(merged)
        selected = list(merged.items())[: self._cfg.max_enqueue_per_run]
        async with self._session_maker() as session:
            await upsert_stubs(session, [token.to_row() for _, token in selected])
            report.enqueued = await self._market_queue.enqueue_many(session, [key for key, _ in selected])
        logger.info(
            "Discovery: {found} hit(s), {unique} unique, {enqueued} newly queued",
            found=report.found,
            unique=report.unique,
            enqueued=report.enqueued,
        )
        return report


__all__ = ["DiscoveryReport", "DiscoveryService", "merge_discoveries"]
