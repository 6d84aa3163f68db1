"""Request-time feed and wishlist composition.

Candidates come from the ranking query, stale snapshots are refreshed live (one task
per chain, bounded by the latency budget), risk is re-derived from the caches and the
caller's filters are applied last. Both response shapes are rendered from the same
``FeedItem`` so scoring can never differ between them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Sequence

from loguru import logger
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import FeedSettings
from dexswipe.models import RugpullCache, SecurityScanJob, Token, TokenSecurityCache, UrlRiskCache
from dexswipe.models.base import utcnow
from dexswipe.repositories import (
    CacheStore,
    FeedCursor,
    WorkQueue,
    get_tokens,
    is_stale,
    list_wishlist,
    mark_seen,
    rank_candidates,
    upsert_snapshots,
)
from dexswipe.services.budget import BudgetGovernor
from dexswipe.services.chains import ChainRegistry, parse_token_id, token_id
from dexswipe.services.providers.dexscreener import DexScreenerClient, MarketSnapshot
from dexswipe.services.providers.errors import ProviderError
from dexswipe.services.providers.goplus import GoPlusClient
from dexswipe.services.risk.scoring import RiskInputs, ScoreResult, assess_risk
from dexswipe.services.risk.signals import (
    rugpull_from_cache,
    security_cache_values,
    security_from_cache,
    url_from_cache,
)

SECURITY_STAGE = "security"
SECURITY_OPERATION = "token_security"


def is_surging(p5: float | None, p15: float | None, p1h: float | None) -> bool:
    """Short-term move outpacing the longer windows; a missing 15m is estimated from 1h."""

    if p15 is None and p1h is not None:
        p15 = p1h / 4
    if p5 is None or p15 is None or p1h is None:
        return False
    return p5 >= 0.6 and p5 > p15 / 3 and p15 > p1h / 4


def roi_since_captured(current: float | None, captured: float | None) -> float | None:
    if current is None or captured is None or captured <= 0:
        return None
    return (current - captured) / captured * 100


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True, slots=True)
class FeedQuery:
    limit: int = 30
    cursor: str | None = None
    chains: tuple[str, ...] = ()
    min_liquidity_usd: float | None = None
    min_volume_24h: float | None = None
    min_fdv: float | None = None
    include_risky: bool = False

    def accepts(self, token: Token) -> bool:
        if self.chains and token.chain_id not in self.chains:
            return False
        for threshold, value in (
            (self.min_liquidity_usd, token.liquidity_usd),
            (self.min_volume_24h, token.volume_24h),
            (self.min_fdv, token.fdv),
        ):
            if threshold is not None and (value is None or value < threshold):
                return False
        return True


@dataclass(slots=True)
class FeedItem:
    token: Token
    score: ScoreResult
    security: TokenSecurityCache | None = None
    url_risk: UrlRiskCache | None = None
    rugpull: RugpullCache | None = None

    @property
    def surging(self) -> bool:
        t = self.token
        return is_surging(t.price_change_5m, t.price_change_15m, t.price_change_1h)

    def full(self) -> dict[str, Any]:
        t = self.token
        return {
            "token_id": t.token_id,
            "chain_id": t.chain_id,
            "token_address": t.token_address,
            "name": t.name,
            "symbol": t.symbol,
            "logo_url": t.logo_url,
            "website_url": t.website_url,
            "price_usd": t.price_usd,
            "liquidity_usd": t.liquidity_usd,
            "volume_24h": t.volume_24h,
            "fdv": t.fdv,
            "market_cap": t.market_cap,
            "price_change_5m": t.price_change_5m,
            "price_change_15m": t.price_change_15m,
            "price_change_1h": t.price_change_1h,
            "buys_24h": t.buys_24h,
            "sells_24h": t.sells_24h,
            "pair_created_at": _iso(t.pair_created_at),
            "updated_at": _iso(t.updated_at),
            "is_surging": self.surging,
            **self.score.as_dict(),
            "security": {
                "always_deny": self.security.always_deny if self.security else False,
                "deny_reasons": list(self.security.deny_reasons or []) if self.security else [],
                "scanned_at": _iso(self.security.scanned_at) if self.security else None,
            },
            "quality": {
                "url_risk": {
                    "is_phishing": self.url_risk.is_phishing if self.url_risk else None,
                    "dapp_risk_level": self.url_risk.dapp_risk_level if self.url_risk else None,
                    "scanned_at": _iso(self.url_risk.scanned_at) if self.url_risk else None,
                },
                "rugpull": {
                    "is_rugpull_risk": self.rugpull.is_rugpull_risk if self.rugpull else None,
                    "risk_level": self.rugpull.risk_level if self.rugpull else None,
                    "scanned_at": _iso(self.rugpull.scanned_at) if self.rugpull else None,
                },
            },
        }

    def minimal(self) -> dict[str, Any]:
        t = self.token
        return {
            "id": t.token_id,
            "chain_id": t.chain_id,
            "logo_url": t.logo_url,
            "symbol": t.symbol,
            "price_change_5m": t.price_change_5m,
            "price_change_15m": t.price_change_15m,
            "price_change_1h": t.price_change_1h,
            "is_security_risk": self.score.is_security_risk,
            "safety_score": self.score.safety_score,
            "checks_state": self.score.checks_state.value,
            "is_surging": self.surging,
        }


@dataclass(slots=True)
class FeedPage:
    items: list[FeedItem]
    limit: int
    cursor: str | None
    next_cursor: str | None

    def as_full(self) -> dict[str, Any]:
        return {
            "tokens": [item.full() for item in self.items],
            "limit": self.limit,
            "cursor": self.cursor,
            "next_cursor": self.next_cursor,
        }

    def as_min(self) -> list[dict[str, Any]]:
        return [item.minimal() for item in self.items]


@dataclass(slots=True)
class _Deadline:
    at: float

    @classmethod
    def after(cls, budget: timedelta) -> "_Deadline":
        return cls(asyncio.get_running_loop().time() + budget.total_seconds())

    def remaining(self) -> float:
        return max(self.at - asyncio.get_running_loop().time(), 0.0)


@dataclass(slots=True)
class _Refresh:
    requested: int = 0
    updated: int = 0
    timed_out: list[str] = field(default_factory=list)


class FeedAggregator:
    def __init__(
        self,
        *,
        dexscreener: DexScreenerClient,
        goplus: GoPlusClient,
        registry: ChainRegistry,
        governor: BudgetGovernor,
        security_cache: CacheStore[TokenSecurityCache],
        rugpull_cache: CacheStore[RugpullCache],
        url_cache: CacheStore[UrlRiskCache],
        security_queue: WorkQueue[SecurityScanJob],
        cfg: FeedSettings,
    ) -> None:
        self._dexscreener = dexscreener
        self._goplus = goplus
        self._registry = registry
        self._governor = governor
        self._security_cache = security_cache
        self._rugpull_cache = rugpull_cache
        self._url_cache = url_cache
        self._security_queue = security_queue
        self._cfg = cfg
        self._stale_after = timedelta(minutes=cfg.stale_after_minutes)
        self._latency_budget = timedelta(milliseconds=cfg.latency_budget_ms)

    async def get_feed(self, session: AsyncSession, client_id: str, query: FeedQuery) -> FeedPage:
        deadline = _Deadline.after(self._latency_budget)
        limit = max(1, min(query.limit, self._cfg.max_limit))
        fetch_limit = limit * self._cfg.overfetch_factor
        candidates = await rank_candidates(
            session,
            client_id,
            limit=fetch_limit,
            cursor=FeedCursor.decode(query.cursor),
            chains=query.chains or None,
            min_liquidity_usd=query.min_liquidity_usd,
            min_volume_24h=query.min_volume_24h,
            min_fdv=query.min_fdv,
        )

        tokens = {token.token_id: token for token in candidates}
        await self._refresh_stale(session, tokens, deadline)
        items = await self._score(session, list(tokens.values()), deadline)

        selected: list[FeedItem] = []
        last: Token | None = None
        for candidate in candidates:
            if len(selected) >= limit:
                break
            last = candidate
            item = items[candidate.token_id]
            if not query.accepts(item.token):
                continue
            if item.score.is_security_risk and not query.include_risky:
                continue
            selected.append(item)

        next_cursor = None
        more = len(candidates) == fetch_limit or (last is not None and last is not candidates[-1])
        if last is not None and more:
            next_cursor = FeedCursor(updated_at=last.updated_at, id=last.id).encode()

        if selected:
            await mark_seen(session, client_id, [item.token.token_id for item in selected])
        logger.debug(
            "Feed for {client}: {returned}/{candidates} candidate(s) returned",
            client=client_id,
            returned=len(selected),
            candidates=len(candidates),
        )
        return FeedPage(items=selected, limit=limit, cursor=query.cursor, next_cursor=next_cursor)

    async def get_wishlist(self, session: AsyncSession, client_id: str, limit: int) -> dict[str, Any]:
        deadline = _Deadline.after(self._latency_budget)
        limit = max(1, min(limit, self._cfg.wishlist_max_limit))
        entries = await list_wishlist(session, client_id, limit)
        if not entries:
            return {"items": [], "limit": limit, "refreshed": {"requested": 0, "updated": 0}}

        ids = {entry.token_id: self._normalize_token_id(entry.token_id) for entry in entries}
        tokens = await get_tokens(session, ids.values())
        for tid in dict.fromkeys(ids.values()):
            if tid not in tokens:
                parsed = parse_token_id(tid)
                if parsed is not None:
                    tokens[tid] = Token(token_id=tid, chain_id=parsed[0], token_address=parsed[1])
        refresh = await self._refresh_stale(session, tokens, deadline)
        items = await self._score(session, list(tokens.values()), deadline)

        out = []
        for entry in entries:
            item = items.get(ids[entry.token_id])
            if item is None:
                continue
            out.append(
                {
                    **item.full(),
                    "captured_price": entry.captured_price,
                    "captured_at": _iso(entry.captured_at),
                    "added_at": _iso(entry.created_at),
                    "roi_since_captured": roi_since_captured(item.token.price_usd, entry.captured_price),
                }
            )
        return {
            "items": out,
            "limit": limit,
            "refreshed": {"requested": refresh.requested, "updated": refresh.updated},
        }

    def _normalize_token_id(self, value: str) -> str:
        parsed = parse_token_id(value)
        if parsed is None:
            return value
        return token_id(*self._registry.token_key(*parsed))

    async def _gather_until(
        self,
        jobs: dict[str, Awaitable[Any]],
        deadline: _Deadline,
        what: str,
    ) -> tuple[dict[str, Any], list[str]]:
        """Run one task per key; whatever misses the deadline is cancelled."""

        if not jobs:
            return {}, []
        tasks = {asyncio.ensure_future(awaitable): key for key, awaitable in jobs.items()}
        done, pending = await asyncio.wait(tasks, timeout=deadline.remaining())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results: dict[str, Any] = {}
        for task in done:
            key = tasks[task]
            error = task.exception()
            if isinstance(error, ProviderError):
                logger.warning("Live {what} for {key} failed: {error}", what=what, key=key, error=error)
                continue
            if error is not None:
                raise error
            results[key] = task.result()
        timed_out = sorted(tasks[task] for task in pending)
        if timed_out:
            logger.info("Live {what} missed the latency budget for {keys}", what=what, keys=timed_out)
        return results, timed_out

    async def _refresh_stale(
        self,
        session: AsyncSession,
        tokens: dict[str, Token],
        deadline: _Deadline,
    ) -> _Refresh:
        now = utcnow()
        by_chain: dict[str, list[str]] = {}
        for token in tokens.values():
            if is_stale(token, self._stale_after, now):
                by_chain.setdefault(token.chain_id, []).append(token.token_address)
        refresh = _Refresh(requested=sum(len(addresses) for addresses in by_chain.values()))
        if not by_chain:
            return refresh

        jobs = {
            chain_id: self._dexscreener.tokens(chain_id, addresses, self._registry.casing(chain_id))
            for chain_id, addresses in by_chain.items()
        }
        results, refresh.timed_out = await self._gather_until(jobs, deadline, "market refresh")
        snapshots: list[MarketSnapshot] = [
            snapshot
            for chain_snapshots in results.values()
            for snapshot in chain_snapshots.values()
            if snapshot is not None
        ]
        if not snapshots:
            return refresh

        await upsert_snapshots(session, [snapshot.to_row(utcnow()) for snapshot in snapshots], touch=False)
        fresh = await get_tokens(session, [snapshot.token_id for snapshot in snapshots])
        tokens.update({tid: token for tid, token in fresh.items() if tid in tokens})
        refresh.updated = len(fresh)
        return refresh

    async def _live_security(
        self,
        session: AsyncSession,
        tokens: Sequence[Token],
        security: dict[tuple, TokenSecurityCache],
        deadline: _Deadline,
    ) -> None:
        """Scan uncached tokens inside the request, within a small per-request ledger."""

        if not self._governor.plan.allow_live_fetch_in_request_path:
            return
        ledger = self._governor.start_run(budget=self._cfg.live_security_cu_budget)
        daily = await self._governor.open_daily_ledger(session, SECURITY_STAGE)

        by_chain: dict[str, list[str]] = {}
        for token in tokens:
            mapping = self._registry.get(token.chain_id)
            if mapping is None or not mapping.security_supported:
                continue
            if (token.chain_id, token.token_address) in security:
                continue
            cost = self._governor.estimate_cost(SECURITY_OPERATION, mapping.family.name)
            if not self._governor.can_afford(ledger, cost) or not daily.reserve():
                break
            self._governor.charge(ledger, cost)
            by_chain.setdefault(token.chain_id, []).append(token.token_address)
        if not by_chain:
            return
        await self._governor.record_scan(
            session, daily, count=sum(len(addresses) for addresses in by_chain.values())
        )

        jobs = {
            chain_id: self._goplus.token_security(self._registry.get(chain_id), addresses)
            for chain_id, addresses in by_chain.items()
        }
        results, _ = await self._gather_until(jobs, deadline, "security scan")
        now = utcnow()
        for chain_id, payloads in results.items():
            family = self._registry.get(chain_id).family
            for address in by_chain[chain_id]:
                _, values = security_cache_values(family, payloads.get(address))
                await self._security_cache.put(session, (chain_id, address), values, scanned_at=now)
        fresh = await self._security_cache.get_many(
            session, [(chain_id, address) for chain_id in results for address in by_chain[chain_id]]
        )
        security.update(fresh)
        logger.debug("Live security scans: {used} CU spent", used=ledger.cu_used)

    async def _score(
        self,
        session: AsyncSession,
        tokens: Sequence[Token],
        deadline: _Deadline,
    ) -> dict[str, FeedItem]:
        keys = [(token.chain_id, token.token_address) for token in tokens]
        security = await self._security_cache.get_many(session, keys)
        await self._live_security(session, tokens, security, deadline)
        rugpull = await self._rugpull_cache.get_many(session, keys)
        urls = await self._url_cache.get_many(
            session, [(token.website_url,) for token in tokens if token.website_url]
        )
        jobs = await self._security_queue.get_many(session, keys)

        items: dict[str, FeedItem] = {}
        for token in tokens:
            key = (token.chain_id, token.token_address)
            sec_entry = security.get(key)
            rug_entry = rugpull.get(key)
            url_entry = urls.get((token.website_url,)) if token.website_url else None
            job = jobs.get(key)
            score = assess_risk(
                RiskInputs(
                    chain_supported=self._registry.is_security_supported(token.chain_id),
                    security=security_from_cache(sec_entry),
                    security_error=job.last_error if job is not None else None,
                    rugpull=rugpull_from_cache(rug_entry),
                    url_risk=url_from_cache(url_entry),
                )
            )
            items[token.token_id] = FeedItem(
                token=token, score=score, security=sec_entry, url_risk=url_entry, rugpull=rug_entry
            )
        return items


__all__ = [
    "FeedAggregator",
    "FeedItem",
    "FeedPage",
    "FeedQuery",
    "is_surging",
    "roi_since_captured",
]
