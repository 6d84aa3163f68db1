"""DexScreener market data: token pairs, profiles, boosts and search."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence
from urllib.parse import quote

from loguru import logger

from config.settings import DexScreenerSettings
from dexswipe.services.chains import AddressCasing, token_id
from dexswipe.utils.cache import cache_key, cached_call
from dexswipe.utils.parsing import first, integer, num, text
from .errors import ProviderError
from .http_client import ProviderClient, RetryPolicy

MAX_ADDRESSES_PER_CALL = 30


@dataclass(slots=True)
class MarketSnapshot:
    """Market view of one token taken from its best pair."""

    chain_id: str
    token_address: str
    pair_address: str | None = None
    name: str | None = None
    symbol: str | None = None
    logo_url: str | None = None
    website_url: str | None = None
    price_usd: float | None = None
    liquidity_usd: float | None = None
    volume_24h: float | None = None
    fdv: float | None = None
    market_cap: float | None = None
    price_change_5m: float | None = None
    price_change_15m: float | None = None
    price_change_1h: float | None = None
    buys_24h: int | None = None
    sells_24h: int | None = None
    pair_created_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def token_id(self) -> str:
        return token_id(self.chain_id, self.token_address)

    @property
    def txns_24h(self) -> int | None:
        if self.buys_24h is None and self.sells_24h is None:
            return None
        return (self.buys_24h or 0) + (self.sells_24h or 0)

    def to_row(self, fetched_at: datetime) -> dict[str, Any]:
        return {
            "token_id": self.token_id,
            "chain_id": self.chain_id,
            "token_address": self.token_address,
            "pair_address": self.pair_address,
            "name": self.name,
            "symbol": self.symbol,
            "logo_url": self.logo_url,
            "website_url": self.website_url,
            "price_usd": self.price_usd,
            "liquidity_usd": self.liquidity_usd,
            "volume_24h": self.volume_24h,
            "fdv": self.fdv,
            "market_cap": self.market_cap,
            "price_change_5m": self.price_change_5m,
            "price_change_15m": self.price_change_15m,
            "price_change_1h": self.price_change_1h,
            "buys_24h": self.buys_24h,
            "sells_24h": self.sells_24h,
            "pair_created_at": self.pair_created_at,
            "last_fetched_at": fetched_at,
        }


@dataclass(slots=True)
class DiscoveredToken:
    """Profile / boost / search hit, before any market refresh."""

    chain_id: str
    token_address: str
    source: str
    logo_url: str | None = None
    website_url: str | None = None
    description: str | None = None
    boost_amount: float | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "token_id": token_id(self.chain_id, self.token_address),
            "chain_id": self.chain_id,
            "token_address": self.token_address,
            "logo_url": self.logo_url,
            "website_url": self.website_url,
            "description": self.description,
            "boost_amount": self.boost_amount,
        }


def _same_address(left: str | None, right: str, casing: AddressCasing) -> bool:
    if not left:
        return False
    if casing is AddressCasing.LOWERCASE:
        return left.lower() == right.lower()
    return left == right


def best_pair(
    pairs: Iterable[dict[str, Any]],
    chain_id: str,
    address: str,
    casing: AddressCasing = AddressCasing.LOWERCASE,
) -> dict[str, Any] | None:
    """Highest USD liquidity pair on ``chain_id`` whose base or quote token is ``address``."""

    relevant = [
        pair
        for pair in pairs
        if isinstance(pair, dict)
        and pair.get("chainId", chain_id) == chain_id
        and (
            _same_address((pair.get("baseToken") or {}).get("address"), address, casing)
            or _same_address((pair.get("quoteToken") or {}).get("address"), address, casing)
        )
    ]
    if not relevant:
        return None
    return max(relevant, key=lambda pair: num((pair.get("liquidity") or {}).get("usd")) or 0.0)


def _website(info: dict[str, Any]) -> str | None:
    for site in info.get("websites") or []:
        if isinstance(site, dict) and text(site.get("url")):
            return text(site.get("url"))
    return None


def _profile_website(links: list[Any]) -> str | None:
    """Profiles list socials and sites together; websites carry no `type`."""

    for link in links:
        if not isinstance(link, dict) or not text(link.get("url")):
            continue
        if link.get("type") in (None, "", "website") or (link.get("label") or "").lower() == "website":
            return text(link.get("url"))
    return None


def _timestamp_ms(value: Any) -> datetime | None:
    millis = num(value)
    if millis is None or millis <= 0:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def snapshot_from_pair(
    chain_id: str,
    address: str,
    pair: dict[str, Any],
    casing: AddressCasing = AddressCasing.LOWERCASE,
) -> MarketSnapshot:
    base = pair.get("baseToken") or {}
    side = base if _same_address(base.get("address"), address, casing) else pair.get("quoteToken") or {}
    info = pair.get("info") or {}
    change = pair.get("priceChange") or {}
    volume = pair.get("volume") or {}
    day_txns = (pair.get("txns") or {}).get("h24") or {}
    return MarketSnapshot(
        chain_id=chain_id,
        token_address=address,
        pair_address=text(pair.get("pairAddress")),
        name=text(side.get("name")),
        symbol=text(side.get("symbol")),
        logo_url=text(info.get("imageUrl")),
        website_url=_website(info),
        price_usd=num(pair.get("priceUsd")),
        liquidity_usd=num((pair.get("liquidity") or {}).get("usd")),
        volume_24h=num(first(volume, "h24", "24h")),
        fdv=num(pair.get("fdv")),
        market_cap=num(pair.get("marketCap")),
        price_change_5m=num(change.get("m5")),
        price_change_15m=num(change.get("m15")),
        price_change_1h=num(change.get("h1")),
        buys_24h=integer(day_txns.get("buys")),
        sells_24h=integer(day_txns.get("sells")),
        pair_created_at=_timestamp_ms(pair.get("pairCreatedAt")),
        raw=pair,
    )


def _discovered(item: dict[str, Any], source: str) -> DiscoveredToken | None:
    chain_id = text(item.get("chainId"))
    address = text(item.get("tokenAddress"))
    if not chain_id or not address:
        return None
    website = _profile_website(item.get("links") or [])
    return DiscoveredToken(
        chain_id=chain_id,
        token_address=address,
        source=source,
        logo_url=text(item.get("icon")),
        website_url=website,
        description=text(item.get("description")),
        boost_amount=num(first(item, "totalAmount", "amount")),
    )


class DexScreenerClient:
    """Thin typed layer over the public DexScreener API."""

    def __init__(self, http: ProviderClient, cfg: DexScreenerSettings) -> None:
        self._http = http
        self._base_url = str(cfg.base_url).rstrip("/")
        self._retry = RetryPolicy.from_settings(cfg.retry)
        self._chunk = min(cfg.max_addresses_per_call, MAX_ADDRESSES_PER_CALL)
        self._search_ttl = cfg.search_cache_ttl_sec

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        return await self._http.fetch_json(f"{self._base_url}{path}", params=params, retry=self._retry)

    async def token_pairs(self, chain_id: str, addresses: Sequence[str]) -> list[dict[str, Any]]:
        """Raw pairs for at most one chunk of addresses."""

        if len(addresses) > self._chunk:
            raise ValueError(f"at most {self._chunk} addresses per call")
        joined = quote(",".join(addresses), safe=",")
        payload = await self._get(f"/tokens/v1/{quote(chain_id, safe='')}/{joined}")
        if not isinstance(payload, list):
            raise ProviderError("tokens/v1 response is not an array")
        return [pair for pair in payload if isinstance(pair, dict)]

    async def tokens(
        self,
        chain_id: str,
        addresses: Sequence[str],
        casing: AddressCasing = AddressCasing.LOWERCASE,
    ) -> dict[str, MarketSnapshot | None]:
        """Best-pair snapshot per address; larger lists are split into chunks."""

        snapshots: dict[str, MarketSnapshot | None] = {}
        unique = list(dict.fromkeys(addresses))
        for start in range(0, len(unique), self._chunk):
            chunk = unique[start : start + self._chunk]
            pairs = await self.token_pairs(chain_id, chunk)
            for address in chunk:
                pair = best_pair(pairs, chain_id, address, casing)
                snapshots[address] = snapshot_from_pair(chain_id, address, pair, casing) if pair else None
        return snapshots

    async def _listing(self, path: str, source: str) -> list[DiscoveredToken]:
        payload = await self._get(path)
        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            raise ProviderError(f"{path} response is not a list")
        found = [token for item in payload if isinstance(item, dict) and (token := _discovered(item, source))]
        logger.debug("DexScreener {source}: {count} token(s)", source=source, count=len(found))
        return found

    async def latest_profiles(self) -> list[DiscoveredToken]:
        return await self._listing("/token-profiles/latest/v1", "profiles")

    async def latest_boosts(self) -> list[DiscoveredToken]:
        return await self._listing("/token-boosts/latest/v1", "boosts_latest")

    async def top_boosts(self) -> list[DiscoveredToken]:
        return await self._listing("/token-boosts/top/v1", "boosts_top")

    async def search(self, query: str) -> list[DiscoveredToken]:
        """Pairs matching ``query``; results are memoized for a few seconds."""

        query = query.strip()
        if not query:
            return []

        async def _fetch() -> list[dict[str, Any]]:
            payload = await self._get("/latest/dex/search", {"q": query})
            pairs = payload.get("pairs") if isinstance(payload, dict) else None
            return [pair for pair in pairs or [] if isinstance(pair, dict)]

        pairs = await cached_call(cache_key("dexscreener", "search", query.lower()), self._search_ttl, _fetch)
        found: dict[tuple[str, str], DiscoveredToken] = {}
        for pair in pairs:
            chain_id = text(pair.get("chainId"))
            address = text((pair.get("baseToken") or {}).get("address"))
            if chain_id and address and (chain_id, address) not in found:
                info = pair.get("info") or {}
                found[(chain_id, address)] = DiscoveredToken(
                    chain_id=chain_id,
                    token_address=address,
                    source="search",
                    logo_url=text(info.get("imageUrl")),
                    website_url=_website(info),
                )
        return list(found.values())


__all__ = [
    "DexScreenerClient",
    "DiscoveredToken",
    "MAX_ADDRESSES_PER_CALL",
    "MarketSnapshot",
    "best_pair",
    "snapshot_from_pair",
]
