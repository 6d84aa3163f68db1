"""
Feed and wishlist composition over the test database with fake providers.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from datetime import timedelta

import pytest

from config.settings import PlanSettings
from dexswipe.models import WishlistItem
from dexswipe.models.base import utcnow
from dexswipe.repositories import upsert_snapshots
from dexswipe.services.chains import EVM
from dexswipe.services.feed import FeedAggregator, FeedQuery, is_surging, roi_since_captured
from dexswipe.services.providers.dexscreener import MarketSnapshot
from dexswipe.services.providers.errors import InvalidAddressError, UnsupportedChainError
from dexswipe.services.risk.signals import security_cache_values
from fakes import FakeDexScreener, FakeGoPlus

CLEAN = {"is_honeypot": "0", "buy_tax": "0", "sell_tax": "0"}


def _snapshot(address, chain_id="ethereum", **fields):
    fields.setdefault("price_usd", 1.0)
    fields.setdefault("liquidity_usd", 25_000.0)
    fields.setdefault("volume_24h", 80_000.0)
    fields.setdefault("symbol", address[2:].upper())
    return MarketSnapshot(chain_id=chain_id, token_address=address, pair_address=f"{address}-pair", **fields)


def _seed(ctx, snapshots, *, fetched_ago=timedelta(0), security=None):
    async def scenario():
        async with ctx.session_maker() as session:
            fetched_at = utcnow() - fetched_ago
            await upsert_snapshots(session, [snapshot.to_row(fetched_at) for snapshot in snapshots])
            for key, payload in (security or {}).items():
                _, values = security_cache_values(EVM, payload)
                await ctx.security_cache.put(session, key, values)

    asyncio.run(scenario())


def _feed(ctx, *, dexscreener=None, goplus=None, **cfg) -> FeedAggregator:
    return FeedAggregator(
        dexscreener=dexscreener or FakeDexScreener(),
        goplus=goplus or FakeGoPlus(),
        registry=ctx.registry,
        governor=ctx.governor,
        security_cache=ctx.security_cache,
        rugpull_cache=ctx.rugpull_cache,
        url_cache=ctx.url_cache,
        security_queue=ctx.security_queue,
        cfg=ctx.settings.feed.model_copy(update=cfg),
    )


def _get_feed(ctx, feed, client_id="client-a", **query):
    async def scenario():
        async with ctx.session_maker() as session:
            return await feed.get_feed(session, client_id, FeedQuery(**query))

    return asyncio.run(scenario())


def test_is_surging():
    assert is_surging(1.0, 1.2, 2.0)
    assert not is_surging(0.5, 1.2, 2.0)
    assert not is_surging(1.0, 0.4, 2.0)
    # A 15m change estimated from 1h never outpaces 1h on its own.
    assert is_surging(1.0, None, 2.0) is False
    assert not is_surging(None, 1.0, 2.0)
    assert not is_surging(1.0, 1.0, None)


def test_roi_since_captured():
    assert roi_since_captured(1.5, 1.0) == pytest.approx(50.0)
    assert roi_since_captured(0.5, 1.0) == pytest.approx(-50.0)
    assert roi_since_captured(1.0, 0) is None
    assert roi_since_captured(None, 1.0) is None


def test_risky_tokens_are_hidden_and_seen_tokens_skipped(make_context):
    ctx = make_context()
    _seed(
        ctx,
        [_snapshot("0xaaa"), _snapshot("0xbbb"), _snapshot("0xccc")],
        security={("ethereum", "0xaaa"): CLEAN, ("ethereum", "0xbbb"): {"is_honeypot": "1"}},
    )
    feed = _feed(ctx)

    page = _get_feed(ctx, feed, limit=10)
    again = _get_feed(ctx, feed, limit=10)

    assert [item.token.token_address for item in page.items] == ["0xccc", "0xaaa"]
    by_address = {item.token.token_address: item.score for item in page.items}
    assert by_address["0xaaa"].safety_score == 100
    assert by_address["0xaaa"].checks_state.value == "complete"
    assert by_address["0xccc"].checks_state.value == "pending"
    assert page.next_cursor is None
    assert again.items == []


def test_include_risky_returns_deny_verdicts(make_context):
    ctx = make_context()
    _seed(ctx, [_snapshot("0xbbb")], security={("ethereum", "0xbbb"): {"is_honeypot": "1"}})

    page = _get_feed(ctx, _feed(ctx), include_risky=True)

    (item,) = page.items
    full = item.full()
    assert full["is_security_risk"] is True
    assert full["safety_score"] == 0
    assert full["risk_factors"] == ["Honeypot"]
    assert full["security"]["always_deny"] is True


def test_full_and_min_shapes_agree(make_context):
    ctx = make_context()
    _seed(
        ctx,
        [_snapshot("0xaaa", price_change_5m=1.0, price_change_15m=1.2, price_change_1h=2.0)],
        security={("ethereum", "0xaaa"): CLEAN},
    )

    page = _get_feed(ctx, _feed(ctx))

    (full,) = page.as_full()["tokens"]
    (small,) = page.as_min()
    assert small["id"] == full["token_id"] == "ethereum:0xaaa"
    for name in ("safety_score", "is_security_risk", "checks_state", "is_surging", "symbol"):
        assert small[name] == full[name]
    assert small["is_surging"] is True
    assert "risk_factors" not in small


def test_filters_apply_to_candidates(make_context):
    ctx = make_context()
    _seed(
        ctx,
        [
            _snapshot("0xaaa", liquidity_usd=5_000.0),
            _snapshot("0xbbb", liquidity_usd=50_000.0),
            _snapshot("So1ana", chain_id="solana"),
        ],
    )

    page = _get_feed(ctx, _feed(ctx), chains=("ethereum",), min_liquidity_usd=10_000.0)

    assert [item.token.token_id for item in page.items] == ["ethereum:0xbbb"]


def test_cursor_continues_where_the_page_stopped(make_context):
    ctx = make_context()
    _seed(ctx, [_snapshot("0xaaa"), _snapshot("0xbbb"), _snapshot("0xccc")])
    feed = _feed(ctx)

    first = _get_feed(ctx, feed, client_id="client-a", limit=1)
    second = _get_feed(ctx, feed, client_id="client-b", limit=1, cursor=first.next_cursor)
    restart = _get_feed(ctx, feed, client_id="client-c", limit=1, cursor="not-a-cursor")

    assert [item.token.token_address for item in first.items] == ["0xccc"]
    assert first.next_cursor
    assert [item.token.token_address for item in second.items] == ["0xbbb"]
    assert [item.token.token_address for item in restart.items] == ["0xccc"]


def test_cursor_survives_a_refresh_of_stale_candidates(make_context):
    ctx = make_context()
    addresses = ["0xaaa", "0xbbb", "0xccc"]
    _seed(ctx, [_snapshot(address) for address in addresses], fetched_ago=timedelta(hours=1))
    dexscreener = FakeDexScreener(
        {("ethereum", address): _snapshot(address, price_usd=2.0) for address in addresses}
    )
    feed = _feed(ctx, dexscreener=dexscreener)

    pages = []
    cursor = None
    for _ in range(4):
        page = _get_feed(ctx, feed, limit=1, cursor=cursor)
        pages.append([item.token.token_address for item in page.items])
        cursor = page.next_cursor
        if cursor is None:
            break

    assert pages == [["0xccc"], ["0xbbb"], ["0xaaa"]]
    assert dexscreener.calls[0] == ("ethereum", ["0xccc", "0xbbb", "0xaaa"])


def test_stale_refresh_respects_the_latency_budget(make_context):
    ctx = make_context()
    _seed(ctx, [_snapshot("0xaaa", price_usd=1.0)], fetched_ago=timedelta(hours=1))
    slow = FakeDexScreener({("ethereum", "0xaaa"): _snapshot("0xaaa", price_usd=9.0)}, delay=5)

    started = time.monotonic()
    page = _get_feed(ctx, _feed(ctx, dexscreener=slow, latency_budget_ms=50))

    assert time.monotonic() - started < 3
    assert [item.token.price_usd for item in page.items] == [1.0]


def test_stale_refresh_updates_prices(make_context):
    ctx = make_context()
    _seed(ctx, [_snapshot("0xaaa", price_usd=1.0)], fetched_ago=timedelta(hours=1))
    dexscreener = FakeDexScreener({("ethereum", "0xaaa"): _snapshot("0xaaa", price_usd=2.5)})

    page = _get_feed(ctx, _feed(ctx, dexscreener=dexscreener))

    assert dexscreener.calls == [("ethereum", ["0xaaa"])]
    (item,) = page.items
    assert item.token.price_usd == 2.5
    assert item.token.last_fetched_at > utcnow() - timedelta(minutes=1)


def test_paid_plan_scans_uncached_tokens_live(make_context):
    ctx = make_context(plan=PlanSettings(tier="PRO"))
    _seed(ctx, [_snapshot("0xaaa")])
    goplus = FakeGoPlus({"0xaaa": CLEAN})

    page = _get_feed(ctx, _feed(ctx, goplus=goplus))

    assert goplus.calls == [("ethereum", ["0xaaa"])]
    (item,) = page.items
    assert item.score.checks_state.value == "complete"
    assert item.security is not None


def test_free_plan_never_scans_in_the_request(make_context):
    ctx = make_context()
    _seed(ctx, [_snapshot("0xaaa")])
    goplus = FakeGoPlus({"0xaaa": CLEAN})

    _get_feed(ctx, _feed(ctx, goplus=goplus))

    assert goplus.calls == []


def test_wishlist_reports_roi(make_context):
    ctx = make_context()
    _seed(ctx, [_snapshot("0xaaa", price_usd=1.5)], security={("ethereum", "0xaaa"): CLEAN})
    feed = _feed(ctx)
    captured = utcnow() - timedelta(days=1)

    async def scenario():
        async with ctx.session_maker() as session:
            session.add(WishlistItem(client_id="client-a", token_id="ethereum:0xaaa", captured_price=1.0, captured_at=captured))
            session.add(WishlistItem(client_id="client-a", token_id="solana:MintGone", captured_price=2.0))
            session.add(WishlistItem(client_id="client-b", token_id="ethereum:0xaaa", captured_price=3.0))
            await session.commit()
        async with ctx.session_maker() as session:
            return await feed.get_wishlist(session, "client-a", 50)

    result = asyncio.run(scenario())

    items = {item["token_id"]: item for item in result["items"]}
    assert set(items) == {"ethereum:0xaaa", "solana:MintGone"}
    assert items["ethereum:0xaaa"]["roi_since_captured"] == pytest.approx(50.0)
    assert items["ethereum:0xaaa"]["captured_price"] == 1.0
    assert items["solana:MintGone"]["roi_since_captured"] is None
    assert items["solana:MintGone"]["checks_state"] == "pending"
    assert result["refreshed"] == {"requested": 1, "updated": 0}


def test_empty_wishlist(make_context):
    ctx = make_context()

    async def scenario():
        async with ctx.session_maker() as session:
            return await _feed(ctx).get_wishlist(session, "nobody", 1000)

    result = asyncio.run(scenario())
    assert result["items"] == []
    assert result["limit"] == ctx.settings.feed.wishlist_max_limit


@pytest.mark.parametrize(
    ("error", "state", "factors"),
    [
        (UnsupportedChainError(2018, "chain not supported"), "unsupported", ["Checks Unsupported"]),
        (InvalidAddressError(2004, "invalid address"), "limited", ["Invalid Address"]),
    ],
)
def test_provider_rejections_are_not_left_pending(make_context, error, state, factors):
    ctx = make_context()
    _seed(ctx, [_snapshot("0xaaa")])

    async def enqueue():
        async with ctx.session_maker() as session:
            await ctx.security_queue.enqueue(session, ("ethereum", "0xaaa"), run_at=utcnow() - timedelta(seconds=5))

    asyncio.run(enqueue())
    report = asyncio.run(replace(ctx, goplus=FakeGoPlus(error=error)).security_worker().run())
    assert report.counts == {"suppressed": 1}

    page = _get_feed(ctx, _feed(ctx))

    (item,) = page.items
    full = item.full()
    assert full["checks_state"] == state
    assert full["risk_factors"] == factors
    assert full["safety_score"] is None


def test_wishlist_normalizes_address_casing(make_context):
    ctx = make_context()
    _seed(ctx, [_snapshot("0xaaa", price_usd=2.0)], security={("ethereum", "0xaaa"): CLEAN})

    async def scenario():
        async with ctx.session_maker() as session:
            session.add(WishlistItem(client_id="client-a", token_id="ethereum:0xAAA", captured_price=1.0))
            await session.commit()
        async with ctx.session_maker() as session:
            return await _feed(ctx).get_wishlist(session, "client-a", 10)

    (item,) = asyncio.run(scenario())["items"]
    assert item["token_id"] == "ethereum:0xaaa"
    assert item["checks_state"] == "complete"
    assert item["safety_score"] == 100
    assert item["roi_since_captured"] == pytest.approx(100.0)
