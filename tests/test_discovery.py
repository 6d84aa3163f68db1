from __future__ import annotations

import asyncio
from dataclasses import replace

from config.settings import DiscoverySettings
from dexswipe.repositories import get_tokens
from dexswipe.services.pipeline.discovery import merge_discoveries
from dexswipe.services.providers.dexscreener import DiscoveredToken
from dexswipe.services.providers.errors import ProviderUnavailableError


class FakeListings:
    def __init__(self, profiles=(), latest=(), top=(), *, failing=()):
        self._sources = {"profiles": list(profiles), "boosts_latest": list(latest), "boosts_top": list(top)}
        self._failing = set(failing)
        self.queries: list[str] = []

    async def _listing(self, name):
        if name in self._failing:
            raise ProviderUnavailableError(f"{name} down")
        return list(self._sources[name])

    async def latest_profiles(self):
        return await self._listing("profiles")

    async def latest_boosts(self):
        return await self._listing("boosts_latest")

    async def top_boosts(self):
        return await self._listing("boosts_top")

    async def search(self, query):
        self.queries.append(query)
        return [DiscoveredToken("base", f"0x{query}", "search")]


def _token(chain_id, address, source, **fields):
    return DiscoveredToken(chain_id=chain_id, token_address=address, source=source, **fields)


def test_merge_normalizes_and_keeps_the_richest_view(registry):
    merged = merge_discoveries(
        [
            _token("ethereum", "0xABC", "profiles", logo_url="https://img/a.png"),
            _token("ethereum", "0xabc", "boosts_top", website_url="https://a.example", boost_amount=500),
            _token("ethereum", "0xAbC", "boosts_latest", boost_amount=100),
            _token("solana", "MintA", "profiles"),
            _token("solana", "minta", "profiles"),
        ],
        registry,
    )
    assert list(merged) == [("ethereum", "0xabc"), ("solana", "MintA"), ("solana", "minta")]
    token = merged[("ethereum", "0xabc")]
    assert token.source == "profiles"
    assert token.token_address == "0xabc"
    assert token.logo_url == "https://img/a.png"
    assert token.website_url == "https://a.example"
    assert token.boost_amount == 500


def test_run_stubs_tokens_and_queues_market_refresh(make_context):
    ctx = make_context(discovery=DiscoverySettings(search_queries=["pepe"]))
    listings = FakeListings(
        profiles=[_token("ethereum", "0xAAA", "profiles", description="meme")],
        latest=[_token("ethereum", "0xaaa", "boosts_latest", boost_amount=50)],
        failing={"boosts_top"},
    )

    report = asyncio.run(replace(ctx, dexscreener=listings).discovery().run())

    assert report.found == 3
    assert report.unique == 2
    assert report.enqueued == 2
    assert report.failed_sources == ["boosts_top"]
    assert listings.queries == ["pepe"]

    async def check():
        async with ctx.session_maker() as session:
            jobs = await ctx.market_queue.get_many(session, [("ethereum", "0xaaa"), ("base", "0xpepe")])
            tokens = await get_tokens(session, ["ethereum:0xaaa"])
        return jobs, tokens

    jobs, tokens = asyncio.run(check())
    assert set(jobs) == {("ethereum", "0xaaa"), ("base", "0xpepe")}
    assert tokens["ethereum:0xaaa"].description == "meme"
    assert tokens["ethereum:0xaaa"].boost_amount == 50


def test_enqueue_cap_and_repeat_runs(make_context):
    ctx = make_context(discovery=DiscoverySettings(max_enqueue_per_run=2))
    listings = FakeListings(profiles=[_token("bsc", f"0x{i}", "profiles") for i in range(5)])
    service = replace(ctx, dexscreener=listings).discovery()

    first = asyncio.run(service.run())
    second = asyncio.run(service.run())

    assert first.unique == 5
    assert first.enqueued == 2
    assert second.enqueued == 0
