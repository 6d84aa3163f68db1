from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from config.settings import DexScreenerSettings
from dexswipe.services.chains import AddressCasing
from dexswipe.services.providers.dexscreener import DexScreenerClient, best_pair, snapshot_from_pair
from dexswipe.services.providers.http_client import ProviderClient
from fakes import FakeResponse, FakeSession

TOKEN = "0xToken"


def _pair(pair_address, liquidity, *, base=TOKEN, quote="0xWeth", chain_id="ethereum", **extra):
    pair = {
        "chainId": chain_id,
        "pairAddress": pair_address,
        "baseToken": {"address": base, "name": "Pepe", "symbol": "PEPE"},
        "quoteToken": {"address": quote, "name": "Wrapped Ether", "symbol": "WETH"},
        "liquidity": {"usd": liquidity},
    }
    pair.update(extra)
    return pair


def test_best_pair_picks_highest_liquidity_on_the_chain():
    pairs = [
        _pair("0xsmall", 1_000),
        _pair("0xbig", 50_000),
        _pair("0xother-chain", 900_000, chain_id="bsc"),
        _pair("0xunrelated", 2_000_000, base="0xElse"),
    ]
    assert best_pair(pairs, "ethereum", "0xtoken")["pairAddress"] == "0xbig"
    assert best_pair(pairs, "ethereum", "0xtoken", AddressCasing.CASE_SENSITIVE) is None
    assert best_pair([], "ethereum", TOKEN) is None


def test_token_on_the_quote_side_still_matches():
    pair = _pair("0xq", 10_000, base="0xWeth", quote=TOKEN)
    assert best_pair([pair], "ethereum", TOKEN) is pair
    snapshot = snapshot_from_pair("ethereum", TOKEN, pair)
    assert snapshot.symbol == "PEPE"


def test_snapshot_fields():
    pair = _pair(
        "0xpair",
        "12345.5",
        priceUsd="0.0012",
        fdv=1_000_000,
        marketCap=800_000,
        volume={"h24": 55_000},
        priceChange={"m5": 1.5, "h1": -3},
        txns={"h24": {"buys": 10, "sells": "4"}},
        pairCreatedAt=1_700_000_000_000,
        info={"imageUrl": "https://img/pepe.png", "websites": [{"url": "https://pepe.example"}]},
    )
    snapshot = snapshot_from_pair("ethereum", TOKEN, pair)
    assert snapshot.token_id == "ethereum:0xToken"
    assert snapshot.price_usd == pytest.approx(0.0012)
    assert snapshot.liquidity_usd == pytest.approx(12345.5)
    assert snapshot.volume_24h == 55_000
    assert snapshot.price_change_5m == 1.5
    assert snapshot.price_change_15m is None
    assert snapshot.price_change_1h == -3
    assert snapshot.txns_24h == 14
    assert snapshot.logo_url == "https://img/pepe.png"
    assert snapshot.website_url == "https://pepe.example"
    assert snapshot.pair_created_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    row = snapshot.to_row(datetime(2024, 1, 1, tzinfo=timezone.utc))
    assert row["token_id"] == "ethereum:0xToken"
    assert row["last_fetched_at"] == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_tokens_maps_every_requested_address():
    session = FakeSession([FakeResponse(200, [_pair("0xpair", 20_000, base="0xaaa")])])
    client = DexScreenerClient(ProviderClient(user_agent="dexswipe-tests", session=session), DexScreenerSettings())

    snapshots = asyncio.run(client.tokens("ethereum", ["0xaaa", "0xbbb", "0xaaa"]))

    assert set(snapshots) == {"0xaaa", "0xbbb"}
    assert snapshots["0xaaa"].pair_address == "0xpair"
    assert snapshots["0xbbb"] is None
    assert len(session.calls) == 1
    assert session.calls[0]["url"] == "https://api.dexscreener.com/tokens/v1/ethereum/0xaaa,0xbbb"


def test_listing_parses_profiles():
    payload = [
        {
            "chainId": "solana",
            "tokenAddress": "So1anaMint",
            "icon": "https://img/icon.png",
            "description": "community coin",
            "links": [{"type": "twitter", "url": "https://x.com/coin"}, {"label": "Website", "url": "https://coin.example"}],
        },
        {"chainId": "solana"},
    ]
    session = FakeSession([FakeResponse(200, payload)])
    client = DexScreenerClient(ProviderClient(user_agent="dexswipe-tests", session=session), DexScreenerSettings())

    (found,) = asyncio.run(client.latest_profiles())

    assert found.source == "profiles"
    assert found.token_address == "So1anaMint"
    assert found.website_url == "https://coin.example"
    assert found.description == "community coin"
