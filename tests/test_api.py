"""
HTTP surface: client header, response shapes, validation and storage failures.
"""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from dexswipe.models.base import utcnow
from dexswipe.repositories import upsert_snapshots
from dexswipe.services.feed import FeedAggregator
from dexswipe.services.providers.dexscreener import MarketSnapshot
from dexswipe.web.app import app, get_db_session, get_feed_aggregator
from fakes import FakeDexScreener, FakeGoPlus

HEADERS = {"x-client-id": "device-1"}


class BrokenStorageFeed:
    async def get_feed(self, session, client_id, query):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    async def get_wishlist(self, session, client_id, limit):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))


@pytest.fixture
def ctx(make_context):
    return make_context()


@pytest.fixture
def client(ctx):
    feed = FeedAggregator(
        dexscreener=FakeDexScreener(),
        goplus=FakeGoPlus(),
        registry=ctx.registry,
        governor=ctx.governor,
        security_cache=ctx.security_cache,
        rugpull_cache=ctx.rugpull_cache,
        url_cache=ctx.url_cache,
        security_queue=ctx.security_queue,
        cfg=ctx.settings.feed,
    )

    async def session_override():
        async with ctx.session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = session_override
    app.dependency_overrides[get_feed_aggregator] = lambda: feed
    yield TestClient(app)
    app.dependency_overrides.clear()


def _seed(ctx, addresses):
    async def scenario():
        async with ctx.session_maker() as session:
            rows = [
                MarketSnapshot(chain_id="ethereum", token_address=address, price_usd=1.0, symbol="TKN").to_row(utcnow())
                for address in addresses
            ]
            await upsert_snapshots(session, rows)

    asyncio.run(scenario())


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_client_header_is_required(client):
    assert client.get("/api/feed").status_code == 400
    assert client.get("/api/feed", headers={"x-client-id": "   "}).status_code == 400
    assert client.get("/api/wishlist").status_code == 400


def test_full_format(client, ctx):
    _seed(ctx, ["0xaaa", "0xbbb"])

    response = client.get("/api/feed", headers=HEADERS, params={"chains": "Ethereum,ethereum"})

    assert response.status_code == 200
    body = response.json()
    assert [token["token_id"] for token in body["tokens"]] == ["ethereum:0xbbb", "ethereum:0xaaa"]
    assert body["tokens"][0]["checks_state"] == "pending"
    assert body["next_cursor"] is None


def test_min_format_puts_cursor_in_header(client, ctx):
    _seed(ctx, ["0xaaa", "0xbbb", "0xccc"])

    response = client.get("/api/feed", headers=HEADERS, params={"format": "min", "limit": 1})

    assert response.status_code == 200
    (item,) = response.json()
    assert item["id"] == "ethereum:0xccc"
    assert response.headers["x-next-cursor"]

    rest = client.get(
        "/api/feed",
        headers={"x-client-id": "device-2"},
        params={"format": "min", "limit": 5, "cursor": response.headers["x-next-cursor"]},
    )
    assert [entry["id"] for entry in rest.json()] == ["ethereum:0xbbb", "ethereum:0xaaa"]
    assert rest.headers["x-next-cursor"] == ""


@pytest.mark.parametrize(
    "params",
    [{"limit": 0}, {"limit": 101}, {"format": "xml"}, {"min_liquidity_usd": -1}],
)
def test_invalid_query_is_rejected(client, params):
    assert client.get("/api/feed", headers=HEADERS, params=params).status_code == 422


def test_wishlist_limit_bounds(client):
    assert client.get("/api/wishlist", headers=HEADERS, params={"limit": 201}).status_code == 422
    response = client.get("/api/wishlist", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["items"] == []


def test_storage_failure_maps_to_503(client):
    app.dependency_overrides[get_feed_aggregator] = lambda: BrokenStorageFeed()

    response = client.get("/api/feed", headers=HEADERS)

    assert response.status_code == 503
    assert response.json() == {"error": "storage_unavailable"}
