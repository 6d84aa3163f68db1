from __future__ import annotations

import asyncio

import aiohttp
import pytest

from dexswipe.services.providers.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderHTTPError,
    ProviderUnavailableError,
)
from dexswipe.services.providers.http_client import ProviderClient, RetryPolicy
from fakes import FakeResponse, FakeSession

FAST = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, timeout=1.0)


def _client(responses) -> tuple[ProviderClient, FakeSession]:
    session = FakeSession(responses)
    return ProviderClient(user_agent="dexswipe-tests", retry=FAST, session=session), session


def test_retry_delay_is_capped():
    policy = RetryPolicy(base_delay=0.5, max_delay=4.0)
    assert [policy.delay(n) for n in range(5)] == [0.5, 1.0, 2.0, 4.0, 4.0]


def test_retries_transient_statuses_then_succeeds():
    client, session = _client(
        [
            FakeResponse(503, {"error": "busy"}),
            aiohttp.ClientConnectionError("reset by peer"),
            FakeResponse(200, {"pairs": []}),
        ]
    )
    payload = asyncio.run(client.fetch_json("https://api.example/x", params={"q": "pepe"}))
    assert payload == {"pairs": []}
    assert len(session.calls) == 3
    assert session.calls[0]["params"] == {"q": "pepe"}
    assert session.calls[0]["headers"]["User-Agent"] == "dexswipe-tests"


def test_exhausted_retries_raise_unavailable():
    client, session = _client([FakeResponse(429, {}), FakeResponse(502, {}), FakeResponse(500, {})])
    with pytest.raises(ProviderUnavailableError) as excinfo:
        asyncio.run(client.fetch_json("https://api.example/x"))
    assert "HTTP 500" in str(excinfo.value)
    assert len(session.calls) == 3


def test_auth_statuses_are_not_retried():
    client, session = _client([FakeResponse(403, {"error": "forbidden"})])
    with pytest.raises(ProviderAuthError) as excinfo:
        asyncio.run(client.fetch_json("https://api.example/x"))
    assert excinfo.value.status == 403
    assert len(session.calls) == 1


def test_other_client_errors_raise_http_error():
    client, _ = _client([FakeResponse(404, {"error": "not found"})])
    with pytest.raises(ProviderHTTPError) as excinfo:
        asyncio.run(client.fetch_json("https://api.example/x"))
    assert excinfo.value.status == 404
    assert not isinstance(excinfo.value, ProviderAuthError)


def test_invalid_json_is_a_provider_error():
    client, _ = _client([FakeResponse(200, body="<html>oops</html>")])
    with pytest.raises(ProviderError, match="Invalid JSON"):
        asyncio.run(client.fetch_json("https://api.example/x"))
