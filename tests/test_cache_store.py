"""
Cache store: freshness window and scam permanence.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

from dexswipe.models.base import utcnow
from dexswipe.repositories import PutOutcome, security_cache, url_cache
from dexswipe.services.chains import EVM
from dexswipe.services.risk.signals import security_cache_values

KEY = ("ethereum", "0xabc")


def test_freshness_window():
    store = security_cache()
    now = utcnow()
    ttl = timedelta(hours=24)

    class Entry:
        scanned_at = now - timedelta(hours=23)

    assert store.is_fresh(Entry, ttl, now)
    Entry.scanned_at = now - timedelta(hours=25)
    assert not store.is_fresh(Entry, ttl, now)
    assert not store.is_fresh(None, ttl, now)


def test_put_inserts_then_updates(session_maker):
    store = security_cache()
    _, clean = security_cache_values(EVM, {"is_honeypot": "0", "is_proxy": "1"})
    now = utcnow()

    async def scenario():
        async with session_maker() as session:
            first = await store.put(session, KEY, clean, scanned_at=now - timedelta(hours=2))
            second = await store.put(session, KEY, clean, scanned_at=now)
            entry = await store.get(session, KEY)
        return first, second, entry

    first, second, entry = asyncio.run(scenario())
    assert first == PutOutcome.INSERTED
    assert second == PutOutcome.UPDATED
    assert entry.is_proxy is True
    assert entry.scanned_at == now
    assert entry.raw == {"is_honeypot": "0", "is_proxy": "1"}


def test_deny_verdict_is_never_downgraded(session_maker):
    store = security_cache()
    _, deny = security_cache_values(EVM, {"is_honeypot": "1"})
    _, clean = security_cache_values(EVM, {"is_honeypot": "0"})
    now = utcnow()

    async def scenario():
        async with session_maker() as session:
            await store.put(session, KEY, deny, scanned_at=now - timedelta(hours=1))
            outcome = await store.put(session, KEY, clean, scanned_at=now)
            entry = await store.get(session, KEY)
        return outcome, entry

    outcome, entry = asyncio.run(scenario())
    assert outcome == PutOutcome.DENY_KEPT
    assert entry.always_deny is True
    assert entry.is_honeypot is True
    assert entry.deny_reasons == ["Honeypot"]
    assert entry.scanned_at == now


def test_out_of_order_write_is_ignored(session_maker):
    store = url_cache()
    now = utcnow()
    newer = {"is_phishing": False, "dapp_risk_level": "low", "always_deny": False, "deny_reasons": []}
    older = {"is_phishing": False, "dapp_risk_level": "high", "always_deny": False, "deny_reasons": []}

    async def scenario():
        async with session_maker() as session:
            await store.put(session, ("https://token.example",), newer, scanned_at=now)
            outcome = await store.put(session, ("https://token.example",), older, scanned_at=now - timedelta(hours=3))
            entries = await store.get_many(session, [("https://token.example",), ("https://other.example",)])
        return outcome, entries

    outcome, entries = asyncio.run(scenario())
    assert outcome == PutOutcome.STALE
    assert list(entries) == [("https://token.example",)]
    assert entries[("https://token.example",)].dapp_risk_level == "low"
