from __future__ import annotations

from dexswipe.services.chains import EVM, SOLANA
from dexswipe.services.risk.signals import (
    critical_reasons,
    normalize_evm,
    normalize_rugpull,
    normalize_security,
    normalize_solana,
    security_cache_values,
    url_cache_values,
)


def test_evm_snake_and_camel_case_flags():
    signals = normalize_evm(
        {
            "is_honeypot": "0",
            "isProxy": "1",
            "is_open_source": "0",
            "buyTax": "0.05",
            "sell_tax": "",
            "hidden_owner": "1",
        }
    )
    assert signals.is_honeypot is False
    assert signals.is_proxy is True
    assert signals.not_open_source is True
    assert signals.buy_tax == 0.05
    assert signals.sell_tax is None
    assert signals.hidden_owner is True
    assert signals.is_blacklisted is None


def test_solana_nested_status_objects():
    signals = normalize_solana(
        {
            "mintable": {"status": "1", "authority": []},
            "freezable": {"status": "0"},
            "non_transferable": "0",
            "transfer_hook": [{"address": "hook"}],
            "balance_mutable_authority": {"status": "1"},
        }
    )
    assert signals.is_mintable is True
    assert signals.transfer_pausable is False
    assert signals.cannot_sell_all is False
    assert signals.external_call is True
    assert signals.owner_change_balance is True
    assert signals.is_honeypot is None


def test_empty_payload_has_no_usable_fields():
    assert normalize_security(EVM, None).has_usable_fields is False
    assert normalize_security(SOLANA, {}).has_usable_fields is False


def test_critical_reasons_order():
    signals = normalize_evm(
        {"is_honeypot": "1", "is_blacklisted": "1", "cannot_sell_all": "1", "buy_tax": "0.6", "sell_tax": "1"}
    )
    assert critical_reasons(signals) == [
        "Honeypot",
        "Blacklisted",
        "Cannot Sell All",
        "High Buy Tax",
        "High Sell Tax",
    ]


def test_security_cache_values_carry_deny_verdict():
    _, values = security_cache_values(EVM, {"is_honeypot": "1"})
    assert values["always_deny"] is True
    assert values["deny_reasons"] == ["Honeypot"]
    assert values["family"] == "evm"
    assert values["raw"] == {"is_honeypot": "1"}

    _, clean = security_cache_values(EVM, {"is_honeypot": "0"})
    assert clean["always_deny"] is False
    assert clean["deny_reasons"] == []


def test_rugpull_indicators_fallback():
    assert normalize_rugpull({"is_rugpull": "1"}).is_rugpull_risk is True
    assert normalize_rugpull({"privilege_withdraw": "0", "selfdestruct": "1"}).is_rugpull_risk is True
    assert normalize_rugpull({"privilege_withdraw": "0"}).is_rugpull_risk is False
    assert normalize_rugpull({}).is_rugpull_risk is None


def test_url_values():
    signals, values = url_cache_values({"phishing_site": 1}, {"risk_level": "low"})
    assert signals.is_phishing is True
    assert signals.dapp_risk_level == "low"
    assert values["always_deny"] is True
    assert values["deny_reasons"] == ["Phishing Site"]
