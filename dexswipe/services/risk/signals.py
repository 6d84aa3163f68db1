"""Canonical risk signals built from GoPlus payloads.

EVM token security answers with ``"0"``/``"1"`` strings (sometimes camelCase keys),
Solana with nested ``{"status": "0"|"1"}`` objects. Both are folded into one
``SecuritySignals`` with risk polarity, so scoring never looks at provider shapes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

from dexswipe.models import RugpullCache, TokenSecurityCache, UrlRiskCache
from dexswipe.services.chains import SOLANA, ChainFamily
from dexswipe.utils.parsing import first, flag, num, text

HIGH_TAX_THRESHOLD = 0.5


@dataclass(frozen=True, slots=True)
class SecuritySignals:
    is_honeypot: bool | None = None
    is_blacklisted: bool | None = None
    cannot_sell_all: bool | None = None
    buy_tax: float | None = None
    sell_tax: float | None = None
    is_proxy: bool | None = None
    transfer_pausable: bool | None = None
    slippage_modifiable: bool | None = None
    external_call: bool | None = None
    owner_change_balance: bool | None = None
    hidden_owner: bool | None = None
    cannot_buy: bool | None = None
    trading_cooldown: bool | None = None
    not_open_source: bool | None = None
    is_mintable: bool | None = None
    can_take_back_ownership: bool | None = None

    @property
    def has_usable_fields(self) -> bool:
        return any(getattr(self, item.name) is not None for item in fields(self))

    def as_columns(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class RugpullSignals:
    is_rugpull_risk: bool | None = None
    risk_level: str | None = None


@dataclass(frozen=True, slots=True)
class UrlRiskSignals:
    is_phishing: bool | None = None
    dapp_risk_level: str | None = None


def _evm_flag(payload: dict[str, Any], snake: str, camel: str) -> bool | None:
    return flag(first(payload, snake, camel))


def normalize_evm(payload: dict[str, Any]) -> SecuritySignals:
    open_source = _evm_flag(payload, "is_open_source", "isOpenSource")
    return SecuritySignals(
        is_honeypot=_evm_flag(payload, "is_honeypot", "isHoneypot"),
        is_blacklisted=_evm_flag(payload, "is_blacklisted", "isBlacklisted"),
        cannot_sell_all=_evm_flag(payload, "cannot_sell_all", "cannotSellAll"),
        buy_tax=num(first(payload, "buy_tax", "buyTax")),
        sell_tax=num(first(payload, "sell_tax", "sellTax")),
        is_proxy=_evm_flag(payload, "is_proxy", "isProxy"),
        transfer_pausable=_evm_flag(payload, "transfer_pausable", "transferPausable"),
        slippage_modifiable=_evm_flag(payload, "slippage_modifiable", "slippageModifiable"),
        external_call=_evm_flag(payload, "external_call", "externalCall"),
        owner_change_balance=_evm_flag(payload, "owner_change_balance", "ownerChangeBalance"),
        hidden_owner=_evm_flag(payload, "hidden_owner", "hiddenOwner"),
        cannot_buy=_evm_flag(payload, "cannot_buy", "cannotBuy"),
        trading_cooldown=_evm_flag(payload, "trading_cooldown", "tradingCooldown"),
        not_open_source=None if open_source is None else not open_source,
        is_mintable=_evm_flag(payload, "is_mintable", "isMintable"),
        can_take_back_ownership=_evm_flag(payload, "can_take_back_ownership", "canTakeBackOwnership"),
    )


def _status(value: Any) -> bool | None:
    if isinstance(value, dict):
        return flag(value.get("status"))
    return flag(value)


def normalize_solana(payload: dict[str, Any]) -> SecuritySignals:
    hooks = payload.get("transfer_hook")
    if isinstance(hooks, list):
        external_call = bool(hooks)
    else:
        external_call = _status(hooks)
    return SecuritySignals(
        cannot_sell_all=_status(payload.get("non_transferable")),
        transfer_pausable=_status(payload.get("freezable")),
        external_call=external_call,
        owner_change_balance=_status(payload.get("balance_mutable_authority")),
        is_mintable=_status(payload.get("mintable")),
    )


def normalize_security(family: ChainFamily, payload: dict[str, Any] | None) -> SecuritySignals:
    if not payload:
        return SecuritySignals()
    if family is SOLANA:
        return normalize_solana(payload)
    return normalize_evm(payload)


def critical_reasons(signals: SecuritySignals) -> list[str]:
    """Every critical finding, in a fixed order."""

    reasons = []
    if signals.is_honeypot:
        reasons.append("Honeypot")
    if signals.is_blacklisted:
        reasons.append("Blacklisted")
    if signals.cannot_sell_all:
        reasons.append("Cannot Sell All")
    if signals.buy_tax is not None and signals.buy_tax > HIGH_TAX_THRESHOLD:
        reasons.append("High Buy Tax")
    if signals.sell_tax is not None and signals.sell_tax > HIGH_TAX_THRESHOLD:
        reasons.append("High Sell Tax")
    return reasons


def security_cache_values(
    family: ChainFamily,
    payload: dict[str, Any] | None,
) -> tuple[SecuritySignals, dict[str, Any]]:
    """Signals plus the column values (deny verdict included) for the cache row."""

    signals = normalize_security(family, payload)
    reasons = critical_reasons(signals)
    values = {
        **signals.as_columns(),
        "family": family.name,
        "raw": payload or {},
        "always_deny": bool(reasons),
        "deny_reasons": reasons,
    }
    return signals, values


def security_from_cache(entry: TokenSecurityCache | None) -> SecuritySignals | None:
    if entry is None:
        return None
    return SecuritySignals(**{item.name: getattr(entry, item.name) for item in fields(SecuritySignals)})


_RUG_INDICATORS = ("privilege_withdraw", "withdraw_missing", "approval_abuse", "selfdestruct")


def normalize_rugpull(payload: dict[str, Any] | None) -> RugpullSignals:
    payload = payload or {}
    is_risk = flag(first(payload, "is_rugpull", "rugpull", "is_rugpull_risk"))
    if is_risk is None:
        indicators = [flag(payload.get(name)) for name in _RUG_INDICATORS if name in payload]
        known = [value for value in indicators if value is not None]
        if known:
            is_risk = any(known)
    return RugpullSignals(
        is_rugpull_risk=is_risk,
        risk_level=text(first(payload, "risk_level", "riskLevel")),
    )


def rugpull_cache_values(payload: dict[str, Any] | None) -> tuple[RugpullSignals, dict[str, Any]]:
    signals = normalize_rugpull(payload)
    deny = bool(signals.is_rugpull_risk)
    return signals, {
        "raw": payload or {},
        "is_rugpull_risk": signals.is_rugpull_risk,
        "risk_level": signals.risk_level,
        "always_deny": deny,
        "deny_reasons": ["Rugpull Risk"] if deny else [],
    }


def rugpull_from_cache(entry: RugpullCache | None) -> RugpullSignals | None:
    if entry is None:
        return None
    return RugpullSignals(is_rugpull_risk=entry.is_rugpull_risk, risk_level=entry.risk_level)


def normalize_url(
    phishing: dict[str, Any] | None,
    dapp: dict[str, Any] | None,
) -> UrlRiskSignals:
    phishing = phishing or {}
    dapp = dapp or {}
    return UrlRiskSignals(
        is_phishing=flag(first(phishing, "is_phishing", "phishing", "phishing_site")),
        dapp_risk_level=text(first(dapp, "risk_level", "riskLevel")),
    )


def url_cache_values(
    phishing: dict[str, Any] | None,
    dapp: dict[str, Any] | None,
) -> tuple[UrlRiskSignals, dict[str, Any]]:
    signals = normalize_url(phishing, dapp)
    deny = bool(signals.is_phishing)
    return signals, {
        "raw_phishing": phishing or {},
        "raw_dapp": dapp or {},
        "is_phishing": signals.is_phishing,
        "dapp_risk_level": signals.dapp_risk_level,
        "always_deny": deny,
        "deny_reasons": ["Phishing Site"] if deny else [],
    }


def url_from_cache(entry: UrlRiskCache | None) -> UrlRiskSignals | None:
    if entry is None:
        return None
    return UrlRiskSignals(is_phishing=entry.is_phishing, dapp_risk_level=entry.dapp_risk_level)


__all__ = [
    "HIGH_TAX_THRESHOLD",
    "RugpullSignals",
    "SecuritySignals",
    "UrlRiskSignals",
    "critical_reasons",
    "normalize_evm",
    "normalize_rugpull",
    "normalize_security",
    "normalize_solana",
    "normalize_url",
    "rugpull_cache_values",
    "rugpull_from_cache",
    "security_cache_values",
    "security_from_cache",
    "url_cache_values",
    "url_from_cache",
]
