"""Deterministic risk scoring.

``assess_risk`` is a pure function of cached signals and the last security job error:
no clock, no I/O. Scores are re-derived on every read, so a change to the deductions
applies to historical cache rows immediately.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .signals import RugpullSignals, SecuritySignals, UrlRiskSignals, critical_reasons

RISK_THRESHOLD = 60

HIGH_DEDUCTIONS = (
    ("is_proxy", "Proxy Contract"),
    ("transfer_pausable", "Transfer Pausable"),
    ("slippage_modifiable", "Slippage Modifiable"),
    ("external_call", "External Call"),
)
MEDIUM_DEDUCTIONS = (
    ("owner_change_balance", "Owner Can Change Balance"),
    ("hidden_owner", "Hidden Owner"),
    ("cannot_buy", "Cannot Buy"),
    ("trading_cooldown", "Trading Cooldown"),
)
LOW_DEDUCTIONS = (
    ("not_open_source", "Not Open Source"),
    ("is_mintable", "Mintable"),
    ("can_take_back_ownership", "Take Back Ownership"),
)
SEVERITY_POINTS = ((HIGH_DEDUCTIONS, 20), (MEDIUM_DEDUCTIONS, 10), (LOW_DEDUCTIONS, 5))

DAPP_PENALTIES = {
    "high": (40, "High dApp Risk"),
    "danger": (40, "High dApp Risk"),
    "medium": (20, "Medium dApp Risk"),
    "warning": (20, "Medium dApp Risk"),
    "low": (5, "Low dApp Risk"),
}

PHISHING_FACTOR = "Phishing Site"
RUGPULL_FACTOR = "Rugpull Risk"
UNSUPPORTED_FACTOR = "Checks Unsupported"
UNAVAILABLE_FACTOR = "Security Data Unavailable"
INVALID_ADDRESS_FACTOR = "Invalid Address"

_LIMITED_ERROR = re.compile(r"^provider_limited(?::(-?\d+))?")
_UNSUPPORTED_ERROR = re.compile(r"^unsupported_chain\b")
_INVALID_ADDRESS_ERROR = re.compile(r"^invalid_address\b")


class ChecksState(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    LIMITED = "limited"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True, slots=True)
class ScoreResult:
    safety_score: int | None
    is_security_risk: bool
    risk_factors: tuple[str, ...]
    checks_state: ChecksState

    def as_dict(self) -> dict[str, Any]:
        return {
            "safety_score": self.safety_score,
            "is_security_risk": self.is_security_risk,
            "risk_factors": list(self.risk_factors),
            "checks_state": self.checks_state.value,
        }


@dataclass(frozen=True, slots=True)
class RiskInputs:
    """Everything the scorer may look at for one token."""

    chain_supported: bool
    security: SecuritySignals | None = None
    security_error: str | None = None
    rugpull: RugpullSignals | None = None
    url_risk: UrlRiskSignals | None = None


def hard_evidence(inputs: RiskInputs) -> list[str]:
    """Cross-domain findings that make a token risky whatever its score."""

    factors = []
    if inputs.url_risk is not None and inputs.url_risk.is_phishing:
        factors.append(PHISHING_FACTOR)
    if inputs.rugpull is not None and inputs.rugpull.is_rugpull_risk:
        factors.append(RUGPULL_FACTOR)
    return factors


def limitation_factor(security_error: str | None) -> str | None:
    """Factor for a provider refusal recorded on the security job, if any."""

    if not security_error:
        return None
    if _INVALID_ADDRESS_ERROR.match(security_error):
        return INVALID_ADDRESS_FACTOR
    match = _LIMITED_ERROR.match(security_error)
    if match is None:
        return None
    code = match.group(1)
    return f"Provider Limited (code {code})" if code else "Provider Limited"


def _dapp_penalty(level: str | None) -> tuple[int, str] | None:
    if not level:
        return None
    return DAPP_PENALTIES.get(level.strip().lower())


def _graded(signals: SecuritySignals, inputs: RiskInputs, evidence: list[str]) -> ScoreResult:
    score = 100
    factors: list[str] = []
    for deductions, points in SEVERITY_POINTS:
        for attribute, factor in deductions:
            if getattr(signals, attribute):
                score -= points
                factors.append(factor)
    penalty = _dapp_penalty(inputs.url_risk.dapp_risk_level if inputs.url_risk else None)
    if penalty is not None:
        score -= penalty[0]
        factors.append(penalty[1])
    factors.extend(evidence)
    score = int(round(max(0, min(100, score))))
    return ScoreResult(
        safety_score=score,
        is_security_risk=score < RISK_THRESHOLD or bool(evidence),
        risk_factors=tuple(factors),
        checks_state=ChecksState.COMPLETE,
    )


def is_provider_unsupported(security_error: str | None) -> bool:
    """The provider itself rejected the chain; the job will not be retried."""

    return bool(security_error) and _UNSUPPORTED_ERROR.match(security_error) is not None


def assess_risk(inputs: RiskInputs) -> ScoreResult:
    if not inputs.chain_supported:
        return ScoreResult(None, False, (UNSUPPORTED_FACTOR,), ChecksState.UNSUPPORTED)

    evidence = hard_evidence(inputs)
    signals = inputs.security

    if signals is not None and signals.has_usable_fields:
        critical = critical_reasons(signals)
        if critical:
            return ScoreResult(0, True, tuple(critical + evidence), ChecksState.COMPLETE)
        return _graded(signals, inputs, evidence)

    if signals is None and is_provider_unsupported(inputs.security_error):
        return ScoreResult(None, bool(evidence), (UNSUPPORTED_FACTOR, *evidence), ChecksState.UNSUPPORTED)

    limitation = limitation_factor(inputs.security_error)
    if signals is not None or limitation is not None:
        factor = UNAVAILABLE_FACTOR if limitation is None else limitation
        return ScoreResult(None, bool(evidence), (factor, *evidence), ChecksState.LIMITED)

    return ScoreResult(None, bool(evidence), tuple(evidence), ChecksState.PENDING)


__all__ = [
    "ChecksState",
    "INVALID_ADDRESS_FACTOR",
    "PHISHING_FACTOR",
    "RISK_THRESHOLD",
    "RUGPULL_FACTOR",
    "RiskInputs",
    "ScoreResult",
    "UNAVAILABLE_FACTOR",
    "UNSUPPORTED_FACTOR",
    "assess_risk",
    "hard_evidence",
    "is_provider_unsupported",
    "limitation_factor",
]
