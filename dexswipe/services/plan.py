"""Subscription tier configuration.

The raw PlanSettings section is clamped exactly once, at process start, into an
immutable PlanConfig that is handed to the budget governor, workers and feed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

from config.settings import PlanSettings

PlanTier = Literal["FREE", "PRO"]


@dataclass(frozen=True, slots=True)
class PlanConfig:
    """Per-run limits derived from the tier."""

    tier: PlanTier
    cu_budget_per_run: int
    cache_ttl_hours: int
    daily_max_scans: int | None
    allow_live_fetch_in_request_path: bool
    min_liquidity_usd: float
    min_volume_24h_usd: float


def parse_tier(raw: str | None) -> PlanTier:
    if (raw or "").strip().upper() == "PRO":
        return "PRO"
    return "FREE"


def clamp_int(value: int | None, default: int, low: int, high: int) -> int:
    if value is None:
        value = default
    return max(low, min(high, int(value)))


def clamp_float(value: float | None, default: float, low: float, high: float) -> float:
    if value is None or not math.isfinite(value):
        value = default
    return max(low, min(high, float(value)))


def load_plan_config(raw: PlanSettings) -> PlanConfig:
    """Clamp every numeric knob into the tier's documented range."""

    tier = parse_tier(raw.tier)
    if tier == "PRO":
        return PlanConfig(
            tier=tier,
            cu_budget_per_run=clamp_int(raw.cu_budget_per_run, 3500, 3000, 4000),
            cache_ttl_hours=clamp_int(raw.cache_ttl_hours, 6, 1, 168),
            daily_max_scans=None,
            allow_live_fetch_in_request_path=True,
            min_liquidity_usd=clamp_float(raw.min_liquidity_usd, 2_000.0, 0.0, 1e12),
            min_volume_24h_usd=clamp_float(raw.min_volume_24h_usd, 5_000.0, 0.0, 1e12),
        )
    # FREE keeps the monthly CU allowance safe: 100 CU per run, one rescan a day.
    return PlanConfig(
        tier=tier,
        cu_budget_per_run=clamp_int(raw.cu_budget_per_run, 100, 1, 100),
        cache_ttl_hours=clamp_int(raw.cache_ttl_hours, 24, 1, 168),
        daily_max_scans=clamp_int(raw.daily_max_scans, 150, 0, 150),
        allow_live_fetch_in_request_path=False,
        min_liquidity_usd=clamp_float(raw.min_liquidity_usd, 10_000.0, 0.0, 1e12),
        min_volume_24h_usd=clamp_float(raw.min_volume_24h_usd, 50_000.0, 0.0, 1e12),
    )


__all__ = ["PlanConfig", "PlanTier", "load_plan_config", "parse_tier"]
