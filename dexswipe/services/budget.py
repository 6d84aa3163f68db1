"""Compute-unit budget per run and scan cap per UTC day."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Mapping

from loguru import logger
from sqlmodel.ext.asyncio.session import AsyncSession

from dexswipe.models.base import utcnow
from dexswipe.repositories import get_scan_count, increment_scan_count
from .plan import PlanConfig

CU_BUDGET_EXHAUSTED = "cu_budget_exhausted"
DAILY_SCAN_CAP_REACHED = "daily_scan_cap_reached"


class BudgetExceededError(RuntimeError):
    """A charge was attempted without checking ``can_afford`` first."""


@dataclass(frozen=True, slots=True)
class CostTable:
    """CU weight per provider operation, optionally specialised per chain family.

    Keys are ``"operation:family"`` or plain ``"operation"``; the family-specific key
    wins. Unknown operations cost ``default``.
    """

    weights: Mapping[str, int]
    default: int = 1

    def cost(self, operation: str, family: str | None = None) -> int:
        if family is not None:
            specific = self.weights.get(f"{operation}:{family}")
            if specific is not None:
                return max(int(specific), 0)
        return max(int(self.weights.get(operation, self.default)), 0)


@dataclass(slots=True)
class RunLedger:
    budget: int
    cu_used: int = 0
    exhausted: bool = False

    @property
    def remaining(self) -> int:
        return max(self.budget - self.cu_used, 0)


@dataclass(slots=True)
class DailyLedger:
    stage: str
    day: str
    scans: int
    limit: int | None

    def can_scan_today(self) -> bool:
        return self.limit is None or self.scans < self.limit

    def reserve(self) -> bool:
        """Claim one scan slot before any await, so concurrent tasks cannot overshoot."""

        if not self.can_scan_today():
            return False
        self.scans += 1
        return True


def utc_day(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


def next_utc_midnight(now: datetime) -> datetime:
    today = now.astimezone(timezone.utc).date()
    return datetime.combine(today + timedelta(days=1), time.min, tzinfo=timezone.utc)


class BudgetGovernor:
    """Gatekeeper in front of every paid provider call."""

    def __init__(self, plan: PlanConfig, costs: CostTable) -> None:
        self.plan = plan
        self.costs = costs

    def start_run(self, budget: int | None = None) -> RunLedger:
        return RunLedger(budget=self.plan.cu_budget_per_run if budget is None else budget)

    def estimate_cost(self, operation: str, family: str | None = None) -> int:
        return self.costs.cost(operation, family)

    @staticmethod
    def can_afford(ledger: RunLedger, cost: int) -> bool:
        return not ledger.exhausted and ledger.cu_used + cost <= ledger.budget

    def charge(self, ledger: RunLedger, cost: int) -> None:
        if not self.can_afford(ledger, cost):
            raise BudgetExceededError(
                f"charge of {cost} CU exceeds budget ({ledger.cu_used}/{ledger.budget})"
            )
        ledger.cu_used += cost

    @staticmethod
    def exhaust(ledger: RunLedger) -> None:
        if not ledger.exhausted:
            ledger.exhausted = True
            logger.info(
                "CU budget exhausted: {used}/{budget}", used=ledger.cu_used, budget=ledger.budget
            )

    async def open_daily_ledger(
        self,
        session: AsyncSession,
        stage: str,
        now: datetime | None = None,
    ) -> DailyLedger:
        day = utc_day(now or utcnow())
        scans = await get_scan_count(session, stage, day)
        return DailyLedger(stage=stage, day=day, scans=scans, limit=self.plan.daily_max_scans)

    @staticmethod
    async def record_scan(session: AsyncSession, ledger: DailyLedger, count: int = 1) -> None:
        stored = await increment_scan_count(session, ledger.stage, ledger.day, by=count)
        ledger.scans = max(ledger.scans, stored)


__all__ = [
    "BudgetExceededError",
    "BudgetGovernor",
    "CU_BUDGET_EXHAUSTED",
    "CostTable",
    "DAILY_SCAN_CAP_REACHED",
    "DailyLedger",
    "RunLedger",
    "next_utc_midnight",
    "utc_day",
]
