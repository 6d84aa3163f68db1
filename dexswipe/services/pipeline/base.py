"""Pieces shared by the pipeline workers."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, TypeVar

from loguru import logger

from config.settings import QueueSettings, StageQueueSettings
from dexswipe.models import QueueJobBase
from dexswipe.repositories import BackoffPolicy, WorkQueue

JobT = TypeVar("JobT", bound=QueueJobBase)


class Outcome(str):
    COMPLETED = "completed"
    CACHED = "cached"
    FAILED = "failed"
    SUPPRESSED = "suppressed"
    DEFERRED = "deferred"
    LEASE_LOST = "lease_lost"


@dataclass(slots=True)
class JobOutcome:
    chain_id: str
    token_address: str
    outcome: str
    detail: str | None = None


@dataclass(slots=True)
class WorkerReport:
    """What one worker run did."""

    stage: str
    outcomes: list[JobOutcome] = field(default_factory=list)
    cu_used: int = 0
    budget_exhausted: bool = False
    daily_cap_reached: bool = False

    def add(self, job: QueueJobBase, outcome: str, detail: str | None = None) -> None:
        self.outcomes.append(JobOutcome(job.chain_id, job.token_address, outcome, detail))

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def counts(self) -> dict[str, int]:
        return dict(Counter(item.outcome for item in self.outcomes))

    def as_dict(self) -> dict[str, object]:
        return {
            "stage": self.stage,
            "processed": self.processed,
            "counts": self.counts,
            "cu_used": self.cu_used,
            "budget_exhausted": self.budget_exhausted,
            "daily_cap_reached": self.daily_cap_reached,
        }

    def log_summary(self) -> None:
        logger.info(
            "{stage}: processed {processed} job(s) {counts}, CU used {cu}, "
            "budget exhausted={exhausted}, daily cap={capped}",
            stage=self.stage,
            processed=self.processed,
            counts=self.counts,
            cu=self.cu_used,
            exhausted=self.budget_exhausted,
            capped=self.daily_cap_reached,
        )


def build_queue(model: type[JobT], stage: StageQueueSettings, cfg: QueueSettings) -> WorkQueue[JobT]:
    return WorkQueue(
        model,
        backoff=BackoffPolicy(
            base=timedelta(seconds=stage.backoff_base_sec),
            cap=timedelta(seconds=stage.backoff_cap_sec),
        ),
        lease_timeout=timedelta(minutes=cfg.lease_timeout_minutes),
        terminal_suppress=timedelta(days=cfg.terminal_suppress_days),
    )


def group_by_chain(jobs: Iterable[JobT]) -> dict[str, list[JobT]]:
    grouped: dict[str, list[JobT]] = {}
    for job in jobs:
        grouped.setdefault(job.chain_id, []).append(job)
    return grouped


__all__ = ["JobOutcome", "Outcome", "WorkerReport", "build_queue", "group_by_chain"]
