"""Durable job tables, one per pipeline stage."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from .base import TimeStampedModel, utcnow


class JobStatus(str):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueJobBase(TimeStampedModel, table=False):
    """Columns shared by every stage queue."""

    id: Optional[int] = Field(default=None, primary_key=True)
    chain_id: str = Field(max_length=64, index=True)
    token_address: str = Field(max_length=128)
    status: str = Field(default=JobStatus.PENDING, max_length=16, index=True)
    attempts: int = Field(default=0, nullable=False)
    locked_at: Optional[datetime] = Field(default=None)
    last_error: Optional[str] = Field(default=None)
    next_run_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)
    last_run_at: Optional[datetime] = Field(default=None)

    @property
    def key(self) -> tuple[str, str]:
        return self.chain_id, self.token_address


class MarketUpdateJob(QueueJobBase, table=True):
    __tablename__ = "market_update_queue"
    __table_args__ = (UniqueConstraint("chain_id", "token_address"),)


class SecurityScanJob(QueueJobBase, table=True):
    __tablename__ = "token_security_scan_queue"
    __table_args__ = (UniqueConstraint("chain_id", "token_address"),)


class QualityScanJob(QueueJobBase, table=True):
    __tablename__ = "token_quality_scan_queue"
    __table_args__ = (UniqueConstraint("chain_id", "token_address"),)


class ScanCounter(TimeStampedModel, table=True):
    """Calendar-day (UTC) scan counter per stage."""

    __tablename__ = "scan_counters"
    __table_args__ = (UniqueConstraint("stage", "day"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    stage: str = Field(max_length=32)
    day: str = Field(max_length=10, description="YYYY-MM-DD (UTC)")
    count: int = Field(default=0, nullable=False)


__all__ = [
    "JobStatus",
    "MarketUpdateJob",
    "QualityScanJob",
    "QueueJobBase",
    "ScanCounter",
    "SecurityScanJob",
]
