"""SQLModel entities for DexSwipe."""

from .cache import RugpullCache, TokenSecurityCache, UrlRiskCache  # noqa: F401
from .queue import (  # noqa: F401
    JobStatus,
    MarketUpdateJob,
    QualityScanJob,
    QueueJobBase,
    ScanCounter,
    SecurityScanJob,
)
from .token import SeenToken, Token, WishlistItem  # noqa: F401

__all__ = [
    "JobStatus",
    "MarketUpdateJob",
    "QualityScanJob",
    "QueueJobBase",
    "RugpullCache",
    "ScanCounter",
    "SecurityScanJob",
    "SeenToken",
    "Token",
    "TokenSecurityCache",
    "UrlRiskCache",
    "WishlistItem",
]
