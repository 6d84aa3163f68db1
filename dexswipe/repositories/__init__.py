"""Database repositories."""

from .cache_repo import CacheStore, PutOutcome, rugpull_cache, security_cache, url_cache
from .counter_repo import get_scan_count, increment_scan_count
from .queue_repo import BackoffPolicy, EnqueueResult, WorkQueue
from .token_repo import (
    FeedCursor,
    get_tokens,
    is_stale,
    mark_seen,
    rank_candidates,
    upsert_snapshots,
    upsert_stubs,
)
from .wishlist_repo import list_wishlist

__all__ = [
    "BackoffPolicy",
    "CacheStore",
    "EnqueueResult",
    "FeedCursor",
    "PutOutcome",
    "WorkQueue",
    "get_scan_count",
    "get_tokens",
    "increment_scan_count",
    "is_stale",
    "list_wishlist",
    "mark_seen",
    "rank_candidates",
    "rugpull_cache",
    "security_cache",
    "upsert_snapshots",
    "upsert_stubs",
    "url_cache",
]
