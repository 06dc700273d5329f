"""Storage layer for matchthread.

This package provides:
- The idempotency ledger and its stores (memory, YAML file, Redis)
- The tracked event cache (data/event.yaml)

File stores write through a temp file and an atomic rename so a crash
mid-write leaves the previous contents intact.
"""

from .event_cache import CachedEvent, EventCache
from .file_store import FileLedgerStore
from .ledger import IdempotencyLedger, LedgerStore, MemoryLedgerStore
from .redis_store import RedisLedgerStore

__all__ = [
    # Ledger
    "IdempotencyLedger",
    "LedgerStore",
    "MemoryLedgerStore",
    "FileLedgerStore",
    "RedisLedgerStore",
    # Event cache
    "CachedEvent",
    "EventCache",
]
