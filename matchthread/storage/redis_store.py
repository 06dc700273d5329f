"""Ledger store backed by Redis.

One hash per event; each stage is a field written with HSETNX, which gives
the atomic compare-and-set `mark` needs when several instances share a
ledger. Owner locks use Redis locks with an expiry so a crashed holder does
not block a stage forever.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

import redis
from redis.exceptions import LockError

from matchthread.lifecycle.models import Stage, StageFlags

logger = logging.getLogger(__name__)


class RedisLedgerStore:
    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "matchthread:ledger",
        lock_timeout: float = 900.0,
    ):
        self.client = client
        self.key_prefix = key_prefix
        self.lock_timeout = lock_timeout

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisLedgerStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, event_id: str) -> str:
        return f"{self.key_prefix}:{event_id}"

    def get(self, event_id: str) -> StageFlags:
        data = self.client.hgetall(self._key(event_id))
        return StageFlags(**{stage.value: data.get(stage.value) == "1" for stage in Stage})

    def put(self, event_id: str, flags: StageFlags) -> None:
        """Merge flags into the record; a set flag is never cleared."""
        mapping = {stage.value: "1" for stage in Stage if flags.is_set(stage)}
        if mapping:
            self.client.hset(self._key(event_id), mapping=mapping)

    def mark(self, event_id: str, stage: Stage) -> bool:
        return bool(self.client.hsetnx(self._key(event_id), stage.value, "1"))

    @contextmanager
    def lock(self, event_id: str, stage: Stage) -> Iterator[bool]:
        owner = self.client.lock(
            f"{self.key_prefix}:lock:{event_id}:{stage.value}",
            timeout=self.lock_timeout,
        )
        acquired = owner.acquire(blocking=False)
        if not acquired:
            logger.info(f"Event {event_id} {stage.value} is owned by another instance")
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    owner.release()
                except LockError as e:
                    logger.warning(f"Lock for event {event_id} {stage.value} expired early: {e}")
