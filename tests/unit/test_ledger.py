"""Tests for the idempotency ledger and its stores."""

from contextlib import contextmanager

import pytest
import yaml

from matchthread.lifecycle import LedgerError, Stage, StageFlags
from matchthread.storage import (
    FileLedgerStore,
    IdempotencyLedger,
    MemoryLedgerStore,
    RedisLedgerStore,
)


def test_memory_mark_is_compare_and_set() -> None:
    ledger = IdempotencyLedger(MemoryLedgerStore())

    assert not ledger.is_published(7, Stage.PRE_EVENT)
    assert ledger.mark_published(7, Stage.PRE_EVENT) is True
    assert ledger.mark_published(7, Stage.PRE_EVENT) is False
    assert ledger.is_published("7", Stage.PRE_EVENT)
    assert not ledger.is_published(7, Stage.LIVE_EVENT)


def test_put_never_clears_a_flag() -> None:
    store = MemoryLedgerStore()
    store.mark("7", Stage.PRE_EVENT)

    store.put("7", StageFlags(live_event=True))

    flags = store.get("7")
    assert flags.pre_event and flags.live_event and not flags.post_event


def test_memory_lock_is_single_owner() -> None:
    store = MemoryLedgerStore()
    with store.lock("7", Stage.POST_EVENT) as first:
        with store.lock("7", Stage.POST_EVENT) as second:
            assert first is True
            assert second is False
        with store.lock("7", Stage.PRE_EVENT) as other_stage:
            assert other_stage is True
    with store.lock("7", Stage.POST_EVENT) as again:
        assert again is True


def test_seeded_store_does_not_write_back(tmp_path) -> None:
    real = FileLedgerStore(tmp_path / "ledger.yaml")
    real.mark("7", Stage.PRE_EVENT)

    copy = IdempotencyLedger(MemoryLedgerStore.seeded_from(real, "7"))
    assert copy.is_published(7, Stage.PRE_EVENT)
    copy.mark_published(7, Stage.LIVE_EVENT)

    assert not real.get("7").live_event


# ============================================================================
# File store
# ============================================================================


def test_file_store_persists_across_instances(tmp_path) -> None:
    path = tmp_path / "ledger.yaml"
    IdempotencyLedger(FileLedgerStore(path)).mark_published(1208021, Stage.LIVE_EVENT)

    reopened = IdempotencyLedger(FileLedgerStore(path))
    assert reopened.is_published(1208021, Stage.LIVE_EVENT)
    assert reopened.flags(1208021) == StageFlags(live_event=True)

    with open(path, encoding="utf-8") as f:
        assert yaml.safe_load(f)["1208021"]["live_event"] is True


def test_file_store_missing_file_reads_empty(tmp_path) -> None:
    store = FileLedgerStore(tmp_path / "nested" / "ledger.yaml")
    assert store.get("1") == StageFlags()
    assert store.all() == {}


@pytest.mark.parametrize("contents", ["pre_event: [unclosed", "- just\n- a list\n", "1: {pre_event: maybe}\n"])
def test_unreadable_ledger_raises_instead_of_guessing(tmp_path, contents) -> None:
    path = tmp_path / "ledger.yaml"
    path.write_text(contents)
    ledger = IdempotencyLedger(FileLedgerStore(path))

    with pytest.raises(LedgerError):
        ledger.is_published(1, Stage.PRE_EVENT)
    with pytest.raises(LedgerError):
        ledger.mark_published(1, Stage.PRE_EVENT)


def test_file_lock_is_exclusive_between_store_instances(tmp_path) -> None:
    path = tmp_path / "ledger.yaml"
    a = IdempotencyLedger(FileLedgerStore(path))
    b = IdempotencyLedger(FileLedgerStore(path))

    with a.claim(1, Stage.POST_EVENT) as owned_a:
        with b.claim(1, Stage.POST_EVENT) as owned_b:
            assert owned_a is True
            assert owned_b is False
    with b.claim(1, Stage.POST_EVENT) as owned_b:
        assert owned_b is True


class BrokenStore(MemoryLedgerStore):
    def mark(self, event_id, stage):
        raise OSError("disk full")

    @contextmanager
    def lock(self, event_id, stage):
        raise ConnectionError("lock service down")
        yield


def test_store_failures_surface_as_ledger_errors() -> None:
    ledger = IdempotencyLedger(BrokenStore())

    with pytest.raises(LedgerError, match="disk full"):
        ledger.mark_published(1, Stage.PRE_EVENT)
    with pytest.raises(LedgerError, match="lock service down"):
        with ledger.claim(1, Stage.PRE_EVENT):
            pass


# ============================================================================
# Redis store
# ============================================================================


class FakeRedisLock:
    held: set = set()

    def __init__(self, name):
        self.name = name

    def acquire(self, blocking=True):
        if self.name in FakeRedisLock.held:
            return False
        FakeRedisLock.held.add(self.name)
        return True

    def release(self):
        FakeRedisLock.held.discard(self.name)


class FakeRedis:
    """Just the hash and lock commands the ledger uses."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update(mapping)

    def hsetnx(self, key, field, value):
        fields = self.hashes.setdefault(key, {})
        if field in fields:
            return 0
        fields[field] = value
        return 1

    def lock(self, name, timeout=None):
        return FakeRedisLock(name)


def test_redis_store_marks_with_hsetnx() -> None:
    client = FakeRedis()
    ledger = IdempotencyLedger(RedisLedgerStore(client, key_prefix="test"))

    assert ledger.mark_published(5, Stage.POST_EVENT) is True
    assert ledger.mark_published(5, Stage.POST_EVENT) is False
    assert client.hashes["test:5"] == {"post_event": "1"}
    assert ledger.flags(5) == StageFlags(post_event=True)


def test_redis_store_lock_is_single_owner() -> None:
    FakeRedisLock.held = set()
    store = RedisLedgerStore(FakeRedis(), key_prefix="test")
    with store.lock("5", Stage.LIVE_EVENT) as first:
        with store.lock("5", Stage.LIVE_EVENT) as second:
            assert (first, second) == (True, False)
    assert FakeRedisLock.held == set()
