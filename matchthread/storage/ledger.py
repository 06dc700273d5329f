"""Idempotency ledger: which stages of which events have been published.

The ledger is the single authority on publication. A flag, once set, is
never cleared by the scheduler. Read failures surface as `LedgerError`
instead of being guessed in either direction.
"""

import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import ContextManager, Iterator, Protocol

from matchthread.lifecycle.exceptions import LedgerError
from matchthread.lifecycle.models import Stage, StageFlags

logger = logging.getLogger(__name__)


class LedgerStore(Protocol):
    """Durable key-value storage behind the ledger."""

    def get(self, event_id: str) -> StageFlags: ...

    def put(self, event_id: str, flags: StageFlags) -> None: ...

    def mark(self, event_id: str, stage: Stage) -> bool:
        """Atomically set one flag. True if this call changed it."""
        ...

    def lock(self, event_id: str, stage: Stage) -> ContextManager[bool]:
        """Non-blocking single-owner lock; yields whether it was acquired."""
        ...


class MemoryLedgerStore:
    """Process-local store, used for tests and dry runs."""

    def __init__(self, initial: dict[str, StageFlags] | None = None):
        self._records: dict[str, StageFlags] = dict(initial or {})
        self._guard = threading.Lock()
        self._owners: dict[tuple[str, Stage], threading.Lock] = {}

    @classmethod
    def seeded_from(cls, store: LedgerStore, event_id: str) -> "MemoryLedgerStore":
        """Copy one event's flags from another store; writes stay in memory."""
        return cls({event_id: store.get(event_id)})

    def get(self, event_id: str) -> StageFlags:
        with self._guard:
            return self._records.get(event_id, StageFlags())

    def put(self, event_id: str, flags: StageFlags) -> None:
        with self._guard:
            current = self._records.get(event_id, StageFlags())
            for stage in Stage:
                if flags.is_set(stage):
                    current = current.with_stage(stage)
            self._records[event_id] = current

    def mark(self, event_id: str, stage: Stage) -> bool:
        with self._guard:
            flags = self._records.get(event_id, StageFlags())
            if flags.is_set(stage):
                return False
            self._records[event_id] = flags.with_stage(stage)
            return True

    @contextmanager
    def lock(self, event_id: str, stage: Stage) -> Iterator[bool]:
        with self._guard:
            owner = self._owners.setdefault((event_id, stage), threading.Lock())
        acquired = owner.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                owner.release()


class IdempotencyLedger:
    """Per-(event, stage) publication record over a `LedgerStore`."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def flags(self, event_id: int | str) -> StageFlags:
        key = str(event_id)
        try:
            return self.store.get(key)
        except LedgerError:
            raise
        except Exception as e:
            logger.error(f"Failed to read ledger for event {key}: {e}")
            raise LedgerError(f"Ledger read failed for event {key}: {e}") from e

    def is_published(self, event_id: int | str, stage: Stage) -> bool:
        return self.flags(event_id).is_set(stage)

    def mark_published(self, event_id: int | str, stage: Stage) -> bool:
        """Durably record publication. Returns False if it was already recorded."""
        key = str(event_id)
        try:
            changed = self.store.mark(key, stage)
        except LedgerError:
            raise
        except Exception as e:
            logger.error(f"Failed to record {stage.value} for event {key}: {e}")
            raise LedgerError(f"Ledger write failed for event {key}: {e}") from e

        if changed:
            logger.info(f"Ledger: event {key} {stage.value} marked published")
        else:
            logger.warning(f"Ledger: event {key} {stage.value} was already published")
        return changed

    @contextmanager
    def claim(self, event_id: int | str, stage: Stage) -> Iterator[bool]:
        """Hold single-owner access to one (event, stage) pair."""
        key = str(event_id)
        with ExitStack() as stack:
            try:
                acquired = stack.enter_context(self.store.lock(key, stage))
            except LedgerError:
                raise
            except Exception as e:
                raise LedgerError(f"Ledger lock failed for event {key}: {e}") from e
            yield acquired
