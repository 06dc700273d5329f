"""Ledger store backed by a local YAML file.

Every mutation is a read-modify-write under an inter-process file lock,
written through a temp file that is fsynced and atomically renamed over the
ledger, so a crash after `mark` returns cannot lose the record.
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import yaml
from filelock import FileLock, Timeout
from pydantic import ValidationError

from matchthread.lifecycle.exceptions import LedgerError
from matchthread.lifecycle.models import Stage, StageFlags

logger = logging.getLogger(__name__)


class FileLedgerStore:
    """YAML ledger: `{event_id: {pre_event: bool, live_event: bool, post_event: bool}}`."""

    def __init__(self, path: Path, lock_timeout: float = 10.0):
        self.path = Path(path)
        self.lock_dir = self.path.parent / "locks"
        self._file_lock = FileLock(f"{self.path}.lock", timeout=lock_timeout)

    # ------------------------------------------------------------------
    # Raw file access (callers hold the file lock)
    # ------------------------------------------------------------------

    def _read(self) -> dict[str, StageFlags]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Corrupted YAML in ledger file: {e}")
            raise LedgerError(f"Corrupted ledger file {self.path}: {e}") from e
        except OSError as e:
            logger.error(f"Failed to read ledger file: {e}")
            raise LedgerError(f"Cannot read ledger file {self.path}: {e}") from e

        if not raw:
            return {}
        if not isinstance(raw, dict):
            raise LedgerError(f"Ledger file {self.path} is not a mapping")

        try:
            return {str(key): StageFlags(**(value or {})) for key, value in raw.items()}
        except (TypeError, ValidationError) as e:
            raise LedgerError(f"Invalid record in ledger file {self.path}: {e}") from e

    def _write(self, records: dict[str, StageFlags]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {key: flags.model_dump() for key, flags in sorted(records.items())}

        temp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                dir=self.path.parent,
                delete=False,
                suffix=".yaml",
                encoding="utf-8",
            ) as temp_file:
                temp_path = Path(temp_file.name)
                yaml.dump(data, temp_file, default_flow_style=False, sort_keys=False)
                temp_file.flush()
                os.fsync(temp_file.fileno())

            os.replace(temp_path, self.path)
            self._fsync_dir()
            logger.debug(f"Saved ledger to {self.path}")

        except Exception as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            logger.error(f"Failed to save ledger: {e}")
            raise LedgerError(f"Cannot write ledger file {self.path}: {e}") from e

    def _fsync_dir(self) -> None:
        if os.name == "nt":
            return
        fd = os.open(self.path.parent, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    # ------------------------------------------------------------------
    # LedgerStore
    # ------------------------------------------------------------------

    def get(self, event_id: str) -> StageFlags:
        with self._file_lock:
            return self._read().get(event_id, StageFlags())

    def put(self, event_id: str, flags: StageFlags) -> None:
        """Merge flags into the record; a set flag is never cleared."""
        with self._file_lock:
            records = self._read()
            current = records.get(event_id, StageFlags())
            for stage in Stage:
                if flags.is_set(stage):
                    current = current.with_stage(stage)
            records[event_id] = current
            self._write(records)

    def mark(self, event_id: str, stage: Stage) -> bool:
        with self._file_lock:
            records = self._read()
            current = records.get(event_id, StageFlags())
            if current.is_set(stage):
                return False
            records[event_id] = current.with_stage(stage)
            self._write(records)
            return True

    def all(self) -> dict[str, StageFlags]:
        with self._file_lock:
            return self._read()

    @contextmanager
    def lock(self, event_id: str, stage: Stage) -> Iterator[bool]:
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        owner = FileLock(str(self.lock_dir / f"{event_id}.{stage.value}.lock"), timeout=0)
        try:
            owner.acquire()
        except Timeout:
            logger.info(f"Event {event_id} {stage.value} is owned by another process")
            yield False
            return

        try:
            yield True
        finally:
            owner.release()
