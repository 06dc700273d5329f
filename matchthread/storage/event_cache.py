"""Tracked event snapshot with atomic writes to data/event.yaml."""

import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import yaml
from pydantic import BaseModel

from matchthread.lifecycle.models import Event

logger = logging.getLogger(__name__)


class CachedEvent(BaseModel):
    """Last fetched event and when it was fetched."""

    event: Event
    refreshed_at: datetime

    def age(self, now: datetime | None = None) -> timedelta:
        now = now or datetime.now(timezone.utc)
        return now - self.refreshed_at


class EventCache:
    def __init__(self, path: Path, refresh_hours: float = 24.0):
        self.path = Path(path)
        self.refresh_interval = timedelta(hours=refresh_hours)

    def load(self) -> CachedEvent | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw_data = yaml.safe_load(f)
            if not raw_data:
                logger.warning(f"Empty event cache: {self.path}")
                return None
            cached = CachedEvent(**raw_data)
            logger.debug(f"Loaded cached event {cached.event.key} from {self.path}")
            return cached
        except yaml.YAMLError as e:
            logger.error(f"Corrupted YAML in event cache, ignoring it: {e}")
            return None
        except Exception as e:
            logger.error(f"Failed to load event cache, ignoring it: {e}")
            return None

    def save(self, event: Event, refreshed_at: datetime | None = None) -> CachedEvent:
        """Atomically persist the event snapshot."""
        cached = CachedEvent(
            event=event, refreshed_at=refreshed_at or datetime.now(timezone.utc)
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)

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
                yaml.dump(
                    cached.model_dump(mode="json"),
                    temp_file,
                    default_flow_style=False,
                    allow_unicode=True,
                    sort_keys=False,
                )
            os.replace(temp_path, self.path)
            logger.debug(f"Saved event {event.key} to {self.path}")
        except Exception as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            logger.error(f"Failed to save event cache: {e}")
            raise
        return cached

    def needs_refresh(self, now: datetime | None = None) -> bool:
        cached = self.load()
        if cached is None:
            return True
        return cached.age(now) >= self.refresh_interval

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
