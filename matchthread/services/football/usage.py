"""Daily API call counter persisted to data/api_usage.yaml."""

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import yaml
from filelock import FileLock
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ApiCall(BaseModel):
    timestamp: datetime
    endpoint: str
    purpose: str = ""


class DailyUsage(BaseModel):
    date: str  # ISO date (YYYY-MM-DD), UTC
    calls: int = 0
    details: list[ApiCall] = Field(default_factory=list)


class ApiUsageTracker:
    """Counts provider calls per UTC day against a daily quota."""

    WARNING_RATIO = 0.80
    CRITICAL_RATIO = 0.95

    def __init__(self, path: Path, daily_limit: int = 100):
        self.path = Path(path)
        self.daily_limit = daily_limit
        self._lock = FileLock(f"{self.path}.lock", timeout=10)

    @staticmethod
    def _today() -> str:
        return datetime.now(timezone.utc).date().isoformat()

    def _load(self) -> DailyUsage:
        today = self._today()
        if not self.path.exists():
            return DailyUsage(date=today)
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            usage = DailyUsage(**raw)
        except Exception as e:
            logger.warning(f"Unreadable usage file {self.path}, starting fresh: {e}")
            return DailyUsage(date=today)
        if usage.date != today:
            return DailyUsage(date=today)
        return usage

    def _save(self, usage: DailyUsage) -> None:
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
                    usage.model_dump(mode="json"),
                    temp_file,
                    default_flow_style=False,
                    sort_keys=False,
                )
            os.replace(temp_path, self.path)
        except Exception as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            logger.error(f"Failed to save API usage: {e}")

    def record(self, endpoint: str, purpose: str = "") -> int:
        """Count one call and return today's total."""
        with self._lock:
            usage = self._load()
            usage.calls += 1
            usage.details.append(
                ApiCall(
                    timestamp=datetime.now(timezone.utc),
                    endpoint=endpoint,
                    purpose=purpose,
                )
            )
            self._save(usage)

        calls = usage.calls
        if calls >= self.daily_limit * self.CRITICAL_RATIO:
            logger.error(f"API limit critical: {calls}/{self.daily_limit} calls used today")
        elif calls >= self.daily_limit * self.WARNING_RATIO:
            logger.warning(f"API limit warning: {calls}/{self.daily_limit} calls used today")
        else:
            logger.debug(f"API calls today: {calls}/{self.daily_limit}")
        return calls

    def today(self) -> DailyUsage:
        with self._lock:
            return self._load()

    def count(self) -> int:
        return self.today().calls

    def remaining(self) -> int:
        return max(self.daily_limit - self.count(), 0)

    def can_call(self) -> bool:
        return self.count() < self.daily_limit
