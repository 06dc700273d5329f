"""Configuration management using Pydantic Settings."""

import logging
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from matchthread.services.football.config import FootballConfig

logger = logging.getLogger(__name__)


class TrackingConfig(BaseModel):
    """Which fixture to follow and how to display it."""

    team_id: int = 42  # Arsenal
    season: int = 2025
    fixture_id: int | None = None  # Pin a fixture instead of "next for team"
    refresh_hours: float = 24.0
    refresh_interval_minutes: int = 60  # Service loop refresh job
    display_timezone: str = "Europe/London"


class TimingConfig(BaseModel):
    """Stage offsets relative to kickoff, in minutes."""

    pre_event_offset_minutes: int = 24 * 60
    live_event_offset_minutes: int = 15
    typical_duration_minutes: int = 120
    early_grace_seconds: int = 0

    @property
    def pre_offset(self) -> timedelta:
        return timedelta(minutes=self.pre_event_offset_minutes)

    @property
    def live_offset(self) -> timedelta:
        return timedelta(minutes=self.live_event_offset_minutes)

    @property
    def typical_duration(self) -> timedelta:
        return timedelta(minutes=self.typical_duration_minutes)

    @property
    def early_grace(self) -> timedelta:
        return timedelta(seconds=self.early_grace_seconds)


class PollingConfig(BaseModel):
    """Post-event status polling."""

    interval_seconds: int = 120
    error_threshold: int = 5
    pre_start_threshold: int = 30
    throttle_factor: float = 5.0
    max_duration_hours: float = 4.0


class AssemblyConfig(BaseModel):
    """Content assembly retries."""

    max_attempts: int = 3
    backoff_seconds: list[float] = Field(default_factory=lambda: [10.0, 20.0, 30.0])


class LedgerConfig(BaseModel):
    """Idempotency ledger backend."""

    backend: Literal["file", "redis"] = "file"
    file_name: str = "ledger.yaml"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "matchthread:ledger"
    lock_timeout_seconds: float = 900.0


class PublishingConfig(BaseModel):
    """Where announcements go."""

    dry_run: bool = False
    backend: Literal["telegram", "log"] = "telegram"
    disable_preview: bool = True


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")

    # API Keys
    football_api_key: str = ""
    logfire_token: str = ""

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # Nested configuration sections
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    assembly: AssemblyConfig = Field(default_factory=AssemblyConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    publishing: PublishingConfig = Field(default_factory=PublishingConfig)
    football: FootballConfig = Field(default_factory=FootballConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / self.ledger.file_name

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m matchthread init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                logger.warning(f"Empty config file: {config_path}")
                return

            for section_name in [
                "tracking",
                "timing",
                "polling",
                "assembly",
                "ledger",
                "publishing",
                "football",
            ]:
                if section_name in yaml_config:
                    section = getattr(self, section_name)
                    yaml_section = yaml_config[section_name] or {}

                    section_dict = section.model_dump()
                    section_dict.update(yaml_section)

                    new_section = section.__class__(**section_dict)
                    setattr(self, section_name, new_section)

            logger.info(f"Loaded configuration from {config_path}")

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
