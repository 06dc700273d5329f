"""Data model for the fixture lifecycle: events, stages, flags and status."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Stage(str, Enum):
    """Lifecycle point that gets its own announcement."""

    PRE_EVENT = "pre_event"
    LIVE_EVENT = "live_event"
    POST_EVENT = "post_event"

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]


_STAGE_LABELS = {
    Stage.PRE_EVENT: "Pre-match announcement",
    Stage.LIVE_EVENT: "Match announcement",
    Stage.POST_EVENT: "Post-match announcement",
}


class StatusCategory(str, Enum):
    """Classified live status of an event."""

    PRE_START = "pre-start"
    IN_PLAY = "in-play"
    FINISHED_NORMAL = "finished-normal"
    FINISHED_IRREGULAR = "finished-irregular"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (StatusCategory.FINISHED_NORMAL, StatusCategory.FINISHED_IRREGULAR)


class StageState(str, Enum):
    """States of a single stage scheduler."""

    IDLE = "idle"
    WAITING = "waiting"
    READY = "ready"
    ASSEMBLING = "assembling"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


# ============================================================================
# Event
# ============================================================================


class Team(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str


class Competition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str = ""
    season: int | None = None
    round: str = ""


class Venue(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    city: str = ""


class Event(BaseModel):
    """A tracked fixture.

    Only `event_id` and `start` drive scheduling; the descriptive attributes
    are consumed by the content assembler.
    """

    model_config = ConfigDict(frozen=True)

    event_id: int | str
    start: datetime
    home: Team
    away: Team
    competition: Competition = Field(default_factory=Competition)
    venue: Venue | None = None
    referee: str | None = None

    @field_validator("start", mode="after")
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        """Store the start instant as tz-aware UTC (naive values are UTC)."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @property
    def key(self) -> str:
        """Ledger key for this event."""
        return str(self.event_id)

    @property
    def matchup(self) -> str:
        return f"{self.home.name} vs {self.away.name}"


# ============================================================================
# Ledger record
# ============================================================================


class StageFlags(BaseModel):
    """Published flags for one event, owned by the idempotency ledger."""

    pre_event: bool = False
    live_event: bool = False
    post_event: bool = False

    def is_set(self, stage: Stage) -> bool:
        return bool(getattr(self, stage.value))

    def with_stage(self, stage: Stage) -> "StageFlags":
        return self.model_copy(update={stage.value: True})

    @property
    def all_set(self) -> bool:
        return all(self.is_set(stage) for stage in Stage)


# ============================================================================
# Status and content
# ============================================================================


class StatusReading(BaseModel):
    """One observation of the status oracle."""

    raw: str | None = None
    category: StatusCategory = StatusCategory.UNKNOWN
    error: bool = False
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StageContent(BaseModel):
    """Title and body produced for a stage announcement."""

    title: str
    body: str
    complete: bool = True
    degraded: bool = False


class PublishResult(BaseModel):
    """Outcome of one announcement submission (all-or-nothing)."""

    success: bool
    reference: str | None = None
    error: str | None = None
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        if self.success:
            return f"Published ({self.reference or 'no reference'})"
        return f"Publish failed: {self.error}"
