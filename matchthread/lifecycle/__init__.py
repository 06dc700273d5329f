"""Fixture lifecycle: stage timing, status polling and per-stage scheduling.

This package provides:
- Data model (events, stages, ledger flags, status readings)
- Stage target times and status classification
- One state machine per stage, driven by an orchestrator per event
"""

from .exceptions import (
    ContentUnavailableError,
    LedgerError,
    LifecycleError,
    PublishError,
)
from .models import (
    Competition,
    Event,
    PublishResult,
    Stage,
    StageContent,
    StageFlags,
    StageState,
    StatusCategory,
    StatusReading,
    Team,
    Venue,
)
from .orchestrator import LifecycleOrchestrator, StageOutcome, TickReport
from .scheduler import (
    AssemblyPolicy,
    ContentAssembler,
    Publisher,
    StageScheduler,
    TerminalStatusGuard,
    TimeGuard,
)
from .status import (
    PollingPolicy,
    PollingSession,
    StatusPoller,
    StatusSource,
    classify_status,
)
from .timing import StageTimeCalculator, utc_now

__all__ = [
    # Models
    "Competition",
    "Event",
    "PublishResult",
    "Stage",
    "StageContent",
    "StageFlags",
    "StageState",
    "StatusCategory",
    "StatusReading",
    "Team",
    "Venue",
    # Errors
    "LifecycleError",
    "LedgerError",
    "ContentUnavailableError",
    "PublishError",
    # Timing and status
    "StageTimeCalculator",
    "utc_now",
    "classify_status",
    "PollingPolicy",
    "PollingSession",
    "StatusPoller",
    "StatusSource",
    # Scheduling
    "AssemblyPolicy",
    "ContentAssembler",
    "Publisher",
    "StageScheduler",
    "TimeGuard",
    "TerminalStatusGuard",
    "LifecycleOrchestrator",
    "StageOutcome",
    "TickReport",
]
