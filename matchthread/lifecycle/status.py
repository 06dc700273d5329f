"""Live status classification and polling.

The classifier is total: any raw value maps to exactly one category, with
`unknown` as the default, so the polling loop never stalls on a code it has
not seen before. The poller never raises for oracle failures; they are logged
and reported as `unknown` readings while the session throttles its cadence.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from .models import StatusCategory, StatusReading
from .timing import Clock, Sleep, utc_now

logger = logging.getLogger(__name__)


# API-Football short status codes
_STATUS_CODES: dict[str, StatusCategory] = {
    "TBD": StatusCategory.PRE_START,
    "NS": StatusCategory.PRE_START,
    "1H": StatusCategory.IN_PLAY,
    "HT": StatusCategory.IN_PLAY,
    "2H": StatusCategory.IN_PLAY,
    "ET": StatusCategory.IN_PLAY,
    "BT": StatusCategory.IN_PLAY,
    "P": StatusCategory.IN_PLAY,
    "LIVE": StatusCategory.IN_PLAY,
    "SUSP": StatusCategory.IN_PLAY,  # may resume
    "INT": StatusCategory.IN_PLAY,  # may resume
    "FT": StatusCategory.FINISHED_NORMAL,
    "AET": StatusCategory.FINISHED_NORMAL,
    "PEN": StatusCategory.FINISHED_NORMAL,
    "PST": StatusCategory.FINISHED_IRREGULAR,
    "CANC": StatusCategory.FINISHED_IRREGULAR,
    "ABD": StatusCategory.FINISHED_IRREGULAR,
    "AWD": StatusCategory.FINISHED_IRREGULAR,
    "WO": StatusCategory.FINISHED_IRREGULAR,
}


def classify_status(raw: Any) -> StatusCategory:
    """Map a raw provider status code to a category. Never raises."""
    if not isinstance(raw, str):
        return StatusCategory.UNKNOWN
    return _STATUS_CODES.get(raw.strip().upper(), StatusCategory.UNKNOWN)


class StatusSource(Protocol):
    """Status oracle consumed by the poller."""

    async def fetch_status(self, event_id: int | str) -> str | None: ...


@dataclass(frozen=True)
class PollingPolicy:
    interval_seconds: float = 120.0
    error_threshold: int = 5
    pre_start_threshold: int = 30
    throttle_factor: float = 5.0
    max_duration: timedelta = timedelta(hours=4)


@dataclass
class PollingSession:
    """In-memory state of one polling run. Never persisted."""

    event_id: str
    policy: PollingPolicy
    started_at: datetime
    category: StatusCategory = StatusCategory.UNKNOWN
    last_reading: StatusReading | None = None
    polls: int = 0
    consecutive_errors: int = 0
    consecutive_pre_start: int = 0
    next_poll_at: datetime | None = None
    closed: bool = False
    timed_out: bool = False
    history: list[StatusCategory] = field(default_factory=list)

    @property
    def throttled(self) -> bool:
        return (
            self.consecutive_errors >= self.policy.error_threshold
            or self.consecutive_pre_start >= self.policy.pre_start_threshold
        )

    @property
    def interval(self) -> float:
        """Seconds until the next poll."""
        if self.throttled:
            return self.policy.interval_seconds * self.policy.throttle_factor
        return self.policy.interval_seconds

    @property
    def terminal(self) -> bool:
        return self.category.is_terminal

    def elapsed(self, now: datetime) -> timedelta:
        return now - self.started_at

    def expired(self, now: datetime) -> bool:
        return self.elapsed(now) >= self.policy.max_duration

    def record(self, reading: StatusReading, now: datetime) -> None:
        """Fold a reading into the counters and schedule the next poll.

        Error readings leave the pre-start streak untouched, so a run of
        errors can never shrink the interval.
        """
        self.polls += 1
        self.last_reading = reading
        self.category = reading.category
        self.history.append(reading.category)

        if reading.error:
            self.consecutive_errors += 1
        else:
            self.consecutive_errors = 0
            if reading.category is StatusCategory.PRE_START:
                self.consecutive_pre_start += 1
            else:
                self.consecutive_pre_start = 0

        self.next_poll_at = now + timedelta(seconds=self.interval)


class StatusPoller:
    """Queries the status oracle and drives polling sessions."""

    def __init__(
        self,
        source: StatusSource,
        policy: PollingPolicy | None = None,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ):
        self.source = source
        self.policy = policy or PollingPolicy()
        self.clock = clock
        self.sleep = sleep

    async def poll(self, event_id: int | str) -> StatusReading:
        """Query and classify once; oracle failures become `unknown` readings."""
        try:
            raw = await self.source.fetch_status(event_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Status check failed for event {event_id}: {e}")
            return StatusReading(
                category=StatusCategory.UNKNOWN, error=True, observed_at=self.clock()
            )

        category = classify_status(raw)
        if category is StatusCategory.UNKNOWN:
            logger.warning(f"Unrecognized status {raw!r} for event {event_id}")
        else:
            logger.info(f"Event {event_id} status: {raw} ({category.value})")
        return StatusReading(raw=raw, category=category, observed_at=self.clock())

    def open_session(self, event_id: int | str) -> PollingSession:
        return PollingSession(
            event_id=str(event_id), policy=self.policy, started_at=self.clock()
        )

    async def _step(self, event_id: int | str, session: PollingSession) -> StatusReading:
        reading = await self.poll(event_id)
        previous_interval = session.interval
        session.record(reading, self.clock())
        if session.interval != previous_interval:
            logger.info(
                f"Polling interval for event {session.event_id}: "
                f"{previous_interval:.0f}s -> {session.interval:.0f}s "
                f"(errors={session.consecutive_errors}, "
                f"pre_start={session.consecutive_pre_start})"
            )
        return reading

    async def observe(self, event_id: int | str, session: PollingSession) -> StatusReading | None:
        """Single polling step for tick-driven hosts.

        Skips the query while the session's cadence says it is too early.
        Once the maximum duration is reached the next query is the final
        check and the session closes, terminal or not.
        """
        if session.closed:
            return None

        now = self.clock()
        if session.next_poll_at is not None and now < session.next_poll_at:
            logger.debug(
                f"Skipping status check for event {session.event_id} "
                f"until {session.next_poll_at.isoformat()}"
            )
            return None

        final = session.expired(now)
        reading = await self._step(event_id, session)
        if reading.category.is_terminal or final:
            self._close(session)
        return reading

    async def run_session(
        self, event_id: int | str, session: PollingSession | None = None
    ) -> PollingSession:
        """Poll until a terminal status or the maximum duration elapses."""
        session = session or self.open_session(event_id)
        logger.info(f"Starting status polling for event {session.event_id}")

        while not session.expired(self.clock()):
            reading = await self._step(event_id, session)
            if reading.category.is_terminal:
                self._close(session)
                return session
            await self.sleep(session.interval)

        logger.warning(
            f"Polling for event {session.event_id} reached "
            f"{self.policy.max_duration}; making final status check"
        )
        await self._step(event_id, session)
        self._close(session)
        return session

    def _close(self, session: PollingSession) -> None:
        session.closed = True
        session.timed_out = not session.terminal
        if session.timed_out:
            logger.warning(
                f"Polling for event {session.event_id} ended without a terminal "
                f"status (last: {session.category.value}); stage left for a re-run"
            )
        else:
            logger.info(
                f"Event {session.event_id} reached terminal status "
                f"{session.category.value} after {session.polls} polls"
            )
