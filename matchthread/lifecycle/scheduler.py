"""Per-stage state machine.

    IDLE -> WAITING -> READY -> ASSEMBLING -> PUBLISHING -> DONE
                                     \\             \\
                                      +-> FAILED <---+   (recoverable)

All three stages share `StageScheduler`; what differs is the guard that
decides when WAITING becomes READY. Time-driven stages use `TimeGuard`, the
post-event stage uses `TerminalStatusGuard`, which owns the polling session.

The ledger is consulted before any timing or polling logic, and written only
after the publisher confirms success.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from .exceptions import ContentUnavailableError, LedgerError, PublishError
from .models import (
    Event,
    PublishResult,
    Stage,
    StageContent,
    StageState,
    StatusCategory,
    StatusReading,
)
from .status import PollingSession, StatusPoller
from .timing import Clock, Sleep, StageTimeCalculator, sleep_until, utc_now

logger = logging.getLogger(__name__)


class ContentAssembler(Protocol):
    async def assemble(
        self,
        event: Event,
        stage: Stage,
        *,
        irregular: bool = False,
        reading: StatusReading | None = None,
    ) -> StageContent | None:
        """Build the announcement; raise `ContentUnavailableError` if data is missing."""
        ...

    def placeholder(
        self,
        event: Event,
        stage: Stage,
        *,
        irregular: bool = False,
        reading: StatusReading | None = None,
    ) -> StageContent:
        """Degraded content built from the event alone."""
        ...


class Publisher(Protocol):
    async def publish(self, title: str, body: str) -> PublishResult: ...


class Ledger(Protocol):
    def is_published(self, event_id: int | str, stage: Stage) -> bool: ...

    def mark_published(self, event_id: int | str, stage: Stage) -> bool: ...

    def claim(self, event_id: int | str, stage: Stage): ...


@dataclass(frozen=True)
class AssemblyPolicy:
    max_attempts: int = 3
    backoff_seconds: tuple[float, ...] = (10.0, 20.0, 30.0)

    def delay(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        if not self.backoff_seconds:
            return 0.0
        return self.backoff_seconds[min(attempt, len(self.backoff_seconds)) - 1]


# ============================================================================
# Guards
# ============================================================================


class StageGuard(Protocol):
    def scheduled_time(self) -> datetime | None: ...

    def wake_time(self) -> datetime: ...

    def is_ready(self, now: datetime, poll_state: PollingSession | None) -> bool: ...

    async def observe(self, event_id: int | str, now: datetime) -> PollingSession | None: ...

    async def wait(self, event_id: int | str, clock: Clock, sleep: Sleep) -> PollingSession | None: ...


class TimeGuard:
    """Ready once the wall clock reaches the stage's target time."""

    def __init__(self, target: datetime, early_grace: timedelta = timedelta(0)):
        self.target = target
        self.early_grace = early_grace

    def scheduled_time(self) -> datetime | None:
        return self.target

    def wake_time(self) -> datetime:
        return self.target - self.early_grace

    def is_ready(self, now: datetime, poll_state: PollingSession | None = None) -> bool:
        return now >= self.wake_time()

    async def observe(self, event_id: int | str, now: datetime) -> PollingSession | None:
        return None

    async def wait(self, event_id: int | str, clock: Clock, sleep: Sleep) -> PollingSession | None:
        await sleep_until(self.wake_time(), clock, sleep)
        return None


class TerminalStatusGuard:
    """Ready once polling has classified a terminal status.

    Polling does not start before `poll_start` (the estimated end of the
    event). The session lives as long as the guard and is never persisted.
    """

    def __init__(self, poller: StatusPoller, poll_start: datetime):
        self.poller = poller
        self.poll_start = poll_start
        self.session: PollingSession | None = None

    def scheduled_time(self) -> datetime | None:
        return None

    def wake_time(self) -> datetime:
        return self.poll_start

    def is_ready(self, now: datetime, poll_state: PollingSession | None) -> bool:
        return poll_state is not None and poll_state.terminal

    async def observe(self, event_id: int | str, now: datetime) -> PollingSession | None:
        if now < self.poll_start:
            return None
        if self.session is None:
            self.session = self.poller.open_session(event_id)
        await self.poller.observe(event_id, self.session)
        return self.session

    async def wait(self, event_id: int | str, clock: Clock, sleep: Sleep) -> PollingSession | None:
        await sleep_until(self.poll_start, clock, sleep)
        self.session = await self.poller.run_session(event_id)
        return self.session


def guard_for(
    stage: Stage,
    event: Event,
    calculator: StageTimeCalculator,
    poller: StatusPoller,
    early_grace: timedelta = timedelta(0),
) -> StageGuard:
    if stage is Stage.POST_EVENT:
        return TerminalStatusGuard(poller, calculator.estimated_end(event))
    return TimeGuard(calculator.target_time(event, stage), early_grace)


# ============================================================================
# Stage scheduler
# ============================================================================


class StageScheduler:
    """State machine for one (event, stage) pair."""

    def __init__(
        self,
        event: Event,
        stage: Stage,
        guard: StageGuard,
        ledger: Ledger,
        assembler: ContentAssembler,
        publisher: Publisher,
        assembly: AssemblyPolicy | None = None,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ):
        self.event = event
        self.stage = stage
        self.guard = guard
        self.ledger = ledger
        self.assembler = assembler
        self.publisher = publisher
        self.assembly = assembly or AssemblyPolicy()
        self.clock = clock
        self.sleep = sleep

        self.state = StageState.IDLE
        self.last_error: str | None = None
        self.content: StageContent | None = None
        self._busy = asyncio.Lock()

    def __repr__(self) -> str:
        return f"StageScheduler({self.event.key}, {self.stage.value}, {self.state.value})"

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def scheduled_time(self) -> datetime | None:
        return self.guard.scheduled_time()

    def wake_time(self) -> datetime:
        return self.guard.wake_time()

    def is_done(self) -> bool:
        return self.state is StageState.DONE

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def rebind(self, event: Event, guard: StageGuard) -> None:
        """Swap in a refreshed snapshot of the same event."""
        if event.key != self.event.key:
            raise ValueError(f"Cannot rebind {self!r} to event {event.key}")
        if self.busy:
            raise RuntimeError(f"Cannot rebind {self!r} while it is running")
        self.event = event
        self.guard = guard

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def refresh(self) -> StageState:
        """Recompute IDLE from the ledger: DONE if published, else WAITING."""
        self._transition(StageState.IDLE)
        if self.ledger.is_published(self.event.key, self.stage):
            self._transition(StageState.DONE)
        else:
            self._transition(StageState.WAITING)
        return self.state

    async def evaluate(self, now: datetime | None = None) -> StageState:
        """Single evaluation, used by tick-driven hosts."""
        if self.state is StageState.DONE:
            return self.state
        if self.busy:
            logger.info(f"{self.stage.label} for event {self.event.key} is already in progress")
            return self.state

        async with self._busy:
            if self.refresh() is StageState.DONE:
                logger.info(f"{self.stage.label} for event {self.event.key} already published")
                return self.state

            now = now or self.clock()
            poll_state = await self.guard.observe(self.event.event_id, now)
            if not self.guard.is_ready(now, poll_state):
                self._log_waiting(poll_state)
                return self.state

            return await self._guarded(self._materialize(poll_state))

    async def run(self) -> StageState:
        """Suspend in WAITING until the guard is satisfied, then publish."""
        async with self._busy:
            if self.refresh() is StageState.DONE:
                logger.info(f"{self.stage.label} for event {self.event.key} already published")
                return self.state

            poll_state = await self.guard.wait(self.event.event_id, self.clock, self.sleep)
            if not self.guard.is_ready(self.clock(), poll_state):
                self._log_waiting(poll_state)
                return self.state

            return await self._guarded(self._materialize(poll_state))

    async def force(self) -> StageState:
        """Publish now, bypassing the guard but not the ledger."""
        async with self._busy:
            if self.refresh() is StageState.DONE:
                logger.info(f"{self.stage.label} for event {self.event.key} already published")
                return self.state
            logger.warning(f"Forcing {self.stage.label} for event {self.event.key}")
            session = getattr(self.guard, "session", None)
            return await self._guarded(self._materialize(session))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, state: StageState) -> None:
        if state is not self.state:
            logger.debug(
                f"Event {self.event.key} {self.stage.value}: {self.state.value} -> {state.value}"
            )
        self.state = state

    def _fail(self, error: str) -> StageState:
        self.last_error = error
        self._transition(StageState.FAILED)
        logger.error(
            f"{self.stage.label} for event {self.event.key} failed: {error}. "
            "Will retry on the next run."
        )
        return self.state

    def _log_waiting(self, poll_state: PollingSession | None) -> None:
        if self.stage is Stage.POST_EVENT:
            if poll_state is None:
                logger.info(
                    f"{self.stage.label}: status polling starts after "
                    f"{self.wake_time().isoformat()}"
                )
            else:
                logger.info(
                    f"{self.stage.label}: event not finished yet "
                    f"(status {poll_state.category.value})"
                )
        else:
            logger.info(f"{self.stage.label} will be published at {self.wake_time().isoformat()}")

    async def _guarded(self, step) -> StageState:
        try:
            return await step
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(str(e) or type(e).__name__)
            raise

    async def _materialize(self, poll_state: PollingSession | None) -> StageState:
        with self.ledger.claim(self.event.key, self.stage) as owned:
            if not owned:
                logger.info(
                    f"{self.stage.label} for event {self.event.key} is handled elsewhere; skipping"
                )
                return self.state

            # Re-check under the claim: another owner may have finished meanwhile.
            if self.ledger.is_published(self.event.key, self.stage):
                self._transition(StageState.DONE)
                return self.state

            self._transition(StageState.READY)
            reading = poll_state.last_reading if poll_state else None
            irregular = (
                poll_state is not None
                and poll_state.category is StatusCategory.FINISHED_IRREGULAR
            )
            content = await self._assemble(irregular, reading)
            return await self._publish(content)

    async def _assemble(self, irregular: bool, reading: StatusReading | None) -> StageContent:
        self._transition(StageState.ASSEMBLING)
        best: StageContent | None = None
        attempts = self.assembly.max_attempts

        for attempt in range(1, attempts + 1):
            logger.info(
                f"Assembling {self.stage.label.lower()} for event {self.event.key} "
                f"(attempt {attempt}/{attempts})"
            )
            try:
                content = await self.assembler.assemble(
                    self.event, self.stage, irregular=irregular, reading=reading
                )
            except ContentUnavailableError as e:
                logger.warning(f"Content not available on attempt {attempt}: {e}")
                content = None

            if content is not None and content.complete:
                return content
            if content is not None:
                logger.warning(f"Content incomplete on attempt {attempt}")
                best = content

            if attempt < attempts:
                delay = self.assembly.delay(attempt)
                logger.info(f"Waiting {delay:.0f}s before next attempt...")
                await self.sleep(delay)

        if best is not None:
            logger.warning(
                f"All {attempts} attempts incomplete; publishing partial {self.stage.value} content"
            )
            return best

        logger.warning(
            f"All {attempts} attempts failed; publishing placeholder {self.stage.value} content"
        )
        return self.assembler.placeholder(
            self.event, self.stage, irregular=irregular, reading=reading
        )

    async def _publish(self, content: StageContent) -> StageState:
        """Run publish-then-record to completion even if cancelled meanwhile."""
        self._transition(StageState.PUBLISHING)
        critical = asyncio.ensure_future(self._publish_and_record(content))
        cancelled = False
        while True:
            try:
                state = await asyncio.shield(critical)
                break
            except asyncio.CancelledError:
                if critical.done():
                    raise
                cancelled = True
                logger.warning(
                    f"Cancellation requested while publishing {self.stage.value} "
                    f"for event {self.event.key}; finishing first"
                )
        if cancelled:
            raise asyncio.CancelledError()
        return state

    async def _publish_and_record(self, content: StageContent) -> StageState:
        try:
            result = await self.publisher.publish(content.title, content.body)
        except PublishError as e:
            if not e.retryable:
                return self._fail(f"{e} (not retryable; check publisher credentials)")
            return self._fail(str(e))

        if not result.success:
            return self._fail(result.error or "publisher reported failure")

        # No suspension point between confirmed success and the ledger write.
        try:
            self.ledger.mark_published(self.event.key, self.stage)
        except LedgerError:
            logger.critical(
                f"{self.stage.label} for event {self.event.key} was published "
                f"({result.reference}) but could not be recorded"
            )
            raise

        self.content = content
        self.last_error = None
        self._transition(StageState.DONE)
        logger.info(
            f"{self.stage.label} for event {self.event.key} published: {result}"
            + (" [degraded]" if content.degraded else "")
        )
        return self.state
