"""Drives the three stage schedulers of one tracked event."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .models import Event, Stage, StageState
from .scheduler import (
    AssemblyPolicy,
    ContentAssembler,
    Ledger,
    Publisher,
    StageScheduler,
    TerminalStatusGuard,
    guard_for,
)
from .status import StatusPoller
from .timing import Clock, Sleep, StageTimeCalculator, utc_now

logger = logging.getLogger(__name__)


@dataclass
class StageOutcome:
    stage: Stage
    state: StageState
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.state is not StageState.FAILED


@dataclass
class TickReport:
    """Per-stage result of one orchestrator tick."""

    event_id: str
    at: datetime
    outcomes: dict[Stage, StageOutcome] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes.values())

    @property
    def published(self) -> list[Stage]:
        return [s for s, o in self.outcomes.items() if o.state is StageState.DONE]

    def __str__(self) -> str:
        parts = []
        for stage, outcome in self.outcomes.items():
            text = f"{stage.value}={outcome.state.value}"
            if outcome.error:
                text += f" ({outcome.error})"
            parts.append(text)
        return f"Event {self.event_id}: " + ", ".join(parts)


class LifecycleOrchestrator:
    """Owns one `StageScheduler` per stage for a single event.

    Tick mode (`tick`) evaluates every stage once and returns; continuous
    mode (`run`) keeps one task per stage alive until each one finishes.
    A new event needs a new orchestrator.
    """

    def __init__(
        self,
        event: Event,
        ledger: Ledger,
        assembler: ContentAssembler,
        publisher: Publisher,
        poller: StatusPoller,
        calculator: StageTimeCalculator | None = None,
        assembly: AssemblyPolicy | None = None,
        early_grace: timedelta = timedelta(0),
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ):
        self.event = event
        self.ledger = ledger
        self.poller = poller
        self.calculator = calculator or StageTimeCalculator()
        self.early_grace = early_grace
        self.clock = clock

        self.schedulers: dict[Stage, StageScheduler] = {
            stage: StageScheduler(
                event,
                stage,
                guard_for(stage, event, self.calculator, poller, early_grace),
                ledger,
                assembler,
                publisher,
                assembly=assembly,
                clock=clock,
                sleep=sleep,
            )
            for stage in Stage
        }
        self._tasks: dict[tuple[str, Stage], asyncio.Task] = {}

    def scheduler(self, stage: Stage) -> StageScheduler:
        return self.schedulers[stage]

    def _rebind(self, event: Event) -> None:
        if event.key != self.event.key:
            raise ValueError(
                f"Orchestrator tracks event {self.event.key}, got {event.key}; "
                "create a new orchestrator for a new event"
            )
        if event == self.event:
            return

        if event.start != self.event.start:
            logger.info(
                f"Event {event.key} start moved: "
                f"{self.event.start.isoformat()} -> {event.start.isoformat()}"
            )
        self.event = event
        for stage, scheduler in self.schedulers.items():
            if scheduler.is_done() or scheduler.busy:
                continue
            guard = guard_for(stage, event, self.calculator, self.poller, self.early_grace)
            previous = scheduler.guard
            if isinstance(guard, TerminalStatusGuard) and isinstance(previous, TerminalStatusGuard):
                guard.session = previous.session
            scheduler.rebind(event, guard)

    # ------------------------------------------------------------------
    # Tick mode
    # ------------------------------------------------------------------

    async def tick(self, event: Event | None = None) -> TickReport:
        """Evaluate all stages once. Per-stage failures land in the report."""
        if event is not None:
            self._rebind(event)

        now = self.clock()
        stages = list(self.schedulers)
        results = await asyncio.gather(
            *(self.schedulers[stage].evaluate(now) for stage in stages),
            return_exceptions=True,
        )

        report = TickReport(event_id=self.event.key, at=now)
        for stage, result in zip(stages, results):
            scheduler = self.schedulers[stage]
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(
                    f"{stage.label} for event {self.event.key} raised "
                    f"{type(result).__name__}: {result}"
                )
                report.outcomes[stage] = StageOutcome(
                    stage, scheduler.state, str(result) or type(result).__name__
                )
            else:
                report.outcomes[stage] = StageOutcome(
                    stage,
                    result,
                    scheduler.last_error if result is StageState.FAILED else None,
                )

        logger.info(str(report))
        return report

    # ------------------------------------------------------------------
    # Continuous mode
    # ------------------------------------------------------------------

    async def _run_stage(self, scheduler: StageScheduler) -> StageState:
        try:
            return await scheduler.run()
        except asyncio.CancelledError:
            logger.info(f"{scheduler.stage.label} for event {self.event.key} cancelled")
            raise
        except Exception as e:
            logger.error(f"{scheduler.stage.label} for event {self.event.key} failed: {e}")
            return scheduler.state

    def start(self) -> None:
        """Spawn one task per outstanding stage."""
        for stage, scheduler in self.schedulers.items():
            key = (self.event.key, stage)
            task = self._tasks.get(key)
            if task is not None and not task.done():
                continue
            if scheduler.is_done():
                continue
            self._tasks[key] = asyncio.create_task(
                self._run_stage(scheduler), name=f"{key[0]}:{stage.value}"
            )
            logger.debug(f"Started task for event {key[0]} {stage.value}")

    async def run(self) -> dict[Stage, StageState]:
        """Run every stage until it finishes, then return the final states."""
        self.start()
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return {stage: scheduler.state for stage, scheduler in self.schedulers.items()}

    def pending(self) -> list[tuple[str, Stage]]:
        return [key for key, task in self._tasks.items() if not task.done()]

    async def stop(self) -> None:
        """Cancel outstanding tasks and wait for them to unwind."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Stopped {len(tasks)} task(s) for event {self.event.key}")
