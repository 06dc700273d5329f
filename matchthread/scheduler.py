"""Runtime wiring and the long-running service loop (APScheduler)."""

import asyncio
import logging
import signal
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from matchthread.config import Settings
from matchthread.content import FixtureContentAssembler
from matchthread.lifecycle import (
    AssemblyPolicy,
    Event,
    LifecycleOrchestrator,
    PollingPolicy,
    Publisher,
    StageTimeCalculator,
    StatusPoller,
)
from matchthread.services.football import ApiUsageTracker, FootballClient
from matchthread.services.publisher import LogPublisher, TelegramPublisher
from matchthread.services.telegram import TelegramConfig, create_telegram_client
from matchthread.storage import (
    EventCache,
    FileLedgerStore,
    IdempotencyLedger,
    LedgerStore,
    MemoryLedgerStore,
    RedisLedgerStore,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Factories
# ============================================================================


def build_ledger_store(settings: Settings) -> LedgerStore:
    if settings.ledger.backend == "redis":
        logger.info(f"Using Redis ledger at {settings.ledger.redis_url}")
        return RedisLedgerStore.from_url(
            settings.ledger.redis_url,
            key_prefix=settings.ledger.key_prefix,
            lock_timeout=settings.ledger.lock_timeout_seconds,
        )
    logger.info(f"Using file ledger at {settings.ledger_path}")
    return FileLedgerStore(settings.ledger_path)


def build_calculator(settings: Settings) -> StageTimeCalculator:
    return StageTimeCalculator(
        pre_offset=settings.timing.pre_offset,
        live_offset=settings.timing.live_offset,
        typical_duration=settings.timing.typical_duration,
    )


def build_polling_policy(settings: Settings) -> PollingPolicy:
    polling = settings.polling
    return PollingPolicy(
        interval_seconds=polling.interval_seconds,
        error_threshold=polling.error_threshold,
        pre_start_threshold=polling.pre_start_threshold,
        throttle_factor=polling.throttle_factor,
        max_duration=timedelta(hours=polling.max_duration_hours),
    )


def build_assembly_policy(settings: Settings) -> AssemblyPolicy:
    return AssemblyPolicy(
        max_attempts=settings.assembly.max_attempts,
        backoff_seconds=tuple(settings.assembly.backoff_seconds),
    )


@dataclass
class Runtime:
    """Open clients and shared collaborators for one process."""

    settings: Settings
    client: FootballClient
    store: LedgerStore
    publisher: Publisher
    assembler: FixtureContentAssembler
    poller: StatusPoller
    calculator: StageTimeCalculator
    events: EventCache
    usage: ApiUsageTracker
    dry_run: bool = False

    def ledger_for(self, event: Event) -> IdempotencyLedger:
        """Real ledger, or an in-memory copy of it in dry-run mode."""
        if self.dry_run:
            return IdempotencyLedger(MemoryLedgerStore.seeded_from(self.store, event.key))
        return IdempotencyLedger(self.store)

    def orchestrator(self, event: Event) -> LifecycleOrchestrator:
        return LifecycleOrchestrator(
            event,
            self.ledger_for(event),
            self.assembler,
            self.publisher,
            self.poller,
            calculator=self.calculator,
            assembly=build_assembly_policy(self.settings),
            early_grace=self.settings.timing.early_grace,
        )

    async def resolve_event(self, force_refresh: bool = False) -> Event | None:
        """Tracked event from cache, re-fetched when stale or forced."""
        cached = self.events.load()
        if cached is not None and not force_refresh and not self.events.needs_refresh():
            logger.info(
                f"Using cached event {cached.event.key} "
                f"(refreshed {cached.age().total_seconds() / 3600:.1f}h ago)"
            )
            return cached.event

        tracking = self.settings.tracking
        if tracking.fixture_id is not None:
            fixture = await self.client.fetch_event(tracking.fixture_id)
        else:
            fixture = await self.client.fetch_next_event(tracking.team_id, tracking.season)

        if fixture is None:
            if cached is not None:
                logger.warning("No fixture returned; keeping cached event")
                return cached.event
            return None

        event = fixture.to_event()
        self.events.save(event)
        logger.info(f"Tracking event {event.key}: {event.matchup} at {event.start.isoformat()}")
        return event


@asynccontextmanager
async def open_runtime(
    settings: Settings,
    dry_run: bool | None = None,
    publish: bool = True,
) -> AsyncIterator[Runtime]:
    """Open provider and publisher clients for the duration of a command.

    `publish=False` never connects to Telegram (preview, status).
    """
    dry_run = settings.publishing.dry_run if dry_run is None else dry_run
    usage = ApiUsageTracker(
        settings.data_dir / "api_usage.yaml", settings.football.daily_call_limit
    )

    async with AsyncExitStack() as stack:
        client = await stack.enter_async_context(
            FootballClient(settings.football, settings.football_api_key, usage=usage)
        )

        publisher: Publisher
        if dry_run or not publish or settings.publishing.backend == "log":
            if dry_run:
                logger.info("DRY RUN: announcements are logged and the ledger is not written")
            publisher = LogPublisher()
        else:
            telegram = await stack.enter_async_context(
                create_telegram_client(
                    bot_token=settings.telegram_bot_token,
                    chat_id=settings.telegram_chat_id,
                    config=TelegramConfig(disable_preview=settings.publishing.disable_preview),
                )
            )
            publisher = TelegramPublisher(telegram)

        yield Runtime(
            settings=settings,
            client=client,
            store=build_ledger_store(settings),
            publisher=publisher,
            assembler=FixtureContentAssembler(
                client,
                display_timezone=settings.tracking.display_timezone,
                recent_results=settings.football.recent_results,
            ),
            poller=StatusPoller(client, build_polling_policy(settings)),
            calculator=build_calculator(settings),
            events=EventCache(settings.data_dir / "event.yaml", settings.tracking.refresh_hours),
            usage=usage,
            dry_run=dry_run,
        )


# ============================================================================
# Service loop
# ============================================================================


class LifecycleService:
    """Keeps one orchestrator running for the currently tracked event."""

    def __init__(self, runtime: Runtime):
        self.runtime = runtime
        self.orchestrator: LifecycleOrchestrator | None = None
        self._run_task: asyncio.Task | None = None
        self._stopped = asyncio.Event()

    async def refresh(self, force: bool = False) -> None:
        """Re-resolve the tracked event; restart the orchestrator when it changed."""
        try:
            event = await self.runtime.resolve_event(force_refresh=force)
        except Exception as e:
            logger.error(f"Event refresh failed: {e}")
            return

        if event is None:
            logger.warning("No upcoming event to track")
            return

        current = self.orchestrator
        if current is not None:
            if current.event.key == event.key and current.event.start == event.start:
                self._resume(current)
                return
            logger.info(f"Tracked event changed ({current.event.key} -> {event.key}); restarting")
            await current.stop()
            await self.join()

        self.orchestrator = self.runtime.orchestrator(event)
        self._run_task = asyncio.create_task(self._run(self.orchestrator))

    def _resume(self, orchestrator: LifecycleOrchestrator) -> None:
        """Restart stages that ended without publishing (failed or timed out)."""
        key = orchestrator.event.key
        outstanding = [s for s in orchestrator.schedulers.values() if not s.is_done()]
        if not outstanding:
            logger.debug(f"Event {key} unchanged; all stages published")
            return

        if self._run_task is None or self._run_task.done():
            logger.info(f"Resuming {len(outstanding)} outstanding stage(s) for event {key}")
            self._run_task = asyncio.create_task(self._run(orchestrator))
        else:
            # Running stages are skipped; only finished, unpublished ones respawn.
            orchestrator.start()

    async def _run(self, orchestrator: LifecycleOrchestrator) -> None:
        states = await orchestrator.run()
        summary = ", ".join(f"{stage.value}={state.value}" for stage, state in states.items())
        logger.info(f"Event {orchestrator.event.key} finished: {summary}")

    async def join(self) -> None:
        """Wait for the current orchestrator run to return."""
        if self._run_task is not None:
            await asyncio.gather(self._run_task, return_exceptions=True)

    def stop(self) -> None:
        self._stopped.set()

    async def serve(self) -> None:
        """Run until SIGINT/SIGTERM."""
        settings = self.runtime.settings
        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self.refresh,
            IntervalTrigger(minutes=settings.tracking.refresh_interval_minutes),
            id="event-refresh",
            name="Tracked event refresh",
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            f"Registered job: Tracked event refresh "
            f"(every {settings.tracking.refresh_interval_minutes} min)"
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                pass  # Windows

        scheduler.start()
        logger.info("✓ Scheduler started. Press Ctrl+C to stop")
        try:
            await self._stopped.wait()
        finally:
            logger.info("Received stop signal")
            scheduler.shutdown(wait=False)
            if self.orchestrator is not None:
                await self.orchestrator.stop()
            await self.join()
            logger.info("✓ Scheduler stopped cleanly")


async def serve(
    settings: Settings,
    dry_run: bool | None = None,
    force_refresh: bool = False,
) -> None:
    async with open_runtime(settings, dry_run=dry_run) as runtime:
        service = LifecycleService(runtime)
        if force_refresh:
            await service.refresh(force=True)
        await service.serve()
