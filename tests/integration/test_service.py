"""Continuous service loop: event refresh, restarts and stage retries."""

import asyncio
from datetime import timedelta
from types import SimpleNamespace

from fakes import (
    KICKOFF,
    FakeAssembler,
    FakePublisher,
    ScriptedStatusSource,
    make_event,
)
from matchthread.lifecycle import LifecycleOrchestrator, Stage, StatusPoller
from matchthread.scheduler import LifecycleService
from matchthread.storage import IdempotencyLedger, MemoryLedgerStore


class StubRuntime:
    """The two runtime hooks the service uses, backed by fakes."""

    def __init__(self, clock, *, publisher=None, source=None, sleep=None):
        self.event = make_event()
        self.clock = clock
        self.sleep = sleep or clock.sleep
        self.publisher = publisher or FakePublisher()
        self.source = source or ScriptedStatusSource(["FT"])
        self.ledger = IdempotencyLedger(MemoryLedgerStore())
        self.settings = SimpleNamespace(tracking=SimpleNamespace(refresh_interval_minutes=60))
        self.built: list[LifecycleOrchestrator] = []

    async def resolve_event(self, force_refresh: bool = False):
        return self.event

    def orchestrator(self, event) -> LifecycleOrchestrator:
        poller = StatusPoller(self.source, clock=self.clock, sleep=self.sleep)
        orchestrator = LifecycleOrchestrator(
            event,
            self.ledger,
            FakeAssembler(),
            self.publisher,
            poller,
            clock=self.clock,
            sleep=self.sleep,
        )
        self.built.append(orchestrator)
        return orchestrator

    def published(self, event=None) -> list[Stage]:
        key = (event or self.event).key
        return [stage for stage in Stage if self.ledger.is_published(key, stage)]


async def refresh_and_join(service: LifecycleService) -> None:
    await service.refresh()
    await service.join()


def test_failed_stages_are_retried_on_next_refresh(clock) -> None:
    clock.set(KICKOFF + timedelta(hours=3))
    runtime = StubRuntime(clock, publisher=FakePublisher(failures=3))

    async def run() -> None:
        service = LifecycleService(runtime)

        await refresh_and_join(service)
        assert runtime.publisher.attempts == 3
        assert runtime.published() == []

        await refresh_and_join(service)
        assert runtime.published() == list(Stage)

        await refresh_and_join(service)

    asyncio.run(run())

    assert runtime.publisher.attempts == 6
    assert len(runtime.publisher.published) == 3
    assert len(runtime.built) == 1


def test_post_event_resumes_after_polling_times_out(clock) -> None:
    clock.set(KICKOFF + timedelta(hours=2))
    source = ScriptedStatusSource(["2H"])
    runtime = StubRuntime(clock, source=source)

    async def run() -> None:
        service = LifecycleService(runtime)

        await refresh_and_join(service)
        assert runtime.published() == [Stage.PRE_EVENT, Stage.LIVE_EVENT]

        source.script = ["FT"]
        await refresh_and_join(service)

    asyncio.run(run())

    assert runtime.published() == list(Stage)
    assert runtime.publisher.titles().count("post_event title") == 1


def test_changed_event_stops_old_orchestrator(clock) -> None:
    async def run() -> None:
        forever = asyncio.Event()

        async def blocked_sleep(seconds: float) -> None:
            await forever.wait()

        runtime = StubRuntime(clock, sleep=blocked_sleep)
        service = LifecycleService(runtime)

        await service.refresh()
        await asyncio.sleep(0)
        first = service.orchestrator
        assert len(first.pending()) == 3

        await service.refresh()
        assert service.orchestrator is first

        runtime.event = make_event(event_id=1208099)
        await service.refresh()
        await asyncio.sleep(0)

        assert first.pending() == []
        assert service.orchestrator is not first
        assert service.orchestrator.event.key == runtime.event.key
        assert len(service.orchestrator.pending()) == 3

        await service.orchestrator.stop()
        await service.join()
        assert runtime.publisher.attempts == 0

    asyncio.run(run())


def test_serve_stops_running_stages_on_shutdown(clock) -> None:
    async def run() -> LifecycleService:
        forever = asyncio.Event()

        async def blocked_sleep(seconds: float) -> None:
            await forever.wait()

        service = LifecycleService(StubRuntime(clock, sleep=blocked_sleep))
        await service.refresh()
        await asyncio.sleep(0)
        assert len(service.orchestrator.pending()) == 3

        service.stop()
        await service.serve()
        return service

    service = asyncio.run(run())

    assert service.orchestrator.pending() == []
    assert not any(s.is_done() for s in service.orchestrator.schedulers.values())
