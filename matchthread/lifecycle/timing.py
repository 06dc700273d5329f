"""Stage target times derived from an event's start instant."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from .models import Event, Stage

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StageTimeCalculator:
    """Pure mapping from (event, stage) to a wall-clock target.

    The post-event stage has no target: it is driven by the live status.
    `estimated_end` is only a hint for when status polling should begin.
    """

    def __init__(
        self,
        pre_offset: timedelta = timedelta(hours=24),
        live_offset: timedelta = timedelta(minutes=15),
        typical_duration: timedelta = timedelta(hours=2),
    ):
        self.pre_offset = pre_offset
        self.live_offset = live_offset
        self.typical_duration = typical_duration

    def target_time(self, event: Event, stage: Stage) -> datetime | None:
        if stage is Stage.PRE_EVENT:
            return event.start - self.pre_offset
        if stage is Stage.LIVE_EVENT:
            return event.start - self.live_offset
        return None

    def estimated_end(self, event: Event) -> datetime:
        return event.start + self.typical_duration


async def sleep_until(target: datetime, clock: Clock = utc_now, sleep: Sleep = asyncio.sleep) -> None:
    """Suspend until `target`; returns immediately when it is in the past."""
    delay = (target - clock()).total_seconds()
    if delay <= 0:
        return
    logger.info(f"Waiting {delay / 60:.0f} minutes until {target.isoformat()}")
    await sleep(delay)
