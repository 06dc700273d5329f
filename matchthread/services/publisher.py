"""Publisher implementations: Telegram channel and log-only dry run."""

import logging
from datetime import datetime, timezone

from matchthread.lifecycle.exceptions import PublishError
from matchthread.lifecycle.models import PublishResult
from matchthread.services.telegram import TelegramClient, TelegramError

logger = logging.getLogger(__name__)


class TelegramPublisher:
    """Posts announcements through an open `TelegramClient`."""

    def __init__(self, client: TelegramClient):
        self.client = client

    async def publish(self, title: str, body: str) -> PublishResult:
        try:
            delivery = await self.client.send_announcement(title, body)
        except TelegramError as e:
            raise PublishError(str(e), retryable=False) from e

        if not delivery.success:
            return PublishResult(success=False, error=delivery.error)
        return PublishResult(
            success=True,
            reference=f"{delivery.chat_id}/{delivery.message_id}",
            published_at=delivery.sent_at,
        )


class LogPublisher:
    """Dry-run publisher: logs announcements and keeps them in memory."""

    def __init__(self):
        self.published: list[tuple[str, str]] = []

    async def publish(self, title: str, body: str) -> PublishResult:
        self.published.append((title, body))
        logger.info(f"[DRY RUN] Would publish: {title}")
        logger.debug(f"[DRY RUN] Body:\n{body}")
        return PublishResult(
            success=True,
            reference=f"dry-run-{len(self.published)}",
            published_at=datetime.now(timezone.utc),
        )
