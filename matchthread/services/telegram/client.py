"""Telegram channel client."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from telegram import Bot, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import Forbidden, InvalidToken, RetryAfter, TimedOut
from telegram.error import TelegramError as BotError

from .config import TelegramConfig
from .exceptions import TelegramAuthError, TelegramConfigError
from .models import DeliveryResult

logger = logging.getLogger(__name__)

_ELLIPSIS = "\n…"
_TAG = re.compile(r"<(/?)(\w+)[^>]*>")


def _closing_tags(fragment: str) -> str:
    """Closing tags for elements left open in an HTML fragment."""
    open_tags: list[str] = []
    for closing, name in _TAG.findall(fragment):
        if not closing:
            open_tags.append(name)
        elif name in open_tags:
            del open_tags[len(open_tags) - 1 - open_tags[::-1].index(name)]
    return "".join(f"</{name}>" for name in reversed(open_tags))


class TelegramClient:
    """Async client posting announcements to one chat or channel."""

    def __init__(
        self,
        config: TelegramConfig | None = None,
        bot_token: str | None = None,
        chat_id: str | None = None,
    ):
        self.config = config or TelegramConfig()

        if bot_token:
            self.config.bot_token = bot_token
        if chat_id:
            self.config.chat_id = chat_id

        if not self.config.bot_token:
            raise TelegramConfigError(
                "bot_token is required. Provide via config or constructor."
            )
        if not self.config.chat_id:
            raise TelegramConfigError(
                "chat_id is required. Provide via config or constructor."
            )

        self._bot: Bot | None = None
        logger.info("Initialized TelegramClient")

    async def __aenter__(self) -> TelegramClient:
        """Enter async context manager."""
        try:
            self._bot = Bot(token=self.config.bot_token)
            await self._bot.initialize()
            logger.info(f"Connected to Telegram bot: @{self._bot.username}")
        except (InvalidToken, Forbidden) as e:
            logger.error(f"Failed to initialize Telegram bot: {e}")
            raise TelegramAuthError(f"Invalid bot token: {e}") from e

        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager."""
        if self._bot:
            await self._bot.shutdown()
            self._bot = None
            logger.info("Closed TelegramClient")

    @property
    def bot(self) -> Bot:
        """Return bot instance."""
        if self._bot is None:
            raise RuntimeError(
                "TelegramClient must be used as async context manager"
            )
        return self._bot

    def compose(self, title: str, body: str) -> str:
        """Render one HTML message, truncating the body to the size limit.

        Title and body are expected to be HTML-escaped already.
        """
        header = f"<b>{title}</b>\n\n"
        limit = self.config.max_message_length
        if len(header) + len(body) <= limit:
            return header + body

        room = max(limit - len(header) - len(_ELLIPSIS), 0)
        cut = body[:room]
        while True:
            # Never leave a dangling tag or entity at the cut point.
            for opener, closer in (("<", ">"), ("&", ";")):
                if cut.rfind(opener) > cut.rfind(closer):
                    cut = cut[: cut.rfind(opener)]
            closers = _closing_tags(cut)
            if len(cut) + len(closers) <= room:
                break
            cut = cut[: max(room - len(closers), 0)]
        logger.warning(f"Announcement truncated from {len(body)} to {len(cut)} characters")
        return header + cut + closers + _ELLIPSIS

    async def send_announcement(self, title: str, body: str) -> DeliveryResult:
        """Post an announcement as a single message, with one retry."""
        chat_id = self.config.chat_id
        text = self.compose(title, body)
        attempts = self.config.max_attempts
        last_error: str | None = None

        for attempt in range(1, attempts + 1):
            try:
                logger.info(
                    f"Sending Telegram message to {chat_id} (attempt {attempt}/{attempts})"
                )
                message = await self.bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode=ParseMode.HTML if self.config.parse_mode == "HTML" else None,
                    link_preview_options=LinkPreviewOptions(
                        is_disabled=self.config.disable_preview
                    ),
                )
                logger.info(
                    f"Message sent successfully to {chat_id} "
                    f"(message_id: {message.message_id})"
                )
                return DeliveryResult(
                    success=True,
                    chat_id=chat_id,
                    message_ids=[message.message_id],
                    attempts=attempt,
                )

            except TimedOut as e:
                # Delivery state unknown: resending could post twice.
                last_error = f"Timed out: {e.message}"
                logger.warning(f"Telegram send timed out for {chat_id}; not resending")
                return DeliveryResult(
                    success=False, chat_id=chat_id, error=last_error, attempts=attempt
                )

            except RetryAfter as e:
                last_error = f"Flood control: retry after {e.retry_after}"
                logger.warning(f"Telegram flood control for {chat_id}: {last_error}")
                delay = e.retry_after
                if hasattr(delay, "total_seconds"):
                    delay = delay.total_seconds()

            except (InvalidToken, Forbidden) as e:
                raise TelegramAuthError(
                    f"Bot cannot post to {chat_id}: {e}", chat_id=chat_id
                ) from e

            except BotError as e:
                last_error = e.message or "Telegram error"
                logger.warning(
                    f"Telegram send failed (attempt {attempt}/{attempts}): {last_error}"
                )
                delay = self.config.retry_delay_seconds

            if attempt < attempts:
                await asyncio.sleep(float(delay))

        return DeliveryResult(
            success=False,
            chat_id=chat_id,
            error=last_error or "Message send failed",
            attempts=attempts,
        )


def create_telegram_client(
    bot_token: str | None = None,
    chat_id: str | None = None,
    config: TelegramConfig | None = None,
) -> TelegramClient:
    """Create a TelegramClient instance."""
    return TelegramClient(config=config, bot_token=bot_token, chat_id=chat_id)
