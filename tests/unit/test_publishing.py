"""Telegram delivery and publisher adapters."""

import asyncio
from types import SimpleNamespace

import pytest
from telegram.error import Forbidden, NetworkError, RetryAfter, TimedOut

from matchthread.lifecycle import PublishError
from matchthread.services.publisher import LogPublisher, TelegramPublisher
from matchthread.services.telegram import (
    TelegramAuthError,
    TelegramClient,
    TelegramConfig,
    TelegramConfigError,
    create_telegram_client,
)


class FakeBot:
    """Scripted stand-in for `telegram.Bot.send_message`."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.sent: list[dict] = []

    async def send_message(self, **kwargs):
        self.sent.append(kwargs)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(message_id=len(self.sent))


def make_client(bot: FakeBot, **config) -> TelegramClient:
    client = create_telegram_client(
        bot_token="123:abc", chat_id="@matchday", config=TelegramConfig(retry_delay_seconds=0, **config)
    )
    client._bot = bot
    return client


def test_missing_credentials_raise() -> None:
    with pytest.raises(TelegramConfigError):
        TelegramClient(TelegramConfig(chat_id="@matchday"))
    with pytest.raises(TelegramConfigError):
        TelegramClient(TelegramConfig(bot_token="123:abc"))


def test_compose_fits_in_one_message() -> None:
    client = make_client(FakeBot())
    assert client.compose("Title", "Body") == "<b>Title</b>\n\nBody"


def test_compose_truncates_without_breaking_markup() -> None:
    client = make_client(FakeBot(), max_message_length=40)
    body = "a" * 20 + "<b>bold text that is long</b>"

    text = client.compose("T", body)

    assert len(text) <= 40
    assert text.endswith("</b>\n…")
    assert text.count("<b>") == text.count("</b>")
    assert text.count("<") == text.count(">")


def test_send_announcement_success() -> None:
    bot = FakeBot()
    delivery = asyncio.run(make_client(bot).send_announcement("Title", "Body"))

    assert delivery.success
    assert delivery.message_id == 1
    assert bot.sent[0]["chat_id"] == "@matchday"
    assert bot.sent[0]["link_preview_options"].is_disabled


def test_send_announcement_retries_transient_errors() -> None:
    bot = FakeBot(NetworkError("Bad Gateway"))
    delivery = asyncio.run(make_client(bot).send_announcement("Title", "Body"))

    assert delivery.success
    assert delivery.attempts == 2


def test_send_announcement_honours_flood_control() -> None:
    bot = FakeBot(RetryAfter(0), RetryAfter(0))
    delivery = asyncio.run(make_client(bot).send_announcement("Title", "Body"))

    assert not delivery.success
    assert "Flood control" in delivery.error
    assert len(bot.sent) == 2


def test_timeout_is_not_resent() -> None:
    bot = FakeBot(TimedOut())
    delivery = asyncio.run(make_client(bot).send_announcement("Title", "Body"))

    assert not delivery.success
    assert len(bot.sent) == 1


def test_forbidden_raises_auth_error() -> None:
    bot = FakeBot(Forbidden("bot was kicked from the channel"))
    with pytest.raises(TelegramAuthError):
        asyncio.run(make_client(bot).send_announcement("Title", "Body"))


# ============================================================================
# Publishers
# ============================================================================


def test_telegram_publisher_maps_delivery() -> None:
    publisher = TelegramPublisher(make_client(FakeBot()))
    result = asyncio.run(publisher.publish("Title", "Body"))

    assert result.success
    assert result.reference == "@matchday/1"


def test_telegram_publisher_reports_failed_delivery() -> None:
    publisher = TelegramPublisher(make_client(FakeBot(TimedOut())))
    result = asyncio.run(publisher.publish("Title", "Body"))

    assert not result.success
    assert "Timed out" in result.error


def test_telegram_publisher_raises_on_auth_failure() -> None:
    publisher = TelegramPublisher(make_client(FakeBot(Forbidden("blocked"))))

    with pytest.raises(PublishError) as excinfo:
        asyncio.run(publisher.publish("Title", "Body"))
    assert excinfo.value.retryable is False


def test_log_publisher_keeps_announcements() -> None:
    publisher = LogPublisher()
    result = asyncio.run(publisher.publish("Title", "Body"))

    assert result.success
    assert result.reference == "dry-run-1"
    assert publisher.published == [("Title", "Body")]
