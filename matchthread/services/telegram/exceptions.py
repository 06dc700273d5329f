"""Telegram service exceptions."""


class TelegramError(Exception):
    """Base Telegram exception."""

    def __init__(self, message: str, chat_id: str | None = None):
        super().__init__(message)
        self.chat_id = chat_id


class TelegramAuthError(TelegramError):
    """Bot token rejected, or the bot may not post to the chat."""

    pass


class TelegramConfigError(TelegramError):
    """Missing token or chat id."""

    pass
