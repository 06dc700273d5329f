"""Telegram channel publishing."""

from .client import TelegramClient, create_telegram_client
from .config import TelegramConfig
from .exceptions import (
    TelegramAuthError,
    TelegramConfigError,
    TelegramError,
)
from .models import DeliveryResult

__all__ = [
    "TelegramClient",
    "create_telegram_client",
    "TelegramConfig",
    "DeliveryResult",
    "TelegramError",
    "TelegramAuthError",
    "TelegramConfigError",
]
