"""Telegram delivery models."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class DeliveryResult(BaseModel):
    """Outcome of posting one announcement (possibly split across messages)."""

    success: bool
    chat_id: str
    message_ids: list[int] = Field(default_factory=list)
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    error: str | None = None
    attempts: int = 1

    @property
    def message_id(self) -> int | None:
        return self.message_ids[0] if self.message_ids else None

    def __str__(self) -> str:
        """Human-readable status."""
        if self.success:
            return f"Sent to {self.chat_id} (msg_id: {self.message_id})"
        return f"Failed to {self.chat_id}: {self.error}"
