"""Lifecycle scheduler exceptions."""


class LifecycleError(Exception):
    """Base lifecycle exception."""

    pass


class LedgerError(LifecycleError):
    """Ledger could not be read or written; publication state is unknown."""

    pass


class ContentUnavailableError(LifecycleError):
    """Upstream data for an announcement is not available yet."""

    pass


class PublishError(LifecycleError):
    """Announcement submission failed."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
