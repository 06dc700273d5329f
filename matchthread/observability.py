"""Logfire cloud observability initialization and instrumentation."""

import logging

import logfire

from matchthread import __version__
from matchthread.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings) -> bool:
    """
    Initialize Logfire when a token is configured.

    Must be called once at startup, before any client is created, so that:
    - HTTPX clients (football data provider) are instrumented
    - Python logging is bridged to Logfire

    Returns True when Logfire was configured.
    """
    if not settings.logfire_token:
        logger.debug("Logfire token not set - observability disabled")
        return False

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="matchthread",
            service_version=__version__,
            environment="dry-run" if settings.publishing.dry_run else "live",
        )

        logfire.instrument_httpx()

        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        logger.info("✓ Logfire cloud tracking initialized")
        return True

    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")
        return False
