from .client import FootballClient, create_football_client
from .config import FootballConfig
from .exceptions import (
    FootballAPIError,
    FootballAuthError,
    FootballNotFoundError,
    FootballRateLimitError,
)
from .models import (
    FinalResult,
    Fixture,
    MatchEvent,
    Player,
    RecentResult,
    Score,
    TeamLineup,
    TeamStatistics,
)
from .usage import ApiUsageTracker, DailyUsage

__all__ = [
    "FootballClient",
    "create_football_client",
    "FootballConfig",
    "FootballAPIError",
    "FootballAuthError",
    "FootballNotFoundError",
    "FootballRateLimitError",
    "FinalResult",
    "Fixture",
    "MatchEvent",
    "Player",
    "RecentResult",
    "Score",
    "TeamLineup",
    "TeamStatistics",
    "ApiUsageTracker",
    "DailyUsage",
]
