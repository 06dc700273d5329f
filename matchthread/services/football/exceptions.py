class FootballAPIError(Exception):
    """Base exception for football data provider errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FootballAuthError(FootballAPIError):
    """Authentication failed."""

    pass


class FootballRateLimitError(FootballAPIError):
    """Rate limit exceeded."""

    pass


class FootballNotFoundError(FootballAPIError):
    """Resource not found."""

    pass
