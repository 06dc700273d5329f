from pydantic import BaseModel


class FootballConfig(BaseModel):
    """Configuration for the football data provider client."""

    base_url: str = "https://api-football-v1.p.rapidapi.com/v3"
    api_host: str = "api-football-v1.p.rapidapi.com"
    timeout_seconds: float = 30.0
    max_connections: int = 10
    max_retries: int = 3
    daily_call_limit: int = 100
    recent_results: int = 5
