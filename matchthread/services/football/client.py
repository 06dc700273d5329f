from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .config import FootballConfig
from .exceptions import (
    FootballAPIError,
    FootballAuthError,
    FootballNotFoundError,
    FootballRateLimitError,
)
from .models import FinalResult, Fixture, MatchEvent, RecentResult, TeamLineup, TeamStatistics
from .usage import ApiUsageTracker

logger = logging.getLogger(__name__)


class FootballClient:
    def __init__(
        self,
        config: FootballConfig | None = None,
        api_key: str | None = None,
        usage: ApiUsageTracker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or FootballConfig()
        self.api_key = api_key or ""
        self.usage = usage
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(
            f"Initialized FootballClient (auth={'enabled' if self.api_key else 'disabled'}, "
            f"usage_tracking={'enabled' if usage else 'disabled'})"
        )

    async def __aenter__(self) -> FootballClient:
        limits = httpx.Limits(max_connections=self.config.max_connections)
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
            limits=limits,
            headers={
                "x-rapidapi-key": self.api_key,
                "x-rapidapi-host": self.config.api_host,
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Closed FootballClient")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("FootballClient must be used as async context manager")
        return self._client

    async def _request(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        purpose: str = "",
    ) -> list[dict[str, Any]]:
        """GET an endpoint and return its `response` list."""
        retry_count = 0
        last_error: Exception | None = None

        while retry_count < self.config.max_retries:
            try:
                if self.usage is not None:
                    self.usage.record(endpoint, purpose)

                response = await self.client.get(endpoint, params=params)

                if response.status_code in (401, 403):
                    raise FootballAuthError(
                        "Authentication failed", status_code=response.status_code
                    )
                elif response.status_code == 404:
                    raise FootballNotFoundError(
                        f"Resource not found: {endpoint}", status_code=404
                    )
                elif response.status_code == 429:
                    wait_time = 2 ** retry_count
                    logger.warning(f"Rate limited, waiting {wait_time}s...")
                    await asyncio.sleep(wait_time)
                    retry_count += 1
                    last_error = FootballRateLimitError("Rate limit exceeded", status_code=429)
                    continue
                elif response.status_code >= 500:
                    wait_time = 2 ** retry_count
                    logger.warning(
                        f"Server error {response.status_code}, "
                        f"retrying in {wait_time}s..."
                    )
                    await asyncio.sleep(wait_time)
                    retry_count += 1
                    last_error = FootballAPIError(
                        f"Server error {response.status_code}",
                        status_code=response.status_code,
                    )
                    continue

                response.raise_for_status()
                data = response.json()

            except httpx.TimeoutException as e:
                last_error = e
                retry_count += 1
                if retry_count < self.config.max_retries:
                    logger.warning(f"Timeout, retrying ({retry_count})...")
                    await asyncio.sleep(2)
                continue

            except httpx.HTTPStatusError as e:
                raise FootballAPIError(
                    f"HTTP error on {endpoint}: {e}", status_code=e.response.status_code
                ) from e

            except httpx.RequestError as e:
                last_error = e
                logger.error(f"Network error: {e}")
                break

            # The provider reports quota and parameter problems in-band.
            errors = data.get("errors")
            if errors:
                if isinstance(errors, dict):
                    message = "; ".join(f"{k}: {v}" for k, v in errors.items())
                else:
                    message = str(errors)
                if "rate" in message.lower() or "limit" in message.lower():
                    raise FootballRateLimitError(f"Provider quota error: {message}")
                raise FootballAPIError(f"Provider error on {endpoint}: {message}")

            return data.get("response") or []

        if isinstance(last_error, FootballRateLimitError):
            raise FootballRateLimitError(
                f"Still rate limited after {retry_count} retries", status_code=429
            )
        raise FootballAPIError(f"Request failed after {retry_count} retries: {last_error}")

    # ------------------------------------------------------------------
    # Fixtures
    # ------------------------------------------------------------------

    async def fetch_next_event(self, team_id: int, season: int) -> Fixture | None:
        logger.info(f"Fetching next fixture for team {team_id} (season {season})")
        items = await self._request(
            "fixtures",
            {"team": team_id, "season": season, "next": 1},
            purpose="next fixture",
        )
        if not items:
            logger.warning(f"No upcoming fixture returned for team {team_id}")
            return None
        return Fixture.from_api(items[0])

    async def fetch_event(self, fixture_id: int | str) -> Fixture:
        items = await self._request("fixtures", {"id": fixture_id}, purpose="fixture")
        if not items:
            raise FootballNotFoundError(f"Fixture {fixture_id} not found")
        return Fixture.from_api(items[0])

    async def fetch_status(self, fixture_id: int | str) -> str | None:
        """Raw short status code of a fixture."""
        items = await self._request("fixtures", {"id": fixture_id}, purpose="status check")
        if not items:
            return None
        return ((items[0].get("fixture") or {}).get("status") or {}).get("short")

    async def fetch_lineups(self, fixture_id: int | str) -> list[TeamLineup]:
        logger.info(f"Fetching lineups for fixture {fixture_id}")
        items = await self._request(
            "fixtures/lineups", {"fixture": fixture_id}, purpose="lineups"
        )
        lineups = [TeamLineup.from_api(item) for item in items if item.get("team")]
        if not lineups:
            logger.warning(f"Provider returned no lineups for fixture {fixture_id}")
        return lineups

    async def fetch_final_data(self, fixture_id: int | str) -> FinalResult:
        logger.info(f"Fetching final data for fixture {fixture_id}")
        fixtures, events, statistics = await asyncio.gather(
            self._request("fixtures", {"id": fixture_id}, purpose="final fixture"),
            self._request("fixtures/events", {"fixture": fixture_id}, purpose="final events"),
            self._request(
                "fixtures/statistics", {"fixture": fixture_id}, purpose="final statistics"
            ),
        )
        if not fixtures:
            raise FootballNotFoundError(f"Fixture {fixture_id} not found")
        return FinalResult(
            fixture=Fixture.from_api(fixtures[0]),
            events=[MatchEvent.from_api(e) for e in events],
            statistics=[TeamStatistics.from_api(s) for s in statistics],
        )

    async def fetch_last_results(
        self,
        team_id: int,
        league_id: int,
        season: int,
        count: int = 5,
    ) -> list[RecentResult]:
        items = await self._request(
            "fixtures",
            {"team": team_id, "league": league_id, "season": season, "last": count},
            purpose="recent results",
        )
        fixtures = [Fixture.from_api(item) for item in items]
        fixtures.sort(key=lambda f: f.date, reverse=True)
        return [RecentResult.from_fixture(f, team_id) for f in fixtures[:count]]


def create_football_client(
    api_key: str | None = None,
    config: FootballConfig | None = None,
    usage: ApiUsageTracker | None = None,
) -> FootballClient:
    return FootballClient(config=config, api_key=api_key, usage=usage)
