"""Football provider client and response models."""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from matchthread.services.football import (
    ApiUsageTracker,
    FootballAPIError,
    FootballAuthError,
    FootballClient,
    FootballConfig,
    FootballNotFoundError,
    Fixture,
    MatchEvent,
    RecentResult,
    TeamLineup,
)


def fixture_payload(
    fixture_id: int = 1208021,
    status: str = "NS",
    home: tuple[int, str] = (42, "Arsenal"),
    away: tuple[int, str] = (49, "Chelsea"),
    goals: tuple[int | None, int | None] = (None, None),
    date: str = "2026-10-24T15:00:00+00:00",
) -> dict:
    return {
        "fixture": {
            "id": fixture_id,
            "referee": "Michael Oliver",
            "date": date,
            "venue": {"name": "Emirates Stadium", "city": "London"},
            "status": {"long": "Not Started", "short": status, "elapsed": None},
        },
        "league": {"id": 39, "name": "Premier League", "season": 2026, "round": "Regular Season - 9"},
        "teams": {"home": {"id": home[0], "name": home[1]}, "away": {"id": away[0], "name": away[1]}},
        "goals": {"home": goals[0], "away": goals[1]},
        "score": {"fulltime": {"home": goals[0], "away": goals[1]}},
    }


def body(*items, errors=None) -> dict:
    return {"errors": errors or [], "results": len(items), "response": list(items)}


def run_client(handler, coro_fn, usage=None, **config):
    transport = httpx.MockTransport(handler)
    client = FootballClient(FootballConfig(**config), api_key="secret", usage=usage, transport=transport)

    async def run():
        async with client:
            return await coro_fn(client)

    return asyncio.run(run())


# ============================================================================
# Models
# ============================================================================


def test_fixture_from_api_to_event() -> None:
    fixture = Fixture.from_api(fixture_payload(date="2026-10-24T16:00:00+01:00"))
    event = fixture.to_event()

    assert event.event_id == 1208021
    assert event.start == datetime(2026, 10, 24, 15, 0, tzinfo=timezone.utc)
    assert event.matchup == "Arsenal vs Chelsea"
    assert event.competition.round == "Regular Season - 9"
    assert event.venue.city == "London"
    assert event.referee == "Michael Oliver"


def test_lineup_completeness() -> None:
    entry = {
        "team": {"id": 42, "name": "Arsenal"},
        "coach": {"name": "Mikel Arteta"},
        "formation": "4-3-3",
        "startXI": [{"player": {"name": f"Player {n}", "number": n, "pos": "M"}} for n in range(1, 12)],
        "substitutes": [{"player": {"name": None}}],
    }
    lineup = TeamLineup.from_api(entry)

    assert lineup.complete
    assert lineup.coach == "Mikel Arteta"
    assert lineup.substitutes == []
    entry["startXI"] = entry["startXI"][:10]
    assert not TeamLineup.from_api(entry).complete


def test_match_event_goal_and_minute() -> None:
    goal = MatchEvent.from_api(
        {"time": {"elapsed": 90, "extra": 3}, "team": {"name": "Arsenal"}, "player": {"name": "Saka"}, "type": "Goal", "detail": "Normal Goal"}
    )
    miss = MatchEvent.from_api({"time": {"elapsed": 30}, "type": "Goal", "detail": "Missed Penalty"})

    assert goal.is_goal and goal.minute == "90+3'"
    assert not miss.is_goal and miss.minute == "30'"
    assert miss.player_name == "Unknown"


@pytest.mark.parametrize(
    "home,goals,expected",
    [(True, (2, 1), "W"), (False, (2, 1), "L"), (True, (1, 1), "D"), (True, (None, None), "?")],
)
def test_recent_result_outcome(home, goals, expected) -> None:
    teams = {"home": (42, "Arsenal"), "away": (49, "Chelsea")} if home else {"home": (49, "Chelsea"), "away": (42, "Arsenal")}
    fixture = Fixture.from_api(fixture_payload(status="FT", goals=goals, **teams))

    result = RecentResult.from_fixture(fixture, team_id=42)

    assert result.outcome == expected
    assert result.opponent == "Chelsea"
    assert result.home is home


# ============================================================================
# Client
# ============================================================================


def test_fetch_status_sends_provider_headers() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=body(fixture_payload(status="2H")))

    status = run_client(handler, lambda c: c.fetch_status(1208021))

    assert status == "2H"
    assert seen[0].url.path.endswith("/fixtures")
    assert seen[0].url.params["id"] == "1208021"
    assert seen[0].headers["x-rapidapi-key"] == "secret"
    assert seen[0].headers["x-rapidapi-host"] == "api-football-v1.p.rapidapi.com"


def test_fetch_next_event_empty_response() -> None:
    result = run_client(
        lambda request: httpx.Response(200, json=body()),
        lambda c: c.fetch_next_event(42, 2026),
    )
    assert result is None


def test_fetch_final_data_combines_endpoints() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/fixtures/events"):
            return httpx.Response(200, json=body(
                {"time": {"elapsed": 12}, "team": {"name": "Arsenal"}, "player": {"name": "Saka"}, "type": "Goal", "detail": "Normal Goal"},
                {"time": {"elapsed": 40}, "team": {"name": "Chelsea"}, "player": {"name": "Palmer"}, "type": "Card", "detail": "Yellow Card"},
            ))
        if path.endswith("/fixtures/statistics"):
            return httpx.Response(200, json=body(
                {"team": {"name": "Arsenal"}, "statistics": [{"type": "Ball Possession", "value": "58%"}]},
            ))
        return httpx.Response(200, json=body(fixture_payload(status="FT", goals=(1, 0))))

    result = run_client(handler, lambda c: c.fetch_final_data(1208021))

    assert result.fixture.status == "FT"
    assert [g.player_name for g in result.goals] == ["Saka"]
    assert result.statistics[0].values == [("Ball Possession", "58%")]


def test_not_found_and_auth_errors_are_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404 if "id" in request.url.params else 403)

    with pytest.raises(FootballNotFoundError):
        run_client(handler, lambda c: c.fetch_event(1))
    with pytest.raises(FootballAuthError):
        run_client(handler, lambda c: c.fetch_next_event(42, 2026))
    assert len(calls) == 2


def test_in_band_provider_errors_raise() -> None:
    handler = lambda request: httpx.Response(200, json=body(errors={"token": "Invalid key"}))

    with pytest.raises(FootballAPIError, match="token: Invalid key"):
        run_client(handler, lambda c: c.fetch_status(1))


def test_network_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FootballAPIError, match="connection refused"):
        run_client(handler, lambda c: c.fetch_status(1))


def test_requests_are_counted(tmp_path) -> None:
    usage = ApiUsageTracker(tmp_path / "api_usage.yaml", daily_limit=10)
    handler = lambda request: httpx.Response(200, json=body(fixture_payload()))

    async def two_calls(client: FootballClient):
        await client.fetch_status(1)
        await client.fetch_event(1)

    run_client(handler, two_calls, usage=usage)

    assert usage.count() == 2
    assert usage.remaining() == 8
    assert [call.purpose for call in usage.today().details] == ["status check", "fixture"]


def test_usage_tracker_limit(tmp_path) -> None:
    usage = ApiUsageTracker(tmp_path / "api_usage.yaml", daily_limit=2)
    assert usage.can_call()
    usage.record("fixtures")
    assert usage.record("fixtures") == 2
    assert not usage.can_call()
    assert usage.remaining() == 0


def test_usage_tracker_resets_on_a_new_day(tmp_path) -> None:
    path = tmp_path / "api_usage.yaml"
    path.write_text("date: '2000-01-01'\ncalls: 99\n")

    assert ApiUsageTracker(path).count() == 0
