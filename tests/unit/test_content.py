"""Announcement formatting and assembly."""

import asyncio
from datetime import datetime, timezone

import pytest

from fakes import KICKOFF, make_event
from matchthread.content import FixtureContentAssembler
from matchthread.content.formatters import (
    describe_irregular_ending,
    format_competition,
    format_kickoff,
    format_round,
    format_score_line,
    format_statistics,
    format_title,
)
from matchthread.lifecycle import ContentUnavailableError, Stage, StatusCategory, StatusReading
from matchthread.services.football import (
    FinalResult,
    FootballAPIError,
    Fixture,
    MatchEvent,
    Player,
    RecentResult,
    Score,
    TeamLineup,
    TeamStatistics,
)


def final_fixture(status: str = "FT", goals=(2, 1), status_long: str = "Match Finished") -> Fixture:
    return Fixture(
        id=1208021,
        date=KICKOFF,
        status=status,
        status_long=status_long,
        home_id=42,
        home_name="Arsenal",
        away_id=49,
        away_name="Chelsea",
        goals=Score(home=goals[0], away=goals[1]),
        fulltime=Score(home=goals[0], away=goals[1]),
        penalty=Score(home=4, away=3),
    )


def lineup(team: str, starters: int = 11) -> TeamLineup:
    return TeamLineup(
        team_name=team,
        formation="4-3-3",
        coach="Coach",
        start_xi=[Player(name=f"{team} {n}") for n in range(starters)],
    )


class FakeFootballClient:
    def __init__(self, lineups=None, final=None, fixture=None, error=None):
        self.lineups = lineups or []
        self.final = final
        self.fixture = fixture
        self.error = error
        self.requests: list[str] = []

    def _check(self, name: str) -> None:
        self.requests.append(name)
        if self.error is not None:
            raise self.error

    async def fetch_last_results(self, team_id, league_id, season, count=5):
        self._check("last")
        return [
            RecentResult(
                fixture_id=1, date=KICKOFF, opponent="Spurs", home=True, team_score=3, opponent_score=0
            )
        ]

    async def fetch_lineups(self, fixture_id):
        self._check("lineups")
        return self.lineups

    async def fetch_final_data(self, fixture_id):
        self._check("final")
        return self.final

    async def fetch_event(self, fixture_id):
        self._check("fixture")
        return self.fixture


def assemble(client, stage, **kwargs):
    assembler = FixtureContentAssembler(client, display_timezone="Europe/London")
    return asyncio.run(assembler.assemble(make_event(), stage, **kwargs))


# ============================================================================
# Formatters
# ============================================================================


@pytest.mark.parametrize(
    "name,expected",
    [("Premier League", "PREMIER LEAGUE"), ("Brasileirão Série A", "BRASILEIRAO SERIE A"), ("", "FIXTURE")],
)
def test_format_competition(name, expected) -> None:
    assert format_competition(name) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [("Regular Season - 9", "ROUND 9"), ("Group Stage - C", "GROUP C"), ("Final", "FINAL"), ("", "")],
)
def test_format_round(raw, expected) -> None:
    assert format_round(raw) == expected


def test_format_kickoff_uses_display_timezone() -> None:
    summer = datetime(2026, 7, 1, 14, 0, tzinfo=timezone.utc)
    assert format_kickoff(summer, "Europe/London") == "Wednesday 01 July 2026, 15:00 BST"
    assert format_kickoff(KICKOFF, "UTC").endswith("15:00 UTC")


def test_format_title() -> None:
    assert format_title("PRE-MATCH", make_event()) == (
        "[PRE-MATCH] | PREMIER LEAGUE | ARSENAL X CHELSEA | ROUND 9"
    )


def test_score_line_notes_extra_time_and_penalties() -> None:
    assert format_score_line(final_fixture("AET")).endswith("(after extra time)")
    assert format_score_line(final_fixture("PEN", goals=(1, 1))) == (
        "ARSENAL 1 x 1 CHELSEA (penalties: 4 x 3)"
    )


def test_statistics_table_needs_both_teams() -> None:
    home = TeamStatistics(team_name="Arsenal", values=[("Ball Possession", "58%"), ("Total Shots", "14")])
    away = TeamStatistics(team_name="Chelsea", values=[("Ball Possession", "42%")])

    table = format_statistics([home, away])

    assert table.startswith("<pre>") and table.endswith("</pre>")
    assert "Possession  58% - 42%" in table
    assert "Shots" + " " * 8 + "14 - -" in table
    assert "unavailable" in format_statistics([home])


def test_describe_irregular_ending() -> None:
    assert describe_irregular_ending("PST") == "Match postponed"
    assert describe_irregular_ending("XYZ", "Delayed") == "Delayed"
    assert describe_irregular_ending(None) == "Match did not finish normally"


# ============================================================================
# Assembler
# ============================================================================


def test_pre_event_includes_recent_form() -> None:
    client = FakeFootballClient()
    content = assemble(client, Stage.PRE_EVENT)

    assert content.complete
    assert content.title.startswith("[PRE-MATCH]")
    assert "Last 1 for Arsenal" in content.body
    assert "Emirates Stadium, London" in content.body
    assert client.requests == ["last", "last"]


def test_live_event_incomplete_until_both_lineups_announced() -> None:
    partial = assemble(FakeFootballClient(lineups=[lineup("Arsenal")]), Stage.LIVE_EVENT)
    short = assemble(FakeFootballClient(lineups=[lineup("Arsenal"), lineup("Chelsea", 9)]), Stage.LIVE_EVENT)
    full = assemble(FakeFootballClient(lineups=[lineup("Arsenal"), lineup("Chelsea")]), Stage.LIVE_EVENT)

    assert not partial.complete
    assert not short.complete
    assert full.complete
    assert "Chelsea 10" in full.body


def test_post_event_reports_final_score() -> None:
    final = FinalResult(
        fixture=final_fixture(),
        events=[MatchEvent(type="Goal", detail="Penalty", elapsed=55, team_name="Arsenal", player_name="Saka")],
        statistics=[TeamStatistics(team_name="Arsenal"), TeamStatistics(team_name="Chelsea")],
    )
    content = assemble(FakeFootballClient(final=final), Stage.POST_EVENT)

    assert "ARSENAL 2 X 1 CHELSEA" in content.title
    assert "Saka (pen) 55'" in content.body
    assert content.complete


def test_post_event_without_score_is_unavailable() -> None:
    final = FinalResult(fixture=final_fixture(goals=(None, None)))
    with pytest.raises(ContentUnavailableError):
        assemble(FakeFootballClient(final=final), Stage.POST_EVENT)


def test_irregular_ending_describes_status() -> None:
    client = FakeFootballClient(fixture=final_fixture("PST", goals=(None, None), status_long="Match Postponed"))
    reading = StatusReading(raw="PST", category=StatusCategory.FINISHED_IRREGULAR)

    content = assemble(client, Stage.POST_EVENT, irregular=True, reading=reading)

    assert client.requests == ["fixture"]
    assert "(MATCH POSTPONED)" in content.title
    assert "Match postponed" in content.body
    assert "Score when stopped" not in content.body


def test_provider_errors_become_content_unavailable() -> None:
    client = FakeFootballClient(error=FootballAPIError("Server error 503", status_code=503))
    with pytest.raises(ContentUnavailableError, match="503"):
        assemble(client, Stage.LIVE_EVENT)


def test_placeholder_is_degraded() -> None:
    assembler = FixtureContentAssembler(FakeFootballClient())
    reading = StatusReading(raw="ABD", category=StatusCategory.FINISHED_IRREGULAR)

    content = assembler.placeholder(make_event(), Stage.POST_EVENT, irregular=True, reading=reading)

    assert content.degraded and content.complete
    assert "Match abandoned" in content.body
    assert content.title.startswith("[POST-MATCH]")
