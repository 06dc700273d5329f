from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from matchthread.lifecycle.models import Competition, Event, Team, Venue


def _name(data: dict[str, Any] | None, default: str = "") -> str:
    return (data or {}).get("name") or default


class Score(BaseModel):
    home: int | None = None
    away: int | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> Score:
        data = data or {}
        return cls(home=data.get("home"), away=data.get("away"))

    @property
    def known(self) -> bool:
        return self.home is not None and self.away is not None


class Fixture(BaseModel):
    id: int
    date: datetime
    status: str = "NS"
    status_long: str = ""
    elapsed: int | None = None
    referee: str | None = None
    venue_name: str = ""
    venue_city: str = ""
    league_id: int | None = None
    league_name: str = ""
    season: int | None = None
    round: str = ""
    home_id: int | None = None
    home_name: str = ""
    away_id: int | None = None
    away_name: str = ""
    goals: Score = Field(default_factory=Score)
    fulltime: Score = Field(default_factory=Score)
    extratime: Score = Field(default_factory=Score)
    penalty: Score = Field(default_factory=Score)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Fixture:
        fixture = data.get("fixture", {})
        league = data.get("league", {})
        teams = data.get("teams", {})
        score = data.get("score", {})
        status = fixture.get("status") or {}
        venue = fixture.get("venue") or {}
        home = teams.get("home") or {}
        away = teams.get("away") or {}

        return cls(
            id=fixture.get("id"),
            date=fixture.get("date"),
            status=status.get("short") or "NS",
            status_long=status.get("long") or "",
            elapsed=status.get("elapsed"),
            referee=fixture.get("referee"),
            venue_name=venue.get("name") or "",
            venue_city=venue.get("city") or "",
            league_id=league.get("id"),
            league_name=league.get("name") or "",
            season=league.get("season"),
            round=league.get("round") or "",
            home_id=home.get("id"),
            home_name=home.get("name") or "",
            away_id=away.get("id"),
            away_name=away.get("name") or "",
            goals=Score.from_api(data.get("goals")),
            fulltime=Score.from_api(score.get("fulltime")),
            extratime=Score.from_api(score.get("extratime")),
            penalty=Score.from_api(score.get("penalty")),
        )

    def to_event(self) -> Event:
        venue = None
        if self.venue_name or self.venue_city:
            venue = Venue(name=self.venue_name, city=self.venue_city)
        return Event(
            event_id=self.id,
            start=self.date,
            home=Team(id=self.home_id, name=self.home_name),
            away=Team(id=self.away_id, name=self.away_name),
            competition=Competition(
                id=self.league_id,
                name=self.league_name,
                season=self.season,
                round=self.round,
            ),
            venue=venue,
            referee=self.referee,
        )


class Player(BaseModel):
    name: str
    number: int | None = None
    position: str | None = None


class TeamLineup(BaseModel):
    team_id: int | None = None
    team_name: str = ""
    coach: str | None = None
    formation: str | None = None
    start_xi: list[Player] = Field(default_factory=list)
    substitutes: list[Player] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return len(self.start_xi) >= 11

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> TeamLineup:
        def players(entries: list[dict[str, Any]] | None) -> list[Player]:
            result = []
            for entry in entries or []:
                player = (entry or {}).get("player") or {}
                if not player.get("name"):
                    continue
                result.append(
                    Player(
                        name=player["name"],
                        number=player.get("number"),
                        position=player.get("pos"),
                    )
                )
            return result

        team = data.get("team") or {}
        return cls(
            team_id=team.get("id"),
            team_name=team.get("name") or "",
            coach=(data.get("coach") or {}).get("name"),
            formation=data.get("formation"),
            start_xi=players(data.get("startXI")),
            substitutes=players(data.get("substitutes")),
        )


class MatchEvent(BaseModel):
    """Timeline entry (goal, card, substitution)."""

    type: str
    detail: str = ""
    elapsed: int | None = None
    extra: int | None = None
    team_name: str = ""
    player_name: str = ""

    @property
    def is_goal(self) -> bool:
        return self.type == "Goal" and self.detail != "Missed Penalty"

    @property
    def minute(self) -> str:
        if self.elapsed is None:
            return "?"
        if self.extra:
            return f"{self.elapsed}+{self.extra}'"
        return f"{self.elapsed}'"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> MatchEvent:
        time = data.get("time") or {}
        return cls(
            type=data.get("type") or "",
            detail=data.get("detail") or "",
            elapsed=time.get("elapsed"),
            extra=time.get("extra"),
            team_name=_name(data.get("team")),
            player_name=_name(data.get("player"), "Unknown"),
        )


class TeamStatistics(BaseModel):
    team_name: str = ""
    values: list[tuple[str, str]] = Field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> TeamStatistics:
        values = []
        for stat in data.get("statistics") or []:
            value = stat.get("value")
            values.append((stat.get("type") or "", "-" if value is None else str(value)))
        return cls(team_name=_name(data.get("team")), values=values)


class FinalResult(BaseModel):
    fixture: Fixture
    events: list[MatchEvent] = Field(default_factory=list)
    statistics: list[TeamStatistics] = Field(default_factory=list)

    @property
    def goals(self) -> list[MatchEvent]:
        return [e for e in self.events if e.is_goal]


class RecentResult(BaseModel):
    """A finished fixture seen from one team's side."""

    fixture_id: int
    date: datetime
    opponent: str
    home: bool
    team_score: int | None = None
    opponent_score: int | None = None

    @property
    def outcome(self) -> Literal["W", "D", "L", "?"]:
        if self.team_score is None or self.opponent_score is None:
            return "?"
        if self.team_score > self.opponent_score:
            return "W"
        if self.team_score < self.opponent_score:
            return "L"
        return "D"

    @classmethod
    def from_fixture(cls, fixture: Fixture, team_id: int) -> RecentResult:
        home = fixture.home_id == team_id
        score = fixture.fulltime if fixture.fulltime.known else fixture.goals
        return cls(
            fixture_id=fixture.id,
            date=fixture.date,
            opponent=fixture.away_name if home else fixture.home_name,
            home=home,
            team_score=score.home if home else score.away,
            opponent_score=score.away if home else score.home,
        )
