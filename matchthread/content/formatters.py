"""Text formatting for announcements (Telegram HTML)."""

import html
import re
import unicodedata
from datetime import datetime

import pytz

from matchthread.lifecycle.models import Event
from matchthread.services.football.models import (
    Fixture,
    MatchEvent,
    RecentResult,
    TeamLineup,
    TeamStatistics,
)

_OUTCOME_LABELS = {"W": "✅ W", "D": "➖ D", "L": "❌ L", "?": "❔"}

_IRREGULAR_ENDINGS = {
    "PST": "Match postponed",
    "CANC": "Match cancelled",
    "ABD": "Match abandoned",
    "AWD": "Technical loss awarded",
    "WO": "Walkover",
}

_STAT_LABELS = {
    "Ball Possession": "Possession",
    "Total Shots": "Shots",
    "Shots on Goal": "On target",
    "Shots off Goal": "Off target",
    "Blocked Shots": "Blocked",
    "Shots insidebox": "Inside box",
    "Shots outsidebox": "Outside box",
    "Corner Kicks": "Corners",
    "Goalkeeper Saves": "Saves",
    "Total passes": "Passes",
    "Passes accurate": "Passes acc.",
    "Passes %": "Pass %",
    "expected_goals": "xG",
    "Expected goals": "xG",
}


def escape(text: str | None) -> str:
    """Escape text for Telegram HTML parse mode."""
    return html.escape(text or "", quote=False)


def _strip_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFD", text)
    return "".join(c for c in normalized if unicodedata.category(c) != "Mn")


def format_competition(name: str) -> str:
    if not name:
        return "FIXTURE"
    return _strip_accents(name).upper()


def format_round(round_name: str) -> str:
    """'Regular Season - 5' -> 'ROUND 5', 'Group Stage - A' -> 'GROUP A'."""
    if not round_name:
        return ""
    match = re.search(r"Regular Season\s*-\s*(\d+)", round_name, re.IGNORECASE)
    if match:
        return f"ROUND {match.group(1)}"
    match = re.search(r"Group(?: Stage)?\s*-?\s*(\w+)$", round_name, re.IGNORECASE)
    if match:
        return f"GROUP {match.group(1).upper()}"
    return round_name.upper()


def format_kickoff(start: datetime, timezone_name: str = "UTC") -> str:
    tz = pytz.timezone(timezone_name)
    local = start.astimezone(tz)
    return local.strftime("%A %d %B %Y, %H:%M %Z")


def format_title(tag: str, event: Event, centre: str | None = None) -> str:
    """`[TAG] | COMPETITION | HOME X AWAY | ROUND`, HTML-escaped."""
    parts = [f"[{tag}]", format_competition(event.competition.name)]
    parts.append(centre or f"{event.home.name.upper()} X {event.away.name.upper()}")
    round_label = format_round(event.competition.round)
    if round_label:
        parts.append(round_label)
    return escape(" | ".join(parts))


def format_header(event: Event, timezone_name: str) -> str:
    lines = [f"<b>{escape(event.home.name)}</b> vs <b>{escape(event.away.name)}</b>"]
    if event.venue is not None:
        place = ", ".join(p for p in (event.venue.name, event.venue.city) if p)
        if place:
            lines.append(f"📍 <i>{escape(place)}</i>")
    lines.append(f"🕓 <i>{escape(format_kickoff(event.start, timezone_name))}</i>")
    if event.referee:
        lines.append(f"🧑‍⚖️ Referee: {escape(event.referee)}")
    return "\n".join(lines)


def format_recent_results(team_name: str, results: list[RecentResult]) -> str:
    heading = f"📉 <b>Last {len(results)} for {escape(team_name)}</b>"
    if not results:
        return f"{heading}\n<i>No recent results.</i>"
    lines = [heading]
    for r in results:
        score = "?-?" if r.outcome == "?" else f"{r.team_score}-{r.opponent_score}"
        venue = "H" if r.home else "A"
        lines.append(f"{_OUTCOME_LABELS[r.outcome]} {score} vs {escape(r.opponent)} ({venue})")
    return "\n".join(lines)


def format_lineups(lineups: list[TeamLineup]) -> str:
    if not lineups:
        return "<i>Lineups not available yet.</i>"

    blocks = []
    for lineup in lineups:
        heading = f"<b>{escape(lineup.team_name)}</b>"
        if lineup.formation:
            heading += f" ({escape(lineup.formation)})"
        starters = ", ".join(escape(p.name) for p in lineup.start_xi) or "N/A"
        subs = ", ".join(escape(p.name) for p in lineup.substitutes) or "N/A"
        blocks.append(
            f"{heading}\n"
            f"👔 Coach: {escape(lineup.coach or 'Unknown')}\n"
            f"🔴 XI: {starters}\n"
            f"⚪ Bench: {subs}"
        )
    return "\n\n".join(blocks)


def format_score_line(fixture: Fixture) -> str:
    score = fixture.goals if fixture.goals.known else fixture.fulltime
    line = (
        f"{fixture.home_name.upper()} {score.home} x {score.away} "
        f"{fixture.away_name.upper()}"
    )
    if fixture.status == "AET":
        line += " (after extra time)"
    elif fixture.status == "PEN":
        line += f" (penalties: {fixture.penalty.home} x {fixture.penalty.away})"
    return escape(line)


def format_goals(goals: list[MatchEvent]) -> str:
    if not goals:
        return "<i>No goals.</i>"
    lines = []
    for goal in goals:
        note = ""
        if goal.detail == "Own Goal":
            note = " (OG)"
        elif goal.detail == "Penalty":
            note = " (pen)"
        lines.append(
            f"⚽️ {escape(goal.team_name)}: {escape(goal.player_name)}{note} {goal.minute}"
        )
    return "\n".join(lines)


def format_statistics(statistics: list[TeamStatistics]) -> str:
    """Side-by-side statistics in a monospace block."""
    if len(statistics) < 2:
        return "<i>Statistics unavailable.</i>"

    home, away = statistics[0], statistics[1]
    away_values = dict(away.values)
    rows = [
        (_STAT_LABELS.get(name, name), value, away_values.get(name, "-"))
        for name, value in home.values
    ]
    if not rows:
        return "<i>Statistics unavailable.</i>"

    label_width = max(len(r[0]) for r in rows)
    value_width = max(len(r[1]) for r in rows)
    header = f"{'':<{label_width}}  {home.team_name} / {away.team_name}"
    lines = [header]
    for label, home_value, away_value in rows:
        lines.append(f"{label:<{label_width}}  {home_value:>{value_width}} - {away_value}")
    return "<pre>" + escape("\n".join(lines)) + "</pre>"


def describe_irregular_ending(status: str | None, status_long: str = "") -> str:
    """Human description of a postponed, cancelled or otherwise irregular end."""
    code = (status or "").strip().upper()
    if code in _IRREGULAR_ENDINGS:
        return _IRREGULAR_ENDINGS[code]
    if status_long:
        return status_long
    return "Match did not finish normally"
