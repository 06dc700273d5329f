"""Builds stage announcements from football data provider responses."""

import asyncio
import logging

from matchthread.lifecycle.exceptions import ContentUnavailableError
from matchthread.lifecycle.models import Event, Stage, StageContent, StatusReading
from matchthread.services.football import FootballAPIError, FootballClient, RecentResult

from .formatters import (
    describe_irregular_ending,
    escape,
    format_competition,
    format_goals,
    format_header,
    format_lineups,
    format_recent_results,
    format_round,
    format_score_line,
    format_statistics,
    format_title,
)

logger = logging.getLogger(__name__)

_TAGS = {
    Stage.PRE_EVENT: "PRE-MATCH",
    Stage.LIVE_EVENT: "MATCH THREAD",
    Stage.POST_EVENT: "POST-MATCH",
}

DEFAULT_SIGNATURE = "<i>Posted automatically by matchthread.</i>"


class FixtureContentAssembler:
    """Assembles pre-match, live and post-match announcements.

    Provider failures are reported as `ContentUnavailableError` so the stage
    scheduler can retry and eventually fall back to `placeholder`.
    """

    def __init__(
        self,
        client: FootballClient,
        display_timezone: str = "UTC",
        recent_results: int = 5,
        signature: str = DEFAULT_SIGNATURE,
    ):
        self.client = client
        self.display_timezone = display_timezone
        self.recent_results = recent_results
        self.signature = signature

    async def assemble(
        self,
        event: Event,
        stage: Stage,
        *,
        irregular: bool = False,
        reading: StatusReading | None = None,
    ) -> StageContent | None:
        try:
            if stage is Stage.PRE_EVENT:
                return await self._pre_event(event)
            if stage is Stage.LIVE_EVENT:
                return await self._live_event(event)
            if irregular:
                return await self._irregular_ending(event, reading)
            return await self._post_event(event)
        except FootballAPIError as e:
            raise ContentUnavailableError(
                f"Provider data unavailable for {stage.value} of event {event.key}: {e}"
            ) from e

    def placeholder(
        self,
        event: Event,
        stage: Stage,
        *,
        irregular: bool = False,
        reading: StatusReading | None = None,
    ) -> StageContent:
        """Minimal announcement built from the event alone."""
        sections = [self._header(event)]
        if stage is Stage.LIVE_EVENT:
            sections.append("<i>Lineups not available yet.</i>")
        elif stage is Stage.POST_EVENT:
            if irregular:
                raw = reading.raw if reading else None
                sections.append(f"⚠️ <b>{escape(describe_irregular_ending(raw))}</b>")
            else:
                sections.append("<i>Final result details are not available yet.</i>")
        sections.append(self.signature)

        return StageContent(
            title=format_title(_TAGS[stage], event),
            body="\n\n".join(sections),
            complete=True,
            degraded=True,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _header(self, event: Event) -> str:
        heading = format_competition(event.competition.name)
        round_label = format_round(event.competition.round)
        if round_label:
            heading += f" - {round_label}"
        return f"🏆 <b>{escape(heading)}</b>\n\n" + format_header(event, self.display_timezone)

    async def _recent_form(self, event: Event) -> str:
        league = event.competition
        if league.id is None or league.season is None:
            logger.debug(f"Event {event.key} has no league/season; skipping recent form")
            return ""

        async def results_for(team_id: int | None) -> list[RecentResult]:
            if team_id is None:
                return []
            return await self.client.fetch_last_results(
                team_id, league.id, league.season, count=self.recent_results
            )

        home, away = await asyncio.gather(
            results_for(event.home.id), results_for(event.away.id)
        )
        return (
            format_recent_results(event.home.name, home)
            + "\n\n"
            + format_recent_results(event.away.name, away)
        )

    async def _pre_event(self, event: Event) -> StageContent:
        sections = [self._header(event)]
        form = await self._recent_form(event)
        if form:
            sections.append(form)
        sections.append(self.signature)
        return StageContent(
            title=format_title(_TAGS[Stage.PRE_EVENT], event),
            body="\n\n".join(sections),
        )

    async def _live_event(self, event: Event) -> StageContent:
        lineups = await self.client.fetch_lineups(event.event_id)
        complete = len(lineups) >= 2 and all(lineup.complete for lineup in lineups)
        if not complete:
            logger.info(f"Lineups for event {event.key} incomplete ({len(lineups)} teams)")

        sections = [
            self._header(event),
            "👥 <b>Lineups</b>\n\n" + format_lineups(lineups),
        ]
        form = await self._recent_form(event)
        if form:
            sections.append(form)
        sections.append(self.signature)
        return StageContent(
            title=format_title(_TAGS[Stage.LIVE_EVENT], event),
            body="\n\n".join(sections),
            complete=complete,
        )

    async def _post_event(self, event: Event) -> StageContent:
        final = await self.client.fetch_final_data(event.event_id)
        fixture = final.fixture
        score = fixture.goals if fixture.goals.known else fixture.fulltime
        if not score.known:
            raise ContentUnavailableError(f"Final score for event {event.key} not published yet")

        centre = (
            f"{fixture.home_name.upper()} {score.home} X {score.away} "
            f"{fixture.away_name.upper()}"
        )
        sections = [
            self._header(event),
            f"📊 <b>{format_score_line(fixture)}</b>",
            "⚽ <b>Goals</b>\n" + format_goals(final.goals),
            "📈 <b>Statistics</b>\n" + format_statistics(final.statistics),
            self.signature,
        ]
        return StageContent(
            title=format_title(_TAGS[Stage.POST_EVENT], event, centre=centre),
            body="\n\n".join(sections),
            complete=bool(final.statistics),
        )

    async def _irregular_ending(
        self, event: Event, reading: StatusReading | None
    ) -> StageContent:
        fixture = await self.client.fetch_event(event.event_id)
        raw = fixture.status or (reading.raw if reading else None)
        description = describe_irregular_ending(raw, fixture.status_long)
        logger.warning(f"Event {event.key} ended irregularly: {raw} ({description})")

        sections = [
            self._header(event),
            f"⚠️ <b>{escape(description)}</b>",
        ]
        if fixture.goals.known:
            sections.append(f"Score when stopped: {format_score_line(fixture)}")
        sections.append(self.signature)
        return StageContent(
            title=format_title(
                _TAGS[Stage.POST_EVENT],
                event,
                centre=f"{event.home.name.upper()} X {event.away.name.upper()} "
                f"({description.upper()})",
            ),
            body="\n\n".join(sections),
        )
