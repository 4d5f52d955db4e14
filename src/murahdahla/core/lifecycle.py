"""Race lifecycle controller.

Per group: Idle -> Active(kind) -> Idle. Starting while a race is active
is a stop followed by a start, committed as one store transaction; the
chat side of the stop runs before the new race is announced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncEngine

from murahdahla.core.effects import SideEffects
from murahdahla.core.errors import NotFound
from murahdahla.core.games import RacePayload, announcement, submission_instructions
from murahdahla.core.leaderboard import LeaderboardRenderer, leaderboard_pages, rank, track
from murahdahla.db.repository import Repository, transaction
from murahdahla.models.race import (
    ChannelGroup,
    ChannelRole,
    Race,
    RaceKind,
    Submission,
    TrackedMessage,
)

logger = logging.getLogger(__name__)


@dataclass
class StoppedRace:
    """Everything the chat side of a stop needs, read before commit."""

    race: Race
    submissions: list[Submission] = field(default_factory=list)
    messages: list[TrackedMessage] = field(default_factory=list)

    def messages_for(self, role: ChannelRole) -> list[TrackedMessage]:
        return sorted(
            (m for m in self.messages if m.channel_role == role), key=lambda m: m.message_id
        )


class RaceController:
    def __init__(self, engine: AsyncEngine, renderer: LeaderboardRenderer) -> None:
        self.engine = engine
        self.renderer = renderer

    async def start(
        self,
        group: ChannelGroup,
        kind: RaceKind,
        payload: RacePayload,
        effects: SideEffects,
    ) -> Race:
        """Open a new race, stopping the active one first if there is one."""
        async with transaction(self.engine) as repo:
            stopped = await _deactivate(repo, group)
            race = await repo.create_race(
                group_id=group.id,
                game=payload.game,
                kind=kind,
                info=payload.info,
                url=payload.url,
            )
        if stopped is not None:
            logger.info("race_stopped group=%s race=%d", group.name, stopped.race.race_id)
            await self._finish(group, stopped, effects)
        logger.info(
            "race_started group=%s race=%d kind=%s game=%s",
            group.name,
            race.race_id,
            kind.value,
            race.game.value,
        )

        intro = "\n".join(
            [
                announcement(race.race_date, race.kind, race.game, race.info, race.url),
                submission_instructions(race.kind, race.game),
            ]
        )
        await self.renderer.sync(
            group, race, "leaderboard", leaderboard_pages(race, []), [], effects
        )
        intro_id = await effects.post(group.submission_channel_id, intro, "race announcement")
        if intro_id is not None:
            await track(
                self.engine, effects, intro_id, race, group.submission_channel_id, "submission"
            )
        return race

    async def stop(self, group: ChannelGroup, effects: SideEffects) -> Race | None:
        """End the active race. Returns None when nothing was running."""
        async with transaction(self.engine) as repo:
            stopped = await _deactivate(repo, group)
        if stopped is None:
            return None
        logger.info("race_stopped group=%s race=%d", group.name, stopped.race.race_id)
        await self._finish(group, stopped, effects)
        return stopped.race

    async def refresh(self, group: ChannelGroup, effects: SideEffects) -> tuple[Race, str]:
        """Re-publish the active race's leaderboard, else the most recent race's."""
        async with transaction(self.engine) as repo:
            race = await repo.get_active_race(group.id) or await repo.get_latest_race(group.id)
        if race is None:
            raise NotFound(f"{group.name} has not run a race yet.")
        text = await self.renderer.publish(group, race, effects)
        logger.info("leaderboard_refreshed group=%s race=%d", group.name, race.race_id)
        return race, text

    async def _finish(
        self, group: ChannelGroup, stopped: StoppedRace, effects: SideEffects
    ) -> None:
        """Move the final board into the submission channel and close the spoilers.

        The live board is only removed once the final board is visible.
        """
        pages = leaderboard_pages(stopped.race, rank(stopped.submissions))
        shown = await self.renderer.sync(
            group,
            stopped.race,
            "submission",
            pages,
            stopped.messages_for("submission"),
            effects,
        )
        if shown:
            await self.renderer.retire(stopped.messages_for("leaderboard"), effects)
        else:
            logger.warning("live_leaderboard_kept race=%d", stopped.race.race_id)

        for runner_id in sorted({s.runner_id for s in stopped.submissions}):
            await effects.revoke(group.server_id, runner_id, group.spoiler_role_id)


async def _deactivate(repo: Repository, group: ChannelGroup) -> StoppedRace | None:
    race = await repo.get_active_race(group.id)
    if race is None:
        return None
    stopped = StoppedRace(
        race=race.model_copy(update={"active": False}),
        submissions=await repo.get_submissions(race.race_id),
        messages=await repo.get_tracked_messages(race.race_id),
    )
    await repo.deactivate_races(group.id)
    return stopped
