"""Submission processor: parse a runner's message, record it, open the spoilers.

Grammar (whitespace separated, markdown backslashes ignored)::

    ff | forfeit
    H:MM:SS [collection] [option-number] [option text...]

The collection token is required for games that track collection rate.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import time

from sqlalchemy.ext.asyncio import AsyncEngine

from murahdahla.core.effects import SideEffects
from murahdahla.core.errors import NotFound, ValidationError
from murahdahla.core.games import spec_for
from murahdahla.core.leaderboard import LeaderboardRenderer
from murahdahla.db.repository import Repository, transaction
from murahdahla.models.race import ChannelGroup, GameName, Race, Submission

logger = logging.getLogger(__name__)

FORFEIT_TOKENS = frozenset({"ff", "FF", "forfeit", "Forfeit"})
MAX_OPTION_TEXT = 255

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})$")


@dataclass(frozen=True)
class ParsedSubmission:
    runner_time: time | None = None
    collection: int | None = None
    option_number: int | None = None
    option_text: str | None = None
    forfeit: bool = False


def parse_time(token: str) -> time:
    """Parse ``H:MM:SS`` / ``HH:MM:SS`` up to 23:59:59."""
    match = _TIME_RE.match(token.strip())
    if match is None:
        raise ValidationError(f"`{token}` is not a time; use HH:MM:SS.")
    hours, minutes, seconds = (int(g) for g in match.groups())
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValidationError(f"`{token}` is out of range; the longest time is 23:59:59.")
    return time(hours, minutes, seconds)


def _is_number(token: str) -> bool:
    return token.isascii() and token.isdigit()


def parse_collection(token: str, game: GameName) -> int:
    if not _is_number(token):
        raise ValidationError(f"`{token}` is not a collection count.")
    value = int(token)
    limit = spec_for(game).collection_max
    if limit is not None and value > limit:
        raise ValidationError(f"Collection {value} is more than the maximum of {limit}.")
    return value


def parse_submission(raw: str, game: GameName) -> ParsedSubmission:
    tokens = raw.replace("\\", "").split()
    if not tokens:
        raise ValidationError("Empty submission.")
    if tokens[0] in FORFEIT_TOKENS:
        return ParsedSubmission(forfeit=True)

    runner_time = parse_time(tokens[0])
    rest = tokens[1:]

    collection = None
    if spec_for(game).collection_required:
        if not rest:
            raise ValidationError(
                f"{game.value} submissions need a collection count after the time."
            )
        collection = parse_collection(rest.pop(0), game)
    elif rest and _is_number(rest[0]):
        collection = parse_collection(rest.pop(0), game)

    option_number = int(rest.pop(0)) if rest and _is_number(rest[0]) else None
    option_text = " ".join(rest) or None
    if option_text is not None and len(option_text) > MAX_OPTION_TEXT:
        raise ValidationError(f"Comment is longer than {MAX_OPTION_TEXT} characters.")

    return ParsedSubmission(
        runner_time=runner_time,
        collection=collection,
        option_number=option_number,
        option_text=option_text,
    )


class SubmissionProcessor:
    """Records submissions and runner corrections for a group's active race."""

    def __init__(self, engine: AsyncEngine, renderer: LeaderboardRenderer) -> None:
        self.engine = engine
        self.renderer = renderer

    async def submit(
        self,
        group: ChannelGroup,
        runner_id: int,
        runner_name: str,
        raw_text: str,
        effects: SideEffects,
    ) -> Submission:
        """Record a runner's result, replacing an earlier one for the same race.

        Raises ``NotFound`` when no race is running and ``ValidationError``
        for unparseable text; in both cases nothing is stored.
        """
        async with transaction(self.engine) as repo:
            race = await _active_race(repo, group)
            parsed = parse_submission(raw_text, race.game)
            submission, replaced = await repo.upsert_submission(
                race_id=race.race_id,
                runner_id=runner_id,
                runner_name=runner_name,
                runner_time=parsed.runner_time,
                collection=parsed.collection,
                option_number=parsed.option_number,
                option_text=parsed.option_text,
                forfeit=parsed.forfeit,
            )
        logger.info(
            "submission_recorded group=%s race=%d runner=%d replaced=%s",
            group.name,
            race.race_id,
            runner_id,
            replaced,
        )

        await effects.grant(group.server_id, runner_id, group.spoiler_role_id)
        await self.renderer.publish(group, race, effects)
        return submission

    async def set_time(
        self, group: ChannelGroup, runner_name: str, raw_time: str, effects: SideEffects
    ) -> Submission:
        runner_time = parse_time(raw_time)
        async with transaction(self.engine) as repo:
            race = await _active_race(repo, group)
            existing = await _runner_submission(repo, race, runner_name)
            updated = await repo.update_submission(existing.submission_id, runner_time=runner_time)
        logger.info("submission_time_set race=%d runner=%s", race.race_id, runner_name)
        await self.renderer.publish(group, race, effects)
        return updated or existing

    async def set_collection(
        self, group: ChannelGroup, runner_name: str, raw_value: str, effects: SideEffects
    ) -> Submission:
        async with transaction(self.engine) as repo:
            race = await _active_race(repo, group)
            value = parse_collection(raw_value.strip(), race.game)
            existing = await _runner_submission(repo, race, runner_name)
            updated = await repo.update_submission(existing.submission_id, collection=value)
        logger.info("submission_collection_set race=%d runner=%s", race.race_id, runner_name)
        await self.renderer.publish(group, race, effects)
        return updated or existing

    async def remove_time(
        self, group: ChannelGroup, runner_name: str, effects: SideEffects
    ) -> Submission:
        async with transaction(self.engine) as repo:
            race = await _active_race(repo, group)
            existing = await _runner_submission(repo, race, runner_name)
            await repo.delete_submission(existing.submission_id)
        logger.info("submission_removed race=%d runner=%s", race.race_id, runner_name)
        await effects.revoke(group.server_id, existing.runner_id, group.spoiler_role_id)
        await self.renderer.publish(group, race, effects)
        return existing


async def _active_race(repo: Repository, group: ChannelGroup) -> Race:
    race = await repo.get_active_race(group.id)
    if race is None:
        raise NotFound(f"No race is running in {group.name}.")
    return race


async def _runner_submission(repo: Repository, race: Race, runner_name: str) -> Submission:
    submission = await repo.find_submission_by_name(race.race_id, runner_name.strip())
    if submission is None:
        raise NotFound(f"No submission from `{runner_name}` in this race.")
    return submission
