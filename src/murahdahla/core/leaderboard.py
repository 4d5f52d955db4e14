"""Leaderboard renderer.

The view is derived only from stored submissions, so rendering the same
race twice yields the same text. A board longer than one chat message is
split into pages, one tracked message each. ``publish`` edits them in
place: the leaderboard posts while the race runs, the submission-channel
posts once it has stopped. Deleted messages are posted again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import time

from sqlalchemy.ext.asyncio import AsyncEngine

from murahdahla.config import MESSAGE_CHAR_LIMIT
from murahdahla.core.effects import Delivery, SideEffects
from murahdahla.core.errors import PersistenceFailure
from murahdahla.core.games import game_label, spec_for
from murahdahla.db.repository import transaction
from murahdahla.models.race import ChannelGroup, ChannelRole, Race, Submission, TrackedMessage

logger = logging.getLogger(__name__)

SEPARATOR = " — "
EMPTY_TEXT = "No submissions yet."


@dataclass(frozen=True)
class LeaderboardRow:
    place: str
    runner_name: str
    runner_time: time | None
    collection: int | None
    forfeit: bool

    def text(self, collection_max: int | None = None) -> str:
        if self.forfeit:
            return f"{self.place}) {self.runner_name}"
        parts = [f"{self.place}) {self.runner_name}", format_time(self.runner_time)]
        if self.collection is not None:
            if collection_max is not None:
                parts.append(f"{self.collection}/{collection_max}")
            else:
                parts.append(str(self.collection))
        return SEPARATOR.join(parts)


def format_time(value: time | None) -> str:
    return value.strftime("%H:%M:%S") if value is not None else "--:--:--"


def rank(submissions: list[Submission]) -> list[LeaderboardRow]:
    """Order finishers by time, then forfeits in submission order."""
    finished = sorted(
        (s for s in submissions if not s.forfeit and s.runner_time is not None),
        key=lambda s: (s.runner_time, s.submitted_at, s.submission_id),
    )
    forfeits = sorted(
        (s for s in submissions if s.forfeit or s.runner_time is None),
        key=lambda s: (s.submitted_at, s.submission_id),
    )
    rows = [
        LeaderboardRow(str(i), s.runner_name, s.runner_time, s.collection, False)
        for i, s in enumerate(finished, start=1)
    ]
    rows.extend(LeaderboardRow("FF", s.runner_name, None, None, True) for s in forfeits)
    return rows


def header(race: Race) -> str:
    label = game_label(race.game, race.info, race.url)
    return f"Leaderboard for {race.race_date.isoformat()} - {race.kind.value} - {label}"


def leaderboard_pages(
    race: Race, rows: list[LeaderboardRow], limit: int = MESSAGE_CHAR_LIMIT
) -> list[str]:
    """Split the board into messages of at most ``limit`` characters.

    The header opens the first page; rows are never split across pages.
    """
    lines = [header(race)[:limit]]
    if rows:
        collection_max = spec_for(race.game).collection_max
        lines.extend(row.text(collection_max)[:limit] for row in rows)
    else:
        lines.append(EMPTY_TEXT)

    pages: list[str] = []
    current = ""
    for line in lines:
        if current and len(current) + 1 + len(line) > limit:
            pages.append(current)
            current = line
        else:
            current = f"{current}\n{line}" if current else line
    pages.append(current)
    return pages


def format_leaderboard(
    race: Race, rows: list[LeaderboardRow], limit: int = MESSAGE_CHAR_LIMIT
) -> str:
    """The whole board as one text, every page included."""
    return "\n".join(leaderboard_pages(race, rows, limit))


def channel_for(group: ChannelGroup, role: ChannelRole) -> int:
    if role == "leaderboard":
        return group.leaderboard_channel_id
    return group.submission_channel_id


class LeaderboardRenderer:
    """Publishes the rendered view to the race's tracked messages."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def render(self, race: Race) -> list[LeaderboardRow]:
        async with transaction(self.engine) as repo:
            submissions = await repo.get_submissions(race.race_id)
        return rank(submissions)

    async def text_for(self, race: Race) -> str:
        return format_leaderboard(race, await self.render(race))

    async def publish(self, group: ChannelGroup, race: Race, effects: SideEffects) -> str:
        """Rewrite the visible leaderboard from stored submissions."""
        role: ChannelRole = "leaderboard" if race.active else "submission"
        async with transaction(self.engine) as repo:
            submissions = await repo.get_submissions(race.race_id)
            targets = await repo.get_tracked_messages(race.race_id, role)
            live = []
            if not race.active:
                live = await repo.get_tracked_messages(race.race_id, "leaderboard")
        pages = leaderboard_pages(race, rank(submissions))
        if await self.sync(group, race, role, pages, targets, effects):
            await self.retire(live, effects)
        return "\n".join(pages)

    async def retire(self, live: list[TrackedMessage], effects: SideEffects) -> None:
        """Remove a stopped race's live board once its final board is shown."""
        for board in live:
            await effects.delete(board.channel_id, board.message_id, "live leaderboard")
        await untrack(self.engine, effects, [m.message_id for m in live])

    async def sync(
        self,
        group: ChannelGroup,
        race: Race,
        role: ChannelRole,
        pages: list[str],
        targets: list[TrackedMessage],
        effects: SideEffects,
    ) -> bool:
        """Make the role's messages show ``pages``; True when every page is visible.

        Pages are edited onto the tracked messages in order. If any of them
        was deleted, the whole set is reposted so the pages stay in order.
        Surplus messages are removed and missing pages posted.
        """
        what = "leaderboard" if role == "leaderboard" else "final leaderboard"
        results = [
            await effects.edit(target.channel_id, target.message_id, page, what)
            for page, target in zip(pages, targets, strict=False)
        ]

        if Delivery.GONE in results:
            logger.info("leaderboard_reposting race=%d role=%s", race.race_id, role)
            stale, kept, remaining = targets, [], pages
        else:
            stale, kept = targets[len(pages) :], results
            remaining = pages[len(targets) :]

        gone = {t.message_id for t, r in zip(targets, results, strict=False) if r is Delivery.GONE}
        for message in stale:
            if message.message_id not in gone:
                await effects.delete(message.channel_id, message.message_id, what)
        await untrack(self.engine, effects, [m.message_id for m in stale])

        channel_id = channel_for(group, role)
        for page in remaining:
            message_id = await effects.post(channel_id, page, what)
            if message_id is None:
                return False
            await track(self.engine, effects, message_id, race, channel_id, role)
        return all(result is Delivery.DONE for result in kept)


async def track(
    engine: AsyncEngine,
    effects: SideEffects,
    message_id: int,
    race: Race,
    channel_id: int,
    role: ChannelRole,
) -> None:
    """Record a freshly posted message. A store failure here is a warning."""
    try:
        async with transaction(engine) as repo:
            await repo.add_tracked_message(message_id, race.race_id, channel_id, role)
    except PersistenceFailure:
        effects.failures.append(f"could not record the {role} message; run refresh")
        return
    logger.info("message_tracked race=%d role=%s message=%d", race.race_id, role, message_id)


async def untrack(engine: AsyncEngine, effects: SideEffects, message_ids: list[int]) -> None:
    if not message_ids:
        return
    try:
        async with transaction(engine) as repo:
            await repo.remove_tracked_messages(message_ids)
    except PersistenceFailure:
        effects.failures.append("could not forget removed leaderboard messages; run refresh")
        return
    logger.info("messages_untracked ids=%s", message_ids)
