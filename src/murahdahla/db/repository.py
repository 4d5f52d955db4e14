"""Repository pattern for database access.

Wraps an SQLAlchemy async session. Callers own the transaction (see
``transaction`` at the bottom of this module); methods only flush.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, time

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from murahdahla.core.errors import PersistenceFailure
from murahdahla.db.engine import get_session
from murahdahla.db.models import (
    ChannelGroupRow,
    RaceRow,
    ServerRow,
    SubmissionRow,
    TrackedMessageRow,
)
from murahdahla.models.race import (
    ChannelGroup,
    ChannelRole,
    GameName,
    Race,
    RaceKind,
    Submission,
    TrackedMessage,
)

logger = logging.getLogger(__name__)


def to_group(row: ChannelGroupRow) -> ChannelGroup:
    return ChannelGroup(
        id=row.id,
        server_id=row.server_id,
        name=row.group_name,
        submission_channel_id=row.submission_channel_id,
        leaderboard_channel_id=row.leaderboard_channel_id,
        spoiler_channel_id=row.spoiler_channel_id,
        spoiler_role_id=row.spoiler_role_id,
    )


def to_race(row: RaceRow) -> Race:
    return Race(
        race_id=row.race_id,
        group_id=row.group_id,
        active=row.active,
        race_date=row.race_date,
        game=GameName(row.race_game),
        kind=RaceKind(row.race_kind),
        info=row.race_info,
        url=row.race_url,
    )


def to_submission(row: SubmissionRow) -> Submission:
    return Submission(
        submission_id=row.submission_id,
        runner_id=row.runner_id,
        race_id=row.race_id,
        runner_name=row.runner_name,
        runner_time=row.runner_time,
        collection=row.runner_collection,
        option_number=row.option_number,
        option_text=row.option_text,
        forfeit=row.runner_forfeit,
        submitted_at=row.submitted_at,
    )


def to_tracked(row: TrackedMessageRow) -> TrackedMessage:
    return TrackedMessage(
        message_id=row.message_id,
        race_id=row.race_id,
        channel_id=row.channel_id,
        channel_role=row.channel_role,  # type: ignore[arg-type]
        posted_at=row.posted_at,
    )


class Repository:
    """Async repository for all database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Servers ---

    async def get_server(self, server_id: int) -> ServerRow | None:
        return await self.session.get(ServerRow, server_id)

    async def ensure_server(self, server_id: int, owner_id: int) -> ServerRow:
        """Create the server row on first contact; keep the owner current."""
        row = await self.session.get(ServerRow, server_id)
        if row is None:
            row = ServerRow(server_id=server_id, owner_id=owner_id)
            self.session.add(row)
        elif row.owner_id != owner_id:
            row.owner_id = owner_id
        await self.session.flush()
        return row

    async def set_server_role(
        self, server_id: int, tier: str, role_id: int | None
    ) -> ServerRow | None:
        """Set or clear the admin/mod role. ``tier`` is ``"admin"`` or ``"mod"``."""
        row = await self.session.get(ServerRow, server_id)
        if row is None:
            return None
        if tier == "admin":
            row.admin_role_id = role_id
        elif tier == "mod":
            row.mod_role_id = role_id
        else:
            raise ValueError(f"unknown role tier {tier!r}")
        await self.session.flush()
        return row

    async def purge_server(self, server_id: int) -> bool:
        """Delete a server and, by cascade, everything it owns."""
        result = await self.session.execute(
            delete(ServerRow).where(ServerRow.server_id == server_id)
        )
        return result.rowcount > 0  # type: ignore[union-attr]

    # --- Channel groups ---

    async def get_all_groups(self) -> list[ChannelGroup]:
        result = await self.session.execute(select(ChannelGroupRow))
        return [to_group(r) for r in result.scalars().all()]

    async def get_groups_for_server(self, server_id: int) -> list[ChannelGroup]:
        stmt = (
            select(ChannelGroupRow)
            .where(ChannelGroupRow.server_id == server_id)
            .order_by(ChannelGroupRow.group_name)
        )
        result = await self.session.execute(stmt)
        return [to_group(r) for r in result.scalars().all()]

    async def get_group(self, group_id: str) -> ChannelGroup | None:
        row = await self.session.get(ChannelGroupRow, group_id)
        return to_group(row) if row else None

    async def get_group_by_name(self, server_id: int, name: str) -> ChannelGroup | None:
        stmt = select(ChannelGroupRow).where(
            ChannelGroupRow.server_id == server_id,
            ChannelGroupRow.group_name == name,
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return to_group(row) if row else None

    async def count_groups(self, server_id: int) -> int:
        stmt = (
            select(func.count())
            .select_from(ChannelGroupRow)
            .where(ChannelGroupRow.server_id == server_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def get_groups_using_channels(
        self, server_id: int, channel_ids: set[int]
    ) -> list[ChannelGroup]:
        """Groups on the server that already claim any of ``channel_ids``."""
        stmt = select(ChannelGroupRow).where(
            ChannelGroupRow.server_id == server_id,
            or_(
                ChannelGroupRow.submission_channel_id.in_(channel_ids),
                ChannelGroupRow.leaderboard_channel_id.in_(channel_ids),
                ChannelGroupRow.spoiler_channel_id.in_(channel_ids),
            ),
        )
        result = await self.session.execute(stmt)
        return [to_group(r) for r in result.scalars().all()]

    async def create_group(
        self,
        server_id: int,
        name: str,
        submission_channel_id: int,
        leaderboard_channel_id: int,
        spoiler_channel_id: int,
        spoiler_role_id: int,
    ) -> ChannelGroup:
        row = ChannelGroupRow(
            server_id=server_id,
            group_name=name,
            submission_channel_id=submission_channel_id,
            leaderboard_channel_id=leaderboard_channel_id,
            spoiler_channel_id=spoiler_channel_id,
            spoiler_role_id=spoiler_role_id,
        )
        self.session.add(row)
        await self.session.flush()
        return to_group(row)

    async def delete_group(self, group_id: str) -> bool:
        """Remove a group; races, messages and submissions cascade."""
        result = await self.session.execute(
            delete(ChannelGroupRow).where(ChannelGroupRow.id == group_id)
        )
        return result.rowcount > 0  # type: ignore[union-attr]

    # --- Races ---

    async def get_race(self, race_id: int) -> Race | None:
        row = await self.session.get(RaceRow, race_id)
        return to_race(row) if row else None

    async def get_active_race(self, group_id: str) -> Race | None:
        stmt = (
            select(RaceRow)
            .where(RaceRow.group_id == group_id, RaceRow.active.is_(True))
            .order_by(RaceRow.race_id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return to_race(row) if row else None

    async def get_latest_race(self, group_id: str) -> Race | None:
        stmt = (
            select(RaceRow)
            .where(RaceRow.group_id == group_id)
            .order_by(RaceRow.race_id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return to_race(row) if row else None

    async def get_races_for_group(self, group_id: str) -> list[Race]:
        stmt = select(RaceRow).where(RaceRow.group_id == group_id).order_by(RaceRow.race_id.desc())
        result = await self.session.execute(stmt)
        return [to_race(r) for r in result.scalars().all()]

    async def create_race(
        self,
        group_id: str,
        game: GameName,
        kind: RaceKind,
        info: str,
        url: str | None = None,
        race_date: date | None = None,
    ) -> Race:
        row = RaceRow(
            group_id=group_id,
            active=True,
            race_date=race_date or datetime.now(UTC).date(),
            race_game=game.value,
            race_kind=kind.value,
            race_info=info,
            race_url=url,
        )
        self.session.add(row)
        await self.session.flush()
        return to_race(row)

    async def deactivate_races(self, group_id: str) -> int:
        """Mark every active race of the group inactive. Returns rows changed."""
        result = await self.session.execute(
            update(RaceRow)
            .where(RaceRow.group_id == group_id, RaceRow.active.is_(True))
            .values(active=False)
        )
        return result.rowcount  # type: ignore[union-attr]

    # --- Tracked messages ---

    async def add_tracked_message(
        self, message_id: int, race_id: int, channel_id: int, channel_role: ChannelRole
    ) -> TrackedMessage:
        row = TrackedMessageRow(
            message_id=message_id,
            race_id=race_id,
            channel_id=channel_id,
            channel_role=channel_role,
        )
        self.session.add(row)
        await self.session.flush()
        return to_tracked(row)

    async def get_tracked_messages(
        self, race_id: int, channel_role: ChannelRole | None = None
    ) -> list[TrackedMessage]:
        """A race's tracked messages in posting order (message ids grow over time)."""
        stmt = select(TrackedMessageRow).where(TrackedMessageRow.race_id == race_id)
        if channel_role is not None:
            stmt = stmt.where(TrackedMessageRow.channel_role == channel_role)
        result = await self.session.execute(stmt.order_by(TrackedMessageRow.message_id))
        return [to_tracked(r) for r in result.scalars().all()]

    async def remove_tracked_messages(self, message_ids: list[int]) -> int:
        if not message_ids:
            return 0
        result = await self.session.execute(
            delete(TrackedMessageRow).where(TrackedMessageRow.message_id.in_(message_ids))
        )
        return result.rowcount

    # --- Submissions ---

    async def get_submissions(self, race_id: int) -> list[Submission]:
        stmt = (
            select(SubmissionRow)
            .where(SubmissionRow.race_id == race_id)
            .order_by(SubmissionRow.submitted_at, SubmissionRow.submission_id)
        )
        result = await self.session.execute(stmt)
        return [to_submission(r) for r in result.scalars().all()]

    async def get_submission(self, race_id: int, runner_id: int) -> Submission | None:
        row = await self._submission_row(race_id, runner_id)
        return to_submission(row) if row else None

    async def find_submission_by_name(self, race_id: int, runner_name: str) -> Submission | None:
        """Exact name match first, then case-insensitive."""
        submissions = await self.get_submissions(race_id)
        for s in submissions:
            if s.runner_name == runner_name:
                return s
        folded = runner_name.casefold()
        for s in submissions:
            if s.runner_name.casefold() == folded:
                return s
        return None

    async def upsert_submission(
        self,
        race_id: int,
        runner_id: int,
        runner_name: str,
        runner_time: time | None,
        collection: int | None = None,
        option_number: int | None = None,
        option_text: str | None = None,
        forfeit: bool = False,
    ) -> tuple[Submission, bool]:
        """Record a runner's entry, replacing any earlier one for the race.

        Returns the stored submission and whether an earlier entry was replaced.
        """
        row = await self._submission_row(race_id, runner_id)
        replaced = row is not None
        if row is None:
            row = SubmissionRow(race_id=race_id, runner_id=runner_id)
            self.session.add(row)
        row.runner_name = runner_name
        row.runner_time = runner_time
        row.runner_collection = collection
        row.option_number = option_number
        row.option_text = option_text
        row.runner_forfeit = forfeit
        row.submitted_at = datetime.now(UTC)
        await self.session.flush()
        return to_submission(row), replaced

    async def update_submission(
        self,
        submission_id: int,
        *,
        runner_time: time | None = None,
        collection: int | None = None,
    ) -> Submission | None:
        """Correct a time or collection value; a new time clears a forfeit."""
        row = await self.session.get(SubmissionRow, submission_id)
        if row is None:
            return None
        if runner_time is not None:
            row.runner_time = runner_time
            row.runner_forfeit = False
        if collection is not None:
            row.runner_collection = collection
        await self.session.flush()
        return to_submission(row)

    async def delete_submission(self, submission_id: int) -> bool:
        result = await self.session.execute(
            delete(SubmissionRow).where(SubmissionRow.submission_id == submission_id)
        )
        return result.rowcount > 0  # type: ignore[union-attr]

    async def _submission_row(self, race_id: int, runner_id: int) -> SubmissionRow | None:
        stmt = select(SubmissionRow).where(
            SubmissionRow.race_id == race_id,
            SubmissionRow.runner_id == runner_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


@asynccontextmanager
async def transaction(engine: AsyncEngine) -> AsyncGenerator[Repository, None]:
    """Yield a Repository in one atomic unit of work.

    Store errors roll the session back and surface as ``PersistenceFailure``.
    """
    try:
        async with get_session(engine) as session:
            yield Repository(session)
    except SQLAlchemyError as exc:
        logger.exception("store_transaction_failed")
        raise PersistenceFailure() from exc
