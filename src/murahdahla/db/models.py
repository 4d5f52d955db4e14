"""SQLAlchemy ORM models for the Murahdahla database.

Tables: servers, channel_groups, races, tracked_messages, submissions.
Ownership cascades through foreign keys (server -> group -> race ->
submissions / tracked messages); the core relies on the database to
remove owned rows.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, time

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class ServerRow(Base):
    __tablename__ = "servers"

    server_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    owner_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    admin_role_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    mod_role_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class ChannelGroupRow(Base):
    __tablename__ = "channel_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    server_id: Mapped[int] = mapped_column(
        ForeignKey("servers.server_id", ondelete="CASCADE"), nullable=False
    )
    group_name: Mapped[str] = mapped_column(String(255), nullable=False)
    submission_channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    leaderboard_channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    spoiler_channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    spoiler_role_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_channel_groups_server_id", "server_id"),
        UniqueConstraint("server_id", "group_name", name="uq_group_name_per_server"),
    )


class RaceRow(Base):
    __tablename__ = "races"

    race_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(
        ForeignKey("channel_groups.id", ondelete="CASCADE"), nullable=False
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    race_date: Mapped[date] = mapped_column(Date, nullable=False)
    race_game: Mapped[str] = mapped_column(String(32), nullable=False)
    race_kind: Mapped[str] = mapped_column(String(8), nullable=False)
    race_info: Mapped[str] = mapped_column(Text, nullable=False)
    race_url: Mapped[str | None] = mapped_column(String(400), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (Index("ix_races_group_active", "group_id", "active"),)


class TrackedMessageRow(Base):
    __tablename__ = "tracked_messages"

    message_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    race_id: Mapped[int] = mapped_column(
        ForeignKey("races.race_id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_role: Mapped[str] = mapped_column(String(16), nullable=False)
    posted_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (Index("ix_tracked_messages_race_id", "race_id"),)


class SubmissionRow(Base):
    __tablename__ = "submissions"

    submission_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    runner_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    race_id: Mapped[int] = mapped_column(
        ForeignKey("races.race_id", ondelete="CASCADE"), nullable=False
    )
    runner_name: Mapped[str] = mapped_column(String(100), nullable=False)
    runner_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    runner_collection: Mapped[int | None] = mapped_column(Integer, nullable=True)
    option_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    option_text: Mapped[str | None] = mapped_column(String(255), nullable=True)
    runner_forfeit: Mapped[bool] = mapped_column(Boolean, default=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        Index("ix_submissions_race_id", "race_id"),
        UniqueConstraint("runner_id", "race_id", name="uq_submission_runner_race"),
    )
