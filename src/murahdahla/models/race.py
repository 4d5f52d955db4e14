"""Race domain models.

Plain snapshots of stored rows. The core hands these across session
boundaries instead of ORM objects, so nothing lazy-loads after commit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

ChannelRole = Literal["submission", "leaderboard"]


class RaceKind(StrEnum):
    RTA = "RTA"
    IGT = "IGT"


class GameName(StrEnum):
    ALTTPR = "ALTTPR"
    SMZ3 = "SMZ3"
    FF4FE = "FF4 FE"
    SMVARIA = "SM VARIA"
    SMTOTAL = "SM Total"
    OTHER = "Other"


@dataclass(frozen=True)
class ChannelGroup:
    """A registered group: three channels and the spoiler role they share."""

    id: str
    server_id: int
    name: str
    submission_channel_id: int
    leaderboard_channel_id: int
    spoiler_channel_id: int
    spoiler_role_id: int

    @property
    def channel_ids(self) -> tuple[int, int, int]:
        return (self.submission_channel_id, self.leaderboard_channel_id, self.spoiler_channel_id)


class Race(BaseModel):
    """One asynchronous race episode for a group."""

    race_id: int
    group_id: str
    active: bool
    race_date: date
    game: GameName
    kind: RaceKind
    info: str
    url: str | None = None


class Submission(BaseModel):
    """A runner's entry in one race."""

    submission_id: int
    runner_id: int
    race_id: int
    runner_name: str
    runner_time: time | None = None
    collection: int | None = Field(default=None, ge=0)
    option_number: int | None = None
    option_text: str | None = None
    forfeit: bool = False
    submitted_at: datetime


class TrackedMessage(BaseModel):
    """A bot-authored message the core edits or deletes later."""

    message_id: int
    race_id: int
    channel_id: int
    channel_role: ChannelRole
    posted_at: datetime
