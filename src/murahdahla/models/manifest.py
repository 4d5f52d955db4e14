"""Group manifest model.

Admins register a group by uploading a small YAML document::

    group_name: weekly
    submission: weekly-submit
    leaderboard: weekly-leaderboard
    spoiler: weekly-spoilers
    spoiler_role: weekly-done

Channel and role references may be names or numeric IDs.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GroupManifest(BaseModel):
    """Structured description of a channel group, before resolution."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    group_name: str = Field(min_length=1, max_length=255)
    submission: str = Field(min_length=1, max_length=255)
    leaderboard: str = Field(min_length=1, max_length=255)
    spoiler: str = Field(min_length=1, max_length=255)
    spoiler_role: str = Field(min_length=1, max_length=255)

    @field_validator("submission", "leaderboard", "spoiler", mode="before")
    @classmethod
    def _strip_channel_hash(cls, value: object) -> object:
        """Accept ``#channel`` as well as ``channel``; YAML ints become strings."""
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            return value.strip().removeprefix("#")
        return value

    @field_validator("spoiler_role", "group_name", mode="before")
    @classmethod
    def _coerce_ids(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value
