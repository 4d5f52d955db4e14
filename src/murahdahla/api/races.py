"""Race leaderboard API endpoint."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, HTTPException

from murahdahla.api.deps import RepoDep
from murahdahla.core.games import spec_for
from murahdahla.core.leaderboard import format_leaderboard, format_time, rank

router = APIRouter(prefix="/api/races", tags=["races"])


@router.get("/{race_id}/leaderboard")
async def get_leaderboard(race_id: int, repo: RepoDep) -> dict:
    """The race's leaderboard as rows and as the text the bot posts."""
    race = await repo.get_race(race_id)
    if race is None:
        raise HTTPException(404, "Race not found")
    rows = rank(await repo.get_submissions(race_id))
    collection_max = spec_for(race.game).collection_max
    return {
        "data": {
            "race": race.model_dump(mode="json"),
            "rows": [
                {
                    **asdict(row),
                    "runner_time": format_time(row.runner_time) if not row.forfeit else None,
                    "collection_max": collection_max,
                }
                for row in rows
            ],
            "text": format_leaderboard(race, rows),
        }
    }
