"""Channel group API endpoints."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, HTTPException

from murahdahla.api.deps import RepoDep

router = APIRouter(prefix="/api", tags=["groups"])


@router.get("/servers/{server_id}/groups")
async def list_server_groups(server_id: int, repo: RepoDep) -> dict:
    """Groups registered on one server, by name."""
    groups = await repo.get_groups_for_server(server_id)
    return {"data": [asdict(g) for g in groups]}


@router.get("/groups/{group_id}/races")
async def list_group_races(group_id: str, repo: RepoDep) -> dict:
    """A group's races, newest first."""
    group = await repo.get_group(group_id)
    if group is None:
        raise HTTPException(404, "Group not found")
    races = await repo.get_races_for_group(group_id)
    return {"data": [r.model_dump(mode="json") for r in races]}
