"""Seed metadata lookups for randomizers with a public seed API.

ALTTPR seeds publish their patch and spoiler metadata on S3; SMZ3 seeds are
served by samus.link. Both are turned into a one-line settings description
(mode, goal, file-select code) shown in race announcements. Lookups are
best-effort: the caller falls back to the bare seed link when one fails.
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from typing import Any
from urllib.parse import urlparse

import httpx

from murahdahla.core.errors import ExternalSideEffectFailure
from murahdahla.models.race import GameName

logger = logging.getLogger(__name__)

ALTTPR_PATCH_URL = "https://s3.us-east-2.amazonaws.com/alttpr-patches/{}.json"
SMZ3_SEED_URL = "https://samus.link/api/seed/{}"

# Patch-table offset holding the five file-select code icons.
CODE_OFFSET = "1573397"

CODE_ITEMS = (
    "Bow",
    "Boomerang",
    "Hookshot",
    "Bombs",
    "Mushroom",
    "Powder",
    "Ice Rod",
    "Pendant",
    "Bombos",
    "Ether",
    "Quake",
    "Lamp",
    "Hammer",
    "Shovel",
    "Flute",
    "Net",
    "Book",
    "Empty Bottle",
    "Green Potion",
    "Somaria",
    "Cape",
    "Mirror",
    "Boots",
    "Gloves",
    "Flippers",
    "Pearl",
    "Shield",
    "Tunic",
    "Heart",
    "Map",
    "Compass",
    "Key",
)

ALTTPR_MODES = {
    "open": "Open",
    "standard": "Standard",
    "inverted": "Inverted",
    "retro": "Retro",
}
ALTTPR_GOALS = {
    "ganon": "Defeat Ganon",
    "fast_ganon": "Fast Ganon",
    "dungeons": "All Dungeons",
    "pedestal": "Pedestal",
    "triforce-hunt": "Triforce Hunt",
}
# Values equal to the default ("standard", no shuffle, "NoGlitches") are left out.
ALTTPR_DUNGEON_ITEMS = {"mc": "MC", "mcs": "MCS", "full": "Keysanity"}
ALTTPR_SHUFFLES = {
    "simple": "Simple Shuffle",
    "restricted": "Restricted Shuffle",
    "full": "Full Shuffle",
    "crossed": "Crossed Shuffle",
    "insanity": "Insanity Shuffle",
}
ALTTPR_LOGIC = {
    "OverworldGlitches": "Overworld Glitches",
    "Major Glitches": "Major Glitches",
    "None": "No Logic",
}

SMZ3_LOGIC = {"normal": "Normal", "hard": "Hard"}
SMZ3_MORPH = {"randomized": "Randomized Morph", "early": "Early Morph", "original": "Vanilla Morph"}
SMZ3_SWORD = {"randomized": "Randomized Sword", "early": "Early Sword", "uncle": "Uncle Sword"}


class SeedLookup:
    """Fetches and describes seed settings over HTTP."""

    def __init__(self, timeout: float, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.timeout = timeout
        self.transport = transport

    async def describe(self, game: GameName, url: str) -> str | None:
        """Settings description for a seed URL, or None for games without an API.

        Raises ``ExternalSideEffectFailure`` when the seed cannot be fetched
        or its metadata is not in the expected shape.
        """
        try:
            if game is GameName.ALTTPR:
                return alttpr_description(await self._get_json(alttpr_patch_url(url)))
            if game is GameName.SMZ3:
                return smz3_description(await self._get_json(smz3_seed_url(url)))
        except httpx.HTTPError as exc:
            raise ExternalSideEffectFailure(f"seed lookup failed: {exc}") from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ExternalSideEffectFailure(f"unexpected seed metadata: {exc!r}") from exc
        return None

    async def _get_json(self, url: str) -> Any:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout), transport=self.transport
        ) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            logger.info("seed_fetched url=%s", url)
            return resp.json()


def alttpr_patch_url(url: str) -> str:
    path = urlparse(url).path
    seed_hash = path.split("/h/", 1)[1].strip("/")
    if not seed_hash:
        raise ValueError(f"no seed hash in {url}")
    return ALTTPR_PATCH_URL.format(seed_hash)


def smz3_seed_url(url: str) -> str:
    """samus.link links carry the seed GUID as unpadded URL-safe base64."""
    slug = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
    guid = uuid.UUID(bytes=base64.urlsafe_b64decode(slug + "=="))
    return SMZ3_SEED_URL.format(guid.hex)


def file_select_code(patch: list[dict[str, Any]]) -> str:
    for entry in patch:
        if CODE_OFFSET in entry:
            icons = entry[CODE_OFFSET]
            return "/".join(
                CODE_ITEMS[i] if 0 <= i < len(CODE_ITEMS) else "Unknown" for i in icons
            )
    raise KeyError(CODE_OFFSET)


def alttpr_description(data: dict[str, Any]) -> str:
    meta = data["spoiler"]["meta"]
    code = file_select_code(data["patch"])
    if meta.get("spoilers") == "mystery":
        return f"Mystery ({code})"

    parts = [
        ALTTPR_MODES.get(meta["mode"], "Unknown State"),
        ALTTPR_GOALS.get(meta["goal"], "Unknown Goal"),
        f"{meta['entry_crystals_tower']}/{meta['entry_crystals_ganon']}",
    ]
    dungeon_items = meta.get("dungeon_items", "standard")
    if dungeon_items != "standard":
        parts.append(ALTTPR_DUNGEON_ITEMS.get(dungeon_items, "Unknown Dungeon Item Shuffle"))
    shuffle = meta.get("shuffle")
    if shuffle is not None and shuffle != "vanilla":
        parts.append(ALTTPR_SHUFFLES.get(shuffle, "Unknown Shuffle"))
    logic = meta.get("logic", "NoGlitches")
    if logic != "NoGlitches":
        parts.append(ALTTPR_LOGIC.get(logic, "Unknown Logic"))
    parts.append(f"({code})")
    return " ".join(parts)


def smz3_description(data: dict[str, Any]) -> str:
    settings = json.loads(data["worlds"][0]["settings"])
    return " ".join(
        [
            SMZ3_LOGIC.get(settings["smlogic"], "Unknown Logic"),
            SMZ3_MORPH.get(settings["morphlocation"], "Unknown Morph"),
            SMZ3_SWORD.get(settings["swordlocation"], "Unknown Sword"),
            f"({data['hash']})",
        ]
    )
