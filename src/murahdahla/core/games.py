"""Static game table: detection from a race payload and collection rules.

Not user-configurable. A game that tracks collection rate requires a
second number on every timed submission, bounded by ``collection_max``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from urllib.parse import urlparse

from murahdahla.core.errors import ValidationError
from murahdahla.models.race import GameName, RaceKind

MAX_PAYLOAD_LENGTH = 400


@dataclass(frozen=True)
class GameSpec:
    name: GameName
    collection_required: bool = False
    collection_max: int | None = None


GAMES: dict[GameName, GameSpec] = {
    GameName.ALTTPR: GameSpec(GameName.ALTTPR, collection_required=True, collection_max=216),
    GameName.SMZ3: GameSpec(GameName.SMZ3, collection_required=True, collection_max=316),
    GameName.SMTOTAL: GameSpec(GameName.SMTOTAL, collection_required=True, collection_max=100),
    GameName.SMVARIA: GameSpec(GameName.SMVARIA, collection_required=True, collection_max=100),
    GameName.FF4FE: GameSpec(GameName.FF4FE),
    GameName.OTHER: GameSpec(GameName.OTHER),
}


@dataclass(frozen=True)
class RacePayload:
    """A validated start-command payload."""

    game: GameName
    info: str
    url: str | None


def spec_for(game: GameName | str) -> GameSpec:
    return GAMES[GameName(game)]


def detect_game(text: str) -> tuple[GameName, str | None]:
    """Identify the game from a seed URL. Non-URLs are ``Other``."""
    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return GameName.OTHER, None
    host = (parsed.hostname or "").lower().removeprefix("www.")
    path = parsed.path
    if host == "alttpr.com" and "/h/" in path:
        return GameName.ALTTPR, text
    if host == "samus.link" and "/seed" in path:
        return GameName.SMZ3, text
    if host == "sm.samus.link":
        return GameName.SMTOTAL, text
    if host == "randommetroidsolver.pythonanywhere.com":
        return GameName.SMVARIA, text
    if host == "ff4fe.com":
        return GameName.FF4FE, text
    return GameName.OTHER, text


def parse_payload(raw: str) -> RacePayload:
    """Validate the text following ``!rtastart`` / ``!igtstart``."""
    text = raw.strip().strip("<>")
    if not text:
        raise ValidationError("A race needs a seed URL or a description.")
    if len(text) > MAX_PAYLOAD_LENGTH:
        raise ValidationError(f"Race description is longer than {MAX_PAYLOAD_LENGTH} characters.")
    game, url = detect_game(text)
    return RacePayload(game=game, info=text, url=url)


def game_label(game: GameName, info: str, url: str | None) -> str:
    """Race title: the game, any fetched seed settings, and the seed link."""
    if url is None:
        return info
    parts = [] if game is GameName.OTHER else [game.value]
    if info != url:
        parts.append(info)
    parts.append(f"<{url}>")
    return " ".join(parts)


def announcement(
    race_date: date, kind: RaceKind, game: GameName, info: str, url: str | None
) -> str:
    """One-line race description shared by both posts."""
    return f"{race_date.isoformat()} - {kind.value} - {game_label(game, info, url)}"


def submission_instructions(kind: RaceKind, game: GameName) -> str:
    spec = spec_for(game)
    measure = "in-game time" if kind is RaceKind.IGT else "real time"
    fmt = "`HH:MM:SS`"
    if spec.collection_required:
        fmt += f" followed by your collection rate (out of {spec.collection_max})"
    return (
        f"Submit your {measure} as {fmt}, or `ff` to forfeit. "
        "Your message is removed and the spoiler channel opens once it's recorded."
    )
