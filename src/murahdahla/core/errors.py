"""Error taxonomy for command-surface operations.

Every operation either completes or raises one of these. Chat-side
failures after a commit are not raised; they are reported as warnings
on the operation's outcome (see ``murahdahla.core.effects``).
"""

from __future__ import annotations


class MurahdahlaError(Exception):
    """Base class. ``str(err)`` is safe to show to the invoking user."""


class ValidationError(MurahdahlaError):
    """Malformed manifest, submission, time, or command argument."""


class OverlapError(ValidationError):
    """A manifest channel already belongs to another group on the server."""


class PermissionDenied(MurahdahlaError):
    """The invoker's tier is below the command's minimum."""


class NotFound(MurahdahlaError):
    """No such group, race, runner, or role."""


class PersistenceFailure(MurahdahlaError):
    """The store rejected a read or write; the command was not applied."""

    def __init__(self, message: str = "Database error; nothing was changed.") -> None:
        super().__init__(message)


class ExternalSideEffectFailure(MurahdahlaError):
    """A chat-platform call failed after the state change was committed."""


class MessageGone(ExternalSideEffectFailure):
    """The message to edit no longer exists; it can be posted again."""
