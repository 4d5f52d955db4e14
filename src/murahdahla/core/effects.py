"""Chat-platform side effects, performed after a store commit.

The gateway cannot join a database transaction, so every command runs in
two phases: commit, then attempt each chat call independently. A failed
or timed-out call is logged and recorded as a warning; it never undoes
the commit. ``!refresh`` re-derives the visible leaderboard afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, TypeVar

from murahdahla.core.errors import ExternalSideEffectFailure, MessageGone

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChatGateway(Protocol):
    """Operations the core needs from the chat platform.

    Implementations raise ``ExternalSideEffectFailure`` for platform
    errors, and its subclass ``MessageGone`` when an edited message has
    been deleted.
    """

    async def post_message(self, channel_id: int, content: str) -> int: ...

    async def edit_message(self, channel_id: int, message_id: int, content: str) -> None: ...

    async def delete_message(self, channel_id: int, message_id: int) -> None: ...

    async def grant_role(self, server_id: int, user_id: int, role_id: int) -> None: ...

    async def revoke_role(self, server_id: int, user_id: int, role_id: int) -> None: ...


class Delivery(Enum):
    """How an edit of a tracked message went."""

    DONE = "done"
    GONE = "gone"
    FAILED = "failed"


@dataclass
class Outcome:
    """Result of a command: a reply for the invoker plus side-effect warnings."""

    message: str = ""
    warnings: list[str] = field(default_factory=list)


class SideEffects:
    """Runs gateway calls best-effort, each with its own timeout."""

    def __init__(self, gateway: ChatGateway, timeout: float) -> None:
        self.gateway = gateway
        self.timeout = timeout
        self.failures: list[str] = []

    async def attempt(self, description: str, call: Awaitable[T]) -> T | None:
        """Await *call*; on failure log, record, and return None."""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except TimeoutError:
            self._timed_out(description)
        except ExternalSideEffectFailure as exc:
            self._failed(description, exc)
        return None

    def _timed_out(self, description: str) -> None:
        logger.warning("side_effect_timeout action=%s timeout=%.1f", description, self.timeout)
        self.failures.append(f"{description}: timed out")

    def _failed(self, description: str, exc: ExternalSideEffectFailure) -> None:
        logger.warning("side_effect_failed action=%s err=%s", description, exc)
        self.failures.append(f"{description}: {exc}")

    async def post(self, channel_id: int, content: str, what: str) -> int | None:
        return await self.attempt(
            f"post {what} in <#{channel_id}>",
            self.gateway.post_message(channel_id, content),
        )

    async def edit(self, channel_id: int, message_id: int, content: str, what: str) -> Delivery:
        """Edit in place. A deleted message is reported as ``GONE``, not as a warning."""
        description = f"edit {what} in <#{channel_id}>"
        try:
            await asyncio.wait_for(
                self.gateway.edit_message(channel_id, message_id, content), timeout=self.timeout
            )
        except TimeoutError:
            self._timed_out(description)
            return Delivery.FAILED
        except MessageGone:
            logger.info("message_gone action=%s message=%d", description, message_id)
            return Delivery.GONE
        except ExternalSideEffectFailure as exc:
            self._failed(description, exc)
            return Delivery.FAILED
        return Delivery.DONE

    async def delete(self, channel_id: int, message_id: int, what: str) -> bool:
        done = await self.attempt(
            f"delete {what} in <#{channel_id}>",
            _completed(self.gateway.delete_message(channel_id, message_id)),
        )
        return bool(done)

    async def grant(self, server_id: int, user_id: int, role_id: int) -> bool:
        done = await self.attempt(
            f"grant role {role_id} to {user_id}",
            _completed(self.gateway.grant_role(server_id, user_id, role_id)),
        )
        return bool(done)

    async def revoke(self, server_id: int, user_id: int, role_id: int) -> bool:
        done = await self.attempt(
            f"revoke role {role_id} from {user_id}",
            _completed(self.gateway.revoke_role(server_id, user_id, role_id)),
        )
        return bool(done)


async def _completed(call: Awaitable[None]) -> bool:
    await call
    return True
