"""Core value types passed between the dispatcher stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from .commands import Command

type ActorId = int | str
type ChannelId = int | str
type MessageId = int | str

type ChannelKind = Literal["guild", "dm"]


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    """One inbound chat event as the transport hands it over.

    `timestamp` is in seconds; cooldown windows are measured against it.
    """

    channel_id: ChannelId
    message_id: MessageId
    author_id: ActorId
    text: str
    timestamp: float = 0.0
    edited: bool = False
    author_is_bot: bool = False
    guild_id: int | str | None = None
    raw: Any | None = field(default=None, compare=False, hash=False)

    @property
    def is_direct(self) -> bool:
        return self.guild_id is None

    @property
    def channel_kind(self) -> ChannelKind:
        return "dm" if self.is_direct else "guild"


@dataclass(frozen=True, slots=True)
class ParseResult:
    prefix: str
    alias: str
    content: str
    after_prefix: str
    command: Command | None = None


@dataclass(frozen=True, slots=True)
class Cancelled:
    """Returned by argument parsing when the invocation is abandoned."""

    reason: Literal["cancel_word", "timeout", "ended", "control", "in_prompt"] = (
        "cancel_word"
    )


@dataclass(frozen=True, slots=True)
class Breakout:
    """Returned by argument parsing when a prompt reply is itself a command."""

    message: IncomingMessage
