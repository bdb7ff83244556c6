"""Named dispatcher events and the bus listeners subscribe through."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from .logging import get_logger
from .model import Breakout, IncomingMessage
from .utils.awaitables import maybe_await

if TYPE_CHECKING:
    from .commands import Command

logger = get_logger(__name__)

type EventType = Literal[
    "message_blocked",
    "message_invalid",
    "command_disabled",
    "command_blocked",
    "command_started",
    "command_finished",
    "command_cancelled",
    "cooldown",
    "in_prompt",
    "missing_permissions",
    "error",
]

EVENT_TYPES: frozenset[str] = frozenset(
    {
        "message_blocked",
        "message_invalid",
        "command_disabled",
        "command_blocked",
        "command_started",
        "command_finished",
        "command_cancelled",
        "cooldown",
        "in_prompt",
        "missing_permissions",
        "error",
    }
)

type PermissionKind = Literal["client", "user"]


@dataclass(frozen=True, slots=True)
class MessageBlocked:
    type: Literal["message_blocked"] = field(default="message_blocked", init=False)
    message: IncomingMessage
    reason: str


@dataclass(frozen=True, slots=True)
class MessageInvalid:
    """No prefix, alias, regex or condition matched the message."""

    type: Literal["message_invalid"] = field(default="message_invalid", init=False)
    message: IncomingMessage


@dataclass(frozen=True, slots=True)
class CommandDisabled:
    type: Literal["command_disabled"] = field(default="command_disabled", init=False)
    message: IncomingMessage
    command: Command


@dataclass(frozen=True, slots=True)
class CommandBlocked:
    type: Literal["command_blocked"] = field(default="command_blocked", init=False)
    message: IncomingMessage
    command: Command
    reason: str


@dataclass(frozen=True, slots=True)
class CommandStarted:
    type: Literal["command_started"] = field(default="command_started", init=False)
    message: IncomingMessage
    command: Command
    args: dict[str, Any]


@dataclass(frozen=True, slots=True)
class CommandFinished:
    type: Literal["command_finished"] = field(default="command_finished", init=False)
    message: IncomingMessage
    command: Command
    args: dict[str, Any]
    result: Any = None


@dataclass(frozen=True, slots=True)
class CommandCancelled:
    """The invocation was abandoned during argument collection.

    `retry` carries the breakout reply that is dispatched instead, if any.
    """

    type: Literal["command_cancelled"] = field(
        default="command_cancelled", init=False
    )
    message: IncomingMessage
    command: Command
    reason: str
    retry: Breakout | None = None


@dataclass(frozen=True, slots=True)
class CooldownBlocked:
    type: Literal["cooldown"] = field(default="cooldown", init=False)
    message: IncomingMessage
    command: Command
    remaining_s: float


@dataclass(frozen=True, slots=True)
class InPrompt:
    type: Literal["in_prompt"] = field(default="in_prompt", init=False)
    message: IncomingMessage


@dataclass(frozen=True, slots=True)
class MissingPermissions:
    type: Literal["missing_permissions"] = field(
        default="missing_permissions", init=False
    )
    message: IncomingMessage
    command: Command
    kind: PermissionKind
    missing: Any


@dataclass(frozen=True, slots=True)
class CommandError:
    type: Literal["error"] = field(default="error", init=False)
    error: Exception
    message: IncomingMessage
    command: Command | None = None


type DispatchEvent = (
    MessageBlocked
    | MessageInvalid
    | CommandDisabled
    | CommandBlocked
    | CommandStarted
    | CommandFinished
    | CommandCancelled
    | CooldownBlocked
    | InPrompt
    | MissingPermissions
    | CommandError
)

type Listener = Callable[[Any], Any]


class EventBus:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event_type: EventType, listener: Listener) -> Listener:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown event type {event_type!r}")
        self._listeners.setdefault(event_type, []).append(listener)
        return listener

    def off(self, event_type: EventType, listener: Listener) -> None:
        listeners = self._listeners.get(event_type)
        if not listeners or listener not in listeners:
            return
        listeners.remove(listener)

    def listener_count(self, event_type: EventType) -> int:
        return len(self._listeners.get(event_type, ()))

    async def emit(self, event: DispatchEvent) -> None:
        listeners = tuple(self._listeners.get(event.type, ()))
        logger.debug("event.emit", event_type=event.type, listeners=len(listeners))
        for listener in listeners:
            await maybe_await(listener(event))
