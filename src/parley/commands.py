"""Command and argument definitions.

Commands are immutable values; the registry owns their aliases, prefix
overrides and enabled state.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from .model import ActorId, ChannelKind, IncomingMessage
from .settings import SplitMode

if TYPE_CHECKING:
    from .context import CommandContext
    from .prompts import PromptData

type ArgumentMatch = Literal[
    "word",
    "rest",
    "separate",
    "flag",
    "option",
    "text",
    "content",
    "none",
]

ARGUMENT_MATCHES: frozenset[str] = frozenset(
    {"word", "rest", "separate", "flag", "option", "text", "content", "none"}
)

type TypeCaster = Callable[[str, IncomingMessage, dict[str, Any]], Any]
type ArgumentType = str | Sequence[str | Sequence[str]] | re.Pattern[str] | TypeCaster

type PrefixSupplier = Callable[[IncomingMessage], str | Sequence[str] | Awaitable[Any]]
type PrefixValue = str | Sequence[str] | PrefixSupplier

type PermissionCheck = Callable[[IncomingMessage], Any]
type PermissionRequirement = Sequence[str] | PermissionCheck

type IgnoreCheck = (
    Sequence[ActorId] | ActorId | Callable[[IncomingMessage, "Command"], bool]
)

type RegexTrigger = (
    re.Pattern[str] | Callable[[IncomingMessage], re.Pattern[str] | None]
)
type ConditionTrigger = Callable[[IncomingMessage], Any]
type Splitter = Callable[[str], Sequence[str]]

type CommandHandler = Callable[["CommandContext", dict[str, Any]], Any]
type BeforeHook = Callable[["CommandContext"], Any]

type PromptText = (
    str
    | Sequence[str]
    | Callable[[IncomingMessage, dict[str, Any], "PromptData"], Any]
    | None
)
type PromptModifier = Callable[
    [Any, IncomingMessage, dict[str, Any], "PromptData"], Any
]


@dataclass(frozen=True, slots=True)
class PromptOptions:
    """Prompt configuration for one layer; `None` fields inherit."""

    retries: int | None = None
    time_s: float | None = None
    cancel_word: str | None = None
    stop_word: str | None = None
    optional: bool | None = None
    infinite: bool | None = None
    limit: int | None = None
    breakout: bool | None = None
    start: PromptText = None
    retry: PromptText = None
    timeout: PromptText = None
    ended: PromptText = None
    cancel: PromptText = None
    modify_start: PromptModifier | None = None
    modify_retry: PromptModifier | None = None
    modify_timeout: PromptModifier | None = None
    modify_ended: PromptModifier | None = None
    modify_cancel: PromptModifier | None = None


@dataclass(frozen=True, slots=True)
class Argument:
    id: str
    match: ArgumentMatch = "word"
    type: ArgumentType = "string"
    flag: str | Sequence[str] | None = None
    index: int | None = None
    limit: int | None = None
    default: Any = None
    prompt: PromptOptions | None = None
    unordered: bool | int | Sequence[int] = False
    description: str = ""

    def __post_init__(self) -> None:
        if self.match not in ARGUMENT_MATCHES:
            raise ValueError(f"argument {self.id!r} has unknown match {self.match!r}")
        if self.unordered is not False and self.match != "word":
            raise ValueError(f"argument {self.id!r} can only be unordered as a word")
        if self.match in {"flag", "option"} and not self.markers:
            raise ValueError(
                f"argument {self.id!r} uses match {self.match!r} without a flag"
            )
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"argument {self.id!r} limit must be >= 1")

    @property
    def markers(self) -> tuple[str, ...]:
        if self.flag is None:
            return ()
        if isinstance(self.flag, str):
            return (self.flag,)
        return tuple(self.flag)


type ControlPredicate = Callable[[IncomingMessage, dict[str, Any]], Any]


@dataclass(frozen=True, slots=True)
class IfControl:
    """Continue with `then` when `condition` holds, else with `otherwise`.

    The chosen branch replaces the rest of the argument list.
    """

    condition: ControlPredicate
    then: tuple[ArgumentItem, ...] = ()
    otherwise: tuple[ArgumentItem, ...] = ()


@dataclass(frozen=True, slots=True)
class CaseControl:
    """Continue with the arguments of the first branch whose predicate holds."""

    branches: tuple[tuple[ControlPredicate, tuple[ArgumentItem, ...]], ...]
    fallback: tuple[ArgumentItem, ...] = ()


@dataclass(frozen=True, slots=True)
class DoControl:
    """Run `fn(message, args)` for its side effects, then carry on."""

    fn: ControlPredicate


@dataclass(frozen=True, slots=True)
class EndControl:
    """Stop parsing; the handler gets the arguments collected so far."""


@dataclass(frozen=True, slots=True)
class CancelControl:
    """Abandon the invocation."""


type Control = IfControl | CaseControl | DoControl | EndControl | CancelControl
type ArgumentItem = Argument | Control


def branches_of(item: ArgumentItem) -> tuple[tuple[ArgumentItem, ...], ...]:
    match item:
        case IfControl(then=then, otherwise=otherwise):
            return (then, otherwise)
        case CaseControl(branches=branches, fallback=fallback):
            return (*(items for _, items in branches), fallback)
    return ()


def iter_arguments(items: Sequence[ArgumentItem]) -> Iterator[Argument]:
    """Every argument in `items`, including those inside control branches."""
    for item in items:
        if isinstance(item, Argument):
            yield item
            continue
        for branch in branches_of(item):
            yield from iter_arguments(branch)


def _check_duplicates(command_id: str, items: Sequence[ArgumentItem]) -> None:
    seen: set[str] = set()
    for item in items:
        if isinstance(item, Argument):
            if item.id in seen:
                raise ValueError(
                    f"command {command_id!r} has duplicate argument {item.id!r}"
                )
            seen.add(item.id)
            continue
        for branch in branches_of(item):
            _check_duplicates(command_id, branch)


@dataclass(frozen=True, slots=True, eq=False)
class Command:
    id: str
    handler: CommandHandler
    aliases: tuple[str, ...] = ()
    args: tuple[ArgumentItem, ...] = ()
    description: str = ""
    cooldown_s: float | None = None
    ratelimit: int = 1
    channel: ChannelKind | None = None
    owner_only: bool = False
    client_permissions: PermissionRequirement | None = None
    user_permissions: PermissionRequirement | None = None
    ignore_cooldown: IgnoreCheck | None = None
    ignore_permissions: IgnoreCheck | None = None
    prefix: PrefixValue | None = None
    regex: RegexTrigger | None = None
    condition: ConditionTrigger | None = None
    editable: bool = True
    typing: bool = False
    before: BeforeHook | None = None
    split: SplitMode | Splitter | None = None
    default_prompt: PromptOptions | None = None
    options: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("command id must be a non-empty string")
        object.__setattr__(self, "aliases", tuple(self.aliases))
        object.__setattr__(self, "args", tuple(self.args))
        if self.ratelimit < 1:
            raise ValueError(f"command {self.id!r} ratelimit must be >= 1")
        if self.channel not in {None, "guild", "dm"}:
            raise ValueError(
                f"command {self.id!r} has unknown channel {self.channel!r}"
            )
        _check_duplicates(self.id, self.args)

    def prefix_keys(self) -> tuple[str | PrefixSupplier, ...]:
        """Keys this command contributes to the prefix index."""
        if self.prefix is None:
            return ()
        if isinstance(self.prefix, str) or callable(self.prefix):
            return (self.prefix,)
        return tuple(self.prefix)

    def __str__(self) -> str:
        return self.id
