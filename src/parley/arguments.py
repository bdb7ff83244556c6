from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .commands import (
    Argument,
    ArgumentItem,
    CancelControl,
    CaseControl,
    Command,
    DoControl,
    EndControl,
    IfControl,
    Splitter,
    iter_arguments,
)
from .logging import get_logger
from .model import Breakout, Cancelled, IncomingMessage
from .prompts import Prompter
from .settings import SplitMode
from .splitting import Token, join_collapsed, join_raw, split_content
from .types import TypeResolver
from .utils.awaitables import maybe_await

logger = get_logger(__name__)

type ParseOutcome = dict[str, Any] | Cancelled | Breakout


def _lower_markers(items: Sequence[ArgumentItem], match: str) -> tuple[str, ...]:
    return tuple(
        marker.lower()
        for argument in iter_arguments(items)
        if argument.match == match
        for marker in argument.markers
    )


def _unordered_positions(
    unordered: bool | int | Sequence[int], count: int
) -> list[int]:
    if isinstance(unordered, bool):
        return list(range(count)) if unordered else []
    if isinstance(unordered, int):
        return list(range(unordered, count))
    return [position for position in unordered if 0 <= position < count]


@dataclass(slots=True)
class _ParseState:
    tokens: list[Token]
    words: list[Token]
    flags: tuple[str, ...] = ()
    cursor: int = 0
    used: set[int] = field(default_factory=set)
    args: dict[str, Any] = field(default_factory=dict)


def filter_markers(
    tokens: Sequence[Token],
    *,
    flags: Sequence[str],
    options: Sequence[str],
) -> list[Token]:
    """Drop flag tokens, option tokens and the values that follow bare options."""
    kept: list[Token] = []
    skip_next = False
    for token in tokens:
        if skip_next:
            skip_next = False
            continue
        lowered = token.value.lower()
        if lowered in flags:
            continue
        if any(lowered.startswith(marker) for marker in options):
            skip_next = lowered in options
            continue
        kept.append(token)
    return kept


def find_flag(tokens: Sequence[Token], markers: Sequence[str]) -> bool:
    wanted = {marker.lower() for marker in markers}
    return any(token.value.lower() in wanted for token in tokens)


def find_option(
    tokens: Sequence[Token],
    markers: Sequence[str],
    *,
    flags: Sequence[str] = (),
) -> str:
    # later occurrences win, so scan from the end
    for position in range(len(tokens) - 1, -1, -1):
        lowered = tokens[position].value.lower()
        if lowered in flags:
            continue
        for marker in markers:
            if not lowered.startswith(marker.lower()):
                continue
            remainder = tokens[position].value[len(marker) :].strip()
            if remainder:
                return remainder
            if position + 1 < len(tokens):
                return tokens[position + 1].value
            return ""
    return ""


class ArgumentParser:
    """Turns the text after an alias into the argument bag of a command."""

    def __init__(
        self,
        *,
        types: TypeResolver,
        prompter: Prompter,
        default_split: SplitMode = "plain",
    ) -> None:
        self.types = types
        self.prompter = prompter
        self.default_split = default_split

    def split_mode(self, command: Command) -> SplitMode | Splitter:
        return command.split if command.split is not None else self.default_split

    async def parse(
        self,
        command: Command,
        message: IncomingMessage,
        content: str,
    ) -> ParseOutcome:
        tokens = split_content(content, self.split_mode(command))
        flags = _lower_markers(command.args, "flag")
        words = filter_markers(
            tokens, flags=flags, options=_lower_markers(command.args, "option")
        )
        state = _ParseState(tokens=tokens, words=words, flags=flags)
        outcome = await self._parse_items(command, message, command.args, state)
        if isinstance(outcome, (Cancelled, Breakout)):
            return outcome
        return state.args

    async def _parse_items(
        self,
        command: Command,
        message: IncomingMessage,
        items: Sequence[ArgumentItem],
        state: _ParseState,
    ) -> Cancelled | Breakout | None:
        args = state.args
        for position, item in enumerate(items):
            match item:
                case IfControl(condition=condition, then=then, otherwise=otherwise):
                    taken = await maybe_await(condition(message, args))
                    branch = then if taken else otherwise
                    return await self._parse_items(command, message, branch, state)
                case CaseControl(branches=branches, fallback=fallback):
                    branch = fallback
                    for predicate, candidate in branches:
                        if await maybe_await(predicate(message, args)):
                            branch = candidate
                            break
                    return await self._parse_items(command, message, branch, state)
                case DoControl(fn=fn):
                    await maybe_await(fn(message, args))
                    continue
                case EndControl():
                    logger.debug("arguments.ended", command_id=command.id)
                    return None
                case CancelControl():
                    logger.debug("arguments.cancelled", command_id=command.id)
                    return Cancelled("control")

            value = await self._extract(command, item, message, state)
            if isinstance(value, (Cancelled, Breakout)):
                logger.debug(
                    "arguments.interrupted",
                    command_id=command.id,
                    argument_id=item.id,
                    outcome=type(value).__name__,
                    position=position,
                )
                return value
            args[item.id] = value
        return None

    async def _extract(
        self,
        command: Command,
        argument: Argument,
        message: IncomingMessage,
        state: _ParseState,
    ) -> Any:
        args, tokens, words = state.args, state.tokens, state.words
        match argument.match:
            case "word" if argument.unordered is not False:
                return await self._process_unordered(command, argument, message, state)
            case "word":
                position = (
                    argument.index if argument.index is not None else state.cursor
                )
                state.cursor += 1
                phrase = words[position].value if position < len(words) else ""
                return await self.process(command, argument, message, args, phrase)
            case "rest" | "text":
                selected = self._slice(words, argument, state.cursor)
                joined = (
                    join_raw(selected)
                    if argument.match == "rest"
                    else join_collapsed(selected)
                )
                return await self.process(command, argument, message, args, joined)
            case "separate":
                selected = self._slice(words, argument, state.cursor)
                return await self._process_separate(
                    command, argument, message, args, selected
                )
            case "flag":
                found = find_flag(tokens, argument.markers)
                return not found if argument.default is not None else found
            case "option":
                phrase = find_option(tokens, argument.markers, flags=state.flags)
                return await self.process(command, argument, message, args, phrase)
            case "content":
                selected = self._slice(tokens, argument, 0)
                return await self.process(
                    command, argument, message, args, join_raw(selected)
                )
            case "none":
                return await self.process(command, argument, message, args, "")
        raise ValueError(f"unknown match {argument.match!r}")

    async def _process_unordered(
        self,
        command: Command,
        argument: Argument,
        message: IncomingMessage,
        state: _ParseState,
    ) -> Any:
        """Cast the first unused word that fits; prompt or default otherwise."""
        for position in _unordered_positions(argument.unordered, len(state.words)):
            if position in state.used:
                continue
            phrase = state.words[position].value
            value = await self.types.cast(argument.type, phrase, message, state.args)
            if value is not None:
                state.used.add(position)
                return value
        return await self.process(command, argument, message, state.args, "")

    @staticmethod
    def _slice(tokens: Sequence[Token], argument: Argument, start: int) -> list[Token]:
        begin = argument.index if argument.index is not None else start
        selected = list(tokens[begin:])
        if argument.limit is not None:
            selected = selected[: argument.limit]
        return selected

    async def _process_separate(
        self,
        command: Command,
        argument: Argument,
        message: IncomingMessage,
        args: dict[str, Any],
        selected: Sequence[Token],
    ) -> Any:
        if not selected:
            return await self.process(command, argument, message, args, "")
        values: list[Any] = []
        for token in selected:
            value = await self.process(command, argument, message, args, token.value)
            if isinstance(value, (Cancelled, Breakout)):
                return value
            values.append(value)
        return values

    async def process(
        self,
        command: Command,
        argument: Argument,
        message: IncomingMessage,
        args: dict[str, Any],
        phrase: str,
    ) -> Any:
        """Cast one phrase, falling back to a prompt or the default."""
        phrase = phrase.strip()
        optional = self.prompter.options_for(command, argument).optional
        if not phrase and optional:
            return await self.default(argument, message, args)

        value = await self.types.cast(argument.type, phrase, message, args)
        if value is not None:
            return value
        if argument.prompt is not None:
            return await self.prompter.collect(command, argument, message, args, phrase)
        return await self.default(argument, message, args)

    @staticmethod
    async def default(
        argument: Argument, message: IncomingMessage, args: dict[str, Any]
    ) -> Any:
        if callable(argument.default):
            return await maybe_await(argument.default(message, args))
        return argument.default
