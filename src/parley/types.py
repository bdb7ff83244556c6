"""Casting raw argument text to typed values.

Every caster returns `None` when the phrase does not satisfy the type; the
argument parser then falls back to the default or starts a prompt.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import AnyUrl, TypeAdapter, ValidationError

from .errors import UnknownTypeError
from .model import IncomingMessage
from .utils.awaitables import maybe_await

if TYPE_CHECKING:
    from .commands import ArgumentType
    from .registry import CommandRegistry

type NamedCaster = Callable[[str, IncomingMessage, dict[str, Any]], Any]

_URL_ADAPTER = TypeAdapter(AnyUrl)
_DATETIME_ADAPTER = TypeAdapter(datetime)
_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")


@dataclass(frozen=True, slots=True)
class RegexMatch:
    match: re.Match[str]
    matches: tuple[re.Match[str], ...]


def _string(phrase: str) -> str | None:
    return phrase or None


def _lowercase(phrase: str) -> str | None:
    return phrase.lower() or None


def _uppercase(phrase: str) -> str | None:
    return phrase.upper() or None


def _char_codes(phrase: str) -> list[int] | None:
    if not phrase:
        return None
    return [ord(char) for char in phrase]


def _number(phrase: str) -> int | float | None:
    try:
        return int(phrase)
    except ValueError:
        pass
    try:
        value = float(phrase)
    except ValueError:
        return None
    if math.isnan(value):
        return None
    return value


def _integer(phrase: str) -> int | None:
    try:
        return int(phrase)
    except ValueError:
        return None


def _url(phrase: str) -> AnyUrl | None:
    if not phrase:
        return None
    try:
        return _URL_ADAPTER.validate_python(phrase)
    except ValidationError:
        return None


def _date(phrase: str) -> datetime | None:
    if not phrase:
        return None
    try:
        return _DATETIME_ADAPTER.validate_python(phrase)
    except ValidationError:
        return None


def _color(phrase: str) -> int | None:
    match = _COLOR_RE.match(phrase)
    if match is None:
        return None
    return int(match.group(1), 16)


_PHRASE_CASTERS: dict[str, Callable[[str], Any]] = {
    "string": _string,
    "lowercase": _lowercase,
    "uppercase": _uppercase,
    "char_codes": _char_codes,
    "number": _number,
    "integer": _integer,
    "url": _url,
    "date": _date,
    "color": _color,
}


def cast_whitelist(entries: Sequence[str | Sequence[str]], phrase: str) -> str | None:
    lowered = phrase.lower()
    for entry in entries:
        if isinstance(entry, str):
            if entry.lower() == lowered:
                return entry
            continue
        if any(alias.lower() == lowered for alias in entry):
            return entry[0]
    return None


def cast_regex(pattern: re.Pattern[str], phrase: str) -> RegexMatch | None:
    match = pattern.search(phrase)
    if match is None:
        return None
    return RegexMatch(match=match, matches=tuple(pattern.finditer(phrase)))


class TypeResolver:
    def __init__(self, registry: CommandRegistry | None = None) -> None:
        self.registry = registry
        self._types: dict[str, NamedCaster] = {}

    def add_type(self, name: str, caster: NamedCaster) -> None:
        if name in _PHRASE_CASTERS or name in {"command", "command_alias"}:
            raise ValueError(f"type {name!r} is built in")
        self._types[name] = caster

    def remove_type(self, name: str) -> None:
        self._types.pop(name, None)

    def has_type(self, name: str) -> bool:
        return (
            name in _PHRASE_CASTERS
            or name in self._types
            or name in {"command", "command_alias"}
        )

    async def cast(
        self,
        type_: ArgumentType,
        phrase: str,
        message: IncomingMessage,
        args: dict[str, Any],
    ) -> Any:
        if isinstance(type_, re.Pattern):
            return cast_regex(type_, phrase)
        if isinstance(type_, str):
            return await self._cast_named(type_, phrase, message, args)
        if callable(type_):
            return await maybe_await(type_(phrase, message, args))
        return cast_whitelist(type_, phrase)

    async def _cast_named(
        self,
        name: str,
        phrase: str,
        message: IncomingMessage,
        args: dict[str, Any],
    ) -> Any:
        caster = _PHRASE_CASTERS.get(name)
        if caster is not None:
            return caster(phrase)
        if name == "command_alias":
            if self.registry is None or not phrase:
                return None
            return self.registry.find_by_alias(phrase)
        if name == "command":
            if self.registry is None or not phrase:
                return None
            return self.registry.get(phrase)
        custom = self._types.get(name)
        if custom is None:
            raise UnknownTypeError(name)
        return await maybe_await(custom(phrase, message, args))
