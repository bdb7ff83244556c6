from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from .commands import Command, PrefixSupplier
from .errors import AliasConflictError, DuplicateCommandError, UnknownCommandError
from .logging import get_logger

logger = get_logger(__name__)

type PrefixKey = str | PrefixSupplier


def prefix_sort_key(prefix: PrefixKey) -> tuple[int, int, str]:
    # Longer literal prefixes first, then dynamic suppliers, then the empty prefix.
    if callable(prefix):
        return (1, 0, "")
    if prefix == "":
        return (2, 0, "")
    return (0, -len(prefix), prefix)


def sort_prefixes(prefixes: Iterable[str]) -> list[str]:
    return sorted(prefixes, key=prefix_sort_key)


@dataclass(slots=True)
class PrefixEntry:
    key: PrefixKey
    command_ids: set[str] = field(default_factory=set)


class CommandRegistry:
    def __init__(self, *, alias_replacement: re.Pattern[str] | None = None) -> None:
        self.alias_replacement = alias_replacement
        self._commands: dict[str, Command] = {}
        self._aliases: dict[str, str] = {}
        self._prefixes: list[PrefixEntry] = []
        self._disabled: set[str] = set()

    def __contains__(self, command_id: object) -> bool:
        return command_id in self._commands

    def __iter__(self) -> Iterator[Command]:
        return iter(tuple(self._commands.values()))

    def __len__(self) -> int:
        return len(self._commands)

    @property
    def aliases(self) -> dict[str, str]:
        return dict(self._aliases)

    @property
    def prefix_entries(self) -> tuple[PrefixEntry, ...]:
        return tuple(self._prefixes)

    def _alias_keys(self, alias: str) -> list[str]:
        key = alias.lower()
        keys = [key]
        if self.alias_replacement is not None:
            replacement = self.alias_replacement.sub("", key)
            if replacement != key and replacement:
                keys.append(replacement)
        return keys

    def register(self, command: Command) -> None:
        if command.id in self._commands:
            raise DuplicateCommandError(command.id)

        pending: dict[str, str] = {}
        for alias in command.aliases:
            for key in self._alias_keys(alias):
                conflict = self._aliases.get(key)
                if conflict is not None and conflict != command.id:
                    raise AliasConflictError(key, command.id, conflict)
                pending[key] = command.id

        self._commands[command.id] = command
        self._aliases.update(pending)

        new_entry = False
        for key in command.prefix_keys():
            entry = self._prefix_entry(key)
            if entry is None:
                self._prefixes.append(PrefixEntry(key=key, command_ids={command.id}))
                new_entry = True
            else:
                entry.command_ids.add(command.id)
        if new_entry:
            self._prefixes.sort(key=lambda item: prefix_sort_key(item.key))

        logger.debug(
            "registry.registered",
            command_id=command.id,
            aliases=sorted(pending),
            prefix_override=bool(command.prefix_keys()),
        )

    def deregister(self, command: Command | str) -> Command:
        command_id = command if isinstance(command, str) else command.id
        existing = self._commands.pop(command_id, None)
        if existing is None:
            raise UnknownCommandError(command_id)

        for alias in existing.aliases:
            for key in self._alias_keys(alias):
                if self._aliases.get(key) == command_id:
                    del self._aliases[key]

        for key in existing.prefix_keys():
            entry = self._prefix_entry(key)
            if entry is None:
                continue
            entry.command_ids.discard(command_id)
            if not entry.command_ids:
                self._prefixes.remove(entry)

        self._disabled.discard(command_id)
        logger.debug("registry.deregistered", command_id=command_id)
        return existing

    def _prefix_entry(self, key: PrefixKey) -> PrefixEntry | None:
        for entry in self._prefixes:
            if entry.key is key or entry.key == key:
                return entry
        return None

    def get(self, command_id: str) -> Command | None:
        return self._commands.get(command_id)

    def find_by_alias(self, name: str) -> Command | None:
        command_id = self._aliases.get(name.lower())
        if command_id is None:
            return None
        return self._commands.get(command_id)

    def is_enabled(self, command: Command | str) -> bool:
        command_id = command if isinstance(command, str) else command.id
        return command_id not in self._disabled

    def enable(self, command_id: str) -> bool:
        if command_id not in self._commands:
            raise UnknownCommandError(command_id)
        if command_id not in self._disabled:
            return False
        self._disabled.discard(command_id)
        return True

    def disable(self, command_id: str) -> bool:
        if command_id not in self._commands:
            raise UnknownCommandError(command_id)
        if command_id in self._disabled:
            return False
        self._disabled.add(command_id)
        return True
