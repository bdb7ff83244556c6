from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import replace

from .commands import PrefixValue
from .logging import get_logger
from .model import ActorId, IncomingMessage, ParseResult
from .registry import CommandRegistry, sort_prefixes
from .utils.awaitables import maybe_await

logger = get_logger(__name__)

type MentionPredicate = Callable[[IncomingMessage], bool]

_TOKEN_SPLIT_RE = re.compile(r"\s+")


def mention_prefixes(self_id: ActorId) -> list[str]:
    return [f"<@{self_id}>", f"<@!{self_id}>"]


def match_prefix(text: str, prefixes: str | Sequence[str]) -> str | None:
    lowered = text.lower()
    if isinstance(prefixes, str):
        return prefixes if lowered.startswith(prefixes.lower()) else None
    for prefix in sort_prefixes(prefixes):
        if lowered.startswith(prefix.lower()):
            return prefix
    return None


def split_invocation(text: str, prefix: str) -> ParseResult:
    after = text[len(prefix) :]
    body = after.lstrip()
    args_index = len(text) - len(body)
    alias = _TOKEN_SPLIT_RE.split(body, maxsplit=1)[0] if body else ""
    content = text[args_index + len(alias) :].strip()
    return ParseResult(
        prefix=prefix,
        alias=alias,
        content=content,
        after_prefix=after.strip(),
    )


class PrefixResolver:
    def __init__(
        self,
        registry: CommandRegistry,
        *,
        prefix: PrefixValue = "!",
        allow_mention: bool | MentionPredicate = True,
        self_id: ActorId | None = None,
    ) -> None:
        self.registry = registry
        self.prefix = prefix
        self.allow_mention = allow_mention
        self.self_id = self_id

    async def global_prefixes(self, message: IncomingMessage) -> str | list[str]:
        prefix = self.prefix
        if callable(prefix):
            prefix = await maybe_await(prefix(message))
        mention = (
            self.allow_mention(message)
            if callable(self.allow_mention)
            else self.allow_mention
        )
        if mention and self.self_id is not None:
            extra = mention_prefixes(self.self_id)
            if isinstance(prefix, str):
                return [*extra, prefix]
            return [*extra, *prefix]
        if isinstance(prefix, str):
            return prefix
        return list(prefix)

    async def resolve(self, message: IncomingMessage) -> ParseResult | None:
        prefixes = await self.global_prefixes(message)
        start = match_prefix(message.text, prefixes)
        if start is None:
            return await self.resolve_overrides(message)

        parsed = split_invocation(message.text, start)
        command = self.registry.find_by_alias(parsed.alias) if parsed.alias else None
        if command is None or command.prefix is not None:
            override = await self.resolve_overrides(message)
            return override or parsed

        logger.debug(
            "resolver.matched",
            prefix=start,
            alias=parsed.alias,
            command_id=command.id,
        )
        return replace(parsed, command=command)

    async def resolve_overrides(self, message: IncomingMessage) -> ParseResult | None:
        entries = self.registry.prefix_entries
        if not entries:
            return None

        start: str | None = None
        allowed: set[str] = set()
        for entry in entries:
            key = entry.key
            prefix = await maybe_await(key(message)) if callable(key) else key
            start = match_prefix(message.text, prefix)
            if start is not None:
                allowed = entry.command_ids
                break

        if start is None:
            return None

        parsed = split_invocation(message.text, start)
        command = self.registry.find_by_alias(parsed.alias) if parsed.alias else None
        if command is None or command.id not in allowed:
            return parsed

        logger.debug(
            "resolver.matched_override",
            prefix=start,
            alias=parsed.alias,
            command_id=command.id,
        )
        return replace(parsed, command=command)
