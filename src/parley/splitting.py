from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .settings import SplitMode

_PLAIN_RE = re.compile(r"(\S+)(\s*)")
_QUOTED_RE = re.compile(r'("[^"\n]*"|[^\s"]+|")(\s*)')
_STICKY_RE = re.compile(r'([^\s"]*?"[^"\n]*"|[^\s"]+|")(\s*)')

SPLIT_MODES: frozenset[str] = frozenset({"plain", "quoted", "sticky", "none"})


@dataclass(frozen=True, slots=True)
class Token:
    """One word of the argument text.

    `raw` is the text as typed (quotes included), `trailing` the whitespace
    that followed it, so `raw + trailing` over a run of tokens reproduces the
    original text.
    """

    value: str
    raw: str
    trailing: str = ""


def _unquote(raw: str) -> str:
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        return raw[1:-1]
    return raw


def _scan(pattern: re.Pattern[str], content: str, *, unquote: bool) -> list[Token]:
    tokens: list[Token] = []
    for match in pattern.finditer(content.lstrip()):
        raw, trailing = match.group(1), match.group(2)
        value = _unquote(raw) if unquote else raw
        tokens.append(Token(value=value, raw=raw, trailing=trailing))
    return tokens


def split_content(
    content: str,
    mode: SplitMode | Callable[[str], Sequence[str]] = "plain",
) -> list[Token]:
    if callable(mode):
        return [Token(value=part, raw=part, trailing=" ") for part in mode(content)]
    if mode == "plain":
        return _scan(_PLAIN_RE, content, unquote=False)
    if mode == "quoted":
        return _scan(_QUOTED_RE, content, unquote=True)
    if mode == "sticky":
        return _scan(_STICKY_RE, content, unquote=True)
    if mode == "none":
        stripped = content.strip()
        if not stripped:
            return []
        return [Token(value=stripped, raw=stripped)]
    raise ValueError(f"unknown split mode {mode!r}")


def join_raw(tokens: Sequence[Token]) -> str:
    return "".join(token.raw + token.trailing for token in tokens).strip()


def join_collapsed(tokens: Sequence[Token]) -> str:
    return " ".join(token.raw for token in tokens)
