from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import anyio

from .logging import get_logger
from .model import ActorId

logger = get_logger(__name__)


class TaskGroup(Protocol):
    def start_soon(
        self, func: Callable[..., Awaitable[object]], *args: Any
    ) -> None: ...


@dataclass(slots=True)
class CooldownEntry:
    uses: int
    window_end: float
    generation: int


@dataclass(frozen=True, slots=True)
class CooldownHit:
    actor_id: ActorId
    command_id: str
    remaining_s: float


class CooldownTracker:
    """Per-actor, per-command use counters with a fixed window.

    The window opens on the first use and lasts `duration_s` from the
    timestamp of that use. Entries whose window has passed are dropped lazily
    on the next check; with a task group attached, an expiry task also evicts
    them so idle actors do not accumulate.
    """

    def __init__(self, *, task_group: TaskGroup | None = None) -> None:
        self._task_group = task_group
        self._entries: dict[ActorId, dict[str, CooldownEntry]] = {}
        self._generation = 0

    def attach(self, task_group: TaskGroup | None) -> None:
        self._task_group = task_group

    def __len__(self) -> int:
        return len(self._entries)

    def entry(self, actor_id: ActorId, command_id: str) -> CooldownEntry | None:
        return self._entries.get(actor_id, {}).get(command_id)

    def check(
        self,
        *,
        actor_id: ActorId,
        command_id: str,
        now: float,
        duration_s: float,
        ratelimit: int,
    ) -> CooldownHit | None:
        """Record one use; return a hit when the actor is over the limit."""
        if duration_s <= 0:
            return None

        by_command = self._entries.setdefault(actor_id, {})
        entry = by_command.get(command_id)
        if entry is not None and now >= entry.window_end:
            self._evict(actor_id, command_id, entry.generation)
            by_command = self._entries.setdefault(actor_id, {})
            entry = None
        if entry is None:
            self._generation += 1
            entry = CooldownEntry(
                uses=0,
                window_end=now + duration_s,
                generation=self._generation,
            )
            by_command[command_id] = entry
            if self._task_group is not None:
                self._task_group.start_soon(
                    self._expire, actor_id, command_id, entry.generation, duration_s
                )

        if entry.uses >= ratelimit:
            remaining = max(entry.window_end - now, 0.0)
            logger.debug(
                "cooldown.hit",
                actor_id=actor_id,
                command_id=command_id,
                remaining_s=remaining,
            )
            return CooldownHit(
                actor_id=actor_id, command_id=command_id, remaining_s=remaining
            )

        entry.uses += 1
        return None

    async def _expire(
        self, actor_id: ActorId, command_id: str, generation: int, delay_s: float
    ) -> None:
        await anyio.sleep(delay_s)
        self._evict(actor_id, command_id, generation)

    def _evict(self, actor_id: ActorId, command_id: str, generation: int) -> None:
        by_command = self._entries.get(actor_id)
        if by_command is None:
            return
        entry = by_command.get(command_id)
        if entry is None or entry.generation != generation:
            return
        del by_command[command_id]
        if not by_command:
            del self._entries[actor_id]

    def clear(self) -> None:
        self._entries.clear()
