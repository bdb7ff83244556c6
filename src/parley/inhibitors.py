"""Gate predicates that can veto a message before or after resolution.

Stages run in the order ``all`` -> ``pre`` -> ``post``. Within a stage every
enabled inhibitor is evaluated concurrently; the block reported by the
highest-priority inhibitor (registration order breaks ties) wins.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

import anyio

from .logging import get_logger
from .model import IncomingMessage
from .utils.awaitables import maybe_await

if TYPE_CHECKING:
    from .commands import Command

logger = get_logger(__name__)

type InhibitorStage = Literal["all", "pre", "post"]
type InhibitorCheck = Callable[[IncomingMessage, "Command | None"], Any]

STAGES: tuple[InhibitorStage, ...] = ("all", "pre", "post")


class BuiltInReasons:
    CLIENT = "client"
    BOT = "bot"
    OWNER = "owner"
    GUILD = "guild"
    DM = "dm"


@dataclass(frozen=True, slots=True)
class Inhibitor:
    """A gate; `check` returns a falsy value to pass.

    A truthy non-string result blocks with `reason`; a string result blocks
    with that string.
    """

    id: str
    check: InhibitorCheck
    stage: InhibitorStage = "post"
    reason: str = ""
    priority: int = 0

    def __post_init__(self) -> None:
        if self.stage not in STAGES:
            raise ValueError(f"inhibitor {self.id!r} has unknown stage {self.stage!r}")

    async def evaluate(
        self, message: IncomingMessage, command: Command | None
    ) -> str | None:
        result = await maybe_await(self.check(message, command))
        if not result:
            return None
        if isinstance(result, str):
            return result
        return self.reason or self.id


class InhibitorPipeline:
    def __init__(self) -> None:
        self._inhibitors: dict[str, Inhibitor] = {}
        self._disabled: set[str] = set()

    def __contains__(self, inhibitor_id: object) -> bool:
        return inhibitor_id in self._inhibitors

    def __len__(self) -> int:
        return len(self._inhibitors)

    def add(self, inhibitor: Inhibitor) -> None:
        if inhibitor.id in self._inhibitors:
            raise ValueError(f"inhibitor {inhibitor.id!r} is already registered")
        self._inhibitors[inhibitor.id] = inhibitor

    def remove(self, inhibitor_id: str) -> Inhibitor:
        try:
            inhibitor = self._inhibitors.pop(inhibitor_id)
        except KeyError:
            raise ValueError(f"inhibitor {inhibitor_id!r} is not registered") from None
        self._disabled.discard(inhibitor_id)
        return inhibitor

    def set_enabled(self, inhibitor_id: str, enabled: bool) -> None:
        if inhibitor_id not in self._inhibitors:
            raise ValueError(f"inhibitor {inhibitor_id!r} is not registered")
        if enabled:
            self._disabled.discard(inhibitor_id)
        else:
            self._disabled.add(inhibitor_id)

    def for_stage(self, stage: InhibitorStage) -> list[Inhibitor]:
        selected = [
            inhibitor
            for inhibitor in self._inhibitors.values()
            if inhibitor.stage == stage and inhibitor.id not in self._disabled
        ]
        # sort is stable, so equal priorities keep registration order
        selected.sort(key=lambda inhibitor: -inhibitor.priority)
        return selected

    async def test(
        self,
        stage: InhibitorStage,
        message: IncomingMessage,
        command: Command | None = None,
    ) -> str | None:
        inhibitors = self.for_stage(stage)
        if not inhibitors:
            return None

        reasons: list[str | None] = [None] * len(inhibitors)
        faults: list[BaseException | None] = [None] * len(inhibitors)

        async def run_one(idx: int, inhibitor: Inhibitor) -> None:
            try:
                reasons[idx] = await inhibitor.evaluate(message, command)
            except Exception as exc:  # noqa: BLE001
                faults[idx] = exc

        async with anyio.create_task_group() as tg:
            for idx, inhibitor in enumerate(inhibitors):
                tg.start_soon(run_one, idx, inhibitor)

        for inhibitor, fault in zip(inhibitors, faults, strict=True):
            if fault is not None:
                logger.debug(
                    "inhibitor.failed",
                    inhibitor_id=inhibitor.id,
                    stage=stage,
                    error=str(fault),
                    error_type=fault.__class__.__name__,
                )
                raise fault

        for inhibitor, reason in zip(inhibitors, reasons, strict=True):
            if reason is not None:
                logger.debug(
                    "inhibitor.blocked",
                    inhibitor_id=inhibitor.id,
                    stage=stage,
                    reason=reason,
                )
                return reason
        return None
