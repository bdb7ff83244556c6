from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import anyio

from .model import ChannelId, IncomingMessage, MessageId

type MessagePredicate = Callable[[IncomingMessage], bool]


@dataclass(frozen=True, slots=True)
class MessageRef:
    channel_id: ChannelId
    message_id: MessageId
    raw: Any | None = field(default=None, compare=False, hash=False)


@dataclass(frozen=True, slots=True)
class RenderedMessage:
    text: str
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SendOptions:
    reply_to: MessageRef | None = None
    notify: bool = True


class Transport(Protocol):
    async def close(self) -> None: ...

    async def send(
        self,
        *,
        channel_id: ChannelId,
        message: RenderedMessage,
        options: SendOptions | None = None,
    ) -> MessageRef | None: ...

    async def edit(
        self,
        *,
        ref: MessageRef,
        message: RenderedMessage,
        wait: bool = True,
    ) -> MessageRef | None: ...

    async def await_next_message(
        self,
        *,
        channel_id: ChannelId,
        predicate: MessagePredicate,
        timeout_s: float,
    ) -> IncomingMessage | None: ...

    async def typing(self, *, channel_id: ChannelId, active: bool) -> None: ...


@dataclass(slots=True, eq=False)
class _Waiter:
    channel_id: ChannelId
    predicate: MessagePredicate
    done: anyio.Event = field(default_factory=anyio.Event)
    result: IncomingMessage | None = None


class MessageWaiters:
    """Pending `await_next_message` calls for a transport.

    The transport feeds every inbound message through `feed` before handing
    it to the dispatcher; the first matching waiter in registration order
    receives it.
    """

    def __init__(self) -> None:
        self._waiters: list[_Waiter] = []

    def __len__(self) -> int:
        return len(self._waiters)

    async def wait(
        self,
        *,
        channel_id: ChannelId,
        predicate: MessagePredicate,
        timeout_s: float,
    ) -> IncomingMessage | None:
        waiter = _Waiter(channel_id=channel_id, predicate=predicate)
        self._waiters.append(waiter)
        try:
            with anyio.move_on_after(timeout_s):
                await waiter.done.wait()
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
        return waiter.result

    def feed(self, message: IncomingMessage) -> bool:
        for waiter in self._waiters:
            if waiter.done.is_set() or waiter.channel_id != message.channel_id:
                continue
            if not waiter.predicate(message):
                continue
            waiter.result = message
            waiter.done.set()
            self._waiters.remove(waiter)
            return True
        return False
