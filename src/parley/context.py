from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .logging import get_logger
from .model import ChannelId, IncomingMessage, MessageId, ParseResult
from .transport import MessageRef, RenderedMessage, SendOptions, Transport

if TYPE_CHECKING:
    from .commands import Command
    from .dispatcher import Dispatcher

logger = get_logger(__name__)


class ResponseTracker:
    """Last response sent for each invoking message, oldest evicted first."""

    def __init__(self, *, max_entries: int = 1000) -> None:
        self._max_entries = max_entries
        self._last: OrderedDict[tuple[ChannelId, MessageId], MessageRef] = (
            OrderedDict()
        )

    def __len__(self) -> int:
        return len(self._last)

    def get(self, message: IncomingMessage) -> MessageRef | None:
        return self._last.get((message.channel_id, message.message_id))

    def set(self, message: IncomingMessage, ref: MessageRef) -> None:
        key = (message.channel_id, message.message_id)
        self._last[key] = ref
        self._last.move_to_end(key)
        while len(self._last) > self._max_entries:
            self._last.popitem(last=False)


@dataclass(slots=True)
class CommandContext:
    """What a handler sees of the invocation it is running for."""

    message: IncomingMessage
    command: Command
    dispatcher: Dispatcher
    transport: Transport
    parsed: ParseResult | None = None

    @property
    def channel_id(self) -> Any:
        return self.message.channel_id

    @property
    def author_id(self) -> Any:
        return self.message.author_id

    @property
    def edits_responses(self) -> bool:
        """Whether sends replace the previous response to this message."""
        return self.dispatcher.settings.handle_edits and self.command.editable

    async def send(
        self,
        message: RenderedMessage | str,
        *,
        reply_to: MessageRef | None = None,
        notify: bool = True,
    ) -> MessageRef | None:
        if isinstance(message, str):
            message = RenderedMessage(text=message)
        if not self.edits_responses:
            return await self._send_new(message, reply_to=reply_to, notify=notify)

        responses = self.dispatcher.responses
        last = responses.get(self.message)
        if last is None:
            ref = await self._send_new(message, reply_to=reply_to, notify=notify)
        else:
            logger.debug(
                "context.edit_response",
                command_id=self.command.id,
                message_id=last.message_id,
            )
            # a transport that cannot edit keeps the old response current
            ref = await self.transport.edit(ref=last, message=message) or last
        if ref is not None:
            responses.set(self.message, ref)
        return ref

    async def reply(
        self, message: RenderedMessage | str, *, notify: bool = True
    ) -> MessageRef | None:
        reply_to = MessageRef(
            channel_id=self.message.channel_id,
            message_id=self.message.message_id,
        )
        return await self.send(message, reply_to=reply_to, notify=notify)

    async def _send_new(
        self,
        message: RenderedMessage,
        *,
        reply_to: MessageRef | None,
        notify: bool,
    ) -> MessageRef | None:
        return await self.transport.send(
            channel_id=self.message.channel_id,
            message=message,
            options=SendOptions(reply_to=reply_to, notify=notify),
        )
