"""Interactive argument collection.

A prompt is a small state machine. `advance` is a pure transition function
over `PromptState`; `Prompter.collect` drives it by sending prompt texts and
waiting for the actor's next message through the transport.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal

from .logging import get_logger
from .model import ActorId, Breakout, Cancelled, ChannelId, IncomingMessage
from .settings import PromptSettings
from .transport import MessageRef, RenderedMessage, Transport
from .utils.awaitables import maybe_await

if TYPE_CHECKING:
    from .commands import Argument, Command, PromptModifier, PromptOptions, PromptText
    from .types import TypeResolver

logger = get_logger(__name__)

type PromptKind = Literal["start", "retry", "timeout", "ended", "cancel"]
type CommandProbe = Callable[[IncomingMessage], Awaitable[bool]]

PROMPT_KINDS: tuple[PromptKind, ...] = ("start", "retry", "timeout", "ended", "cancel")


class PromptSessions:
    """Live prompts keyed by `(channel_id, actor_id)`."""

    def __init__(self) -> None:
        self._live: set[tuple[ChannelId, ActorId]] = set()

    def __len__(self) -> int:
        return len(self._live)

    def add(self, channel_id: ChannelId, actor_id: ActorId) -> bool:
        key = (channel_id, actor_id)
        if key in self._live:
            return False
        self._live.add(key)
        return True

    def remove(self, channel_id: ChannelId, actor_id: ActorId) -> None:
        self._live.discard((channel_id, actor_id))

    def has(self, channel_id: ChannelId, actor_id: ActorId) -> bool:
        return (channel_id, actor_id) in self._live


@dataclass(frozen=True, slots=True)
class PromptData:
    retries: int
    infinite: bool
    message: IncomingMessage
    phrase: str


@dataclass(frozen=True, slots=True)
class ResolvedPrompt:
    retries: int
    time_s: float
    cancel_word: str
    stop_word: str
    optional: bool
    infinite: bool
    limit: int | None
    breakout: bool
    texts: dict[str, PromptText] = field(default_factory=dict)
    modifiers: dict[str, PromptModifier] = field(default_factory=dict)


def resolve_prompt(
    settings: PromptSettings, *layers: PromptOptions | None
) -> ResolvedPrompt:
    """Merge the dispatcher defaults with each layer; later layers win."""
    values: dict[str, Any] = {
        "retries": settings.retries,
        "time_s": settings.time_s,
        "cancel_word": settings.cancel_word,
        "stop_word": settings.stop_word,
        "optional": settings.optional,
        "infinite": settings.infinite,
        "limit": settings.limit,
        "breakout": settings.breakout,
    }
    texts: dict[str, PromptText] = {
        kind: getattr(settings, kind) for kind in PROMPT_KINDS
    }
    modifiers: dict[str, PromptModifier] = {}
    for layer in layers:
        if layer is None:
            continue
        for name in values:
            value = getattr(layer, name)
            if value is not None:
                values[name] = value
        for kind in PROMPT_KINDS:
            text = getattr(layer, kind)
            if text is not None:
                texts[kind] = text
            modifier = getattr(layer, f"modify_{kind}")
            if modifier is not None:
                modifiers[kind] = modifier
    return ResolvedPrompt(**values, texts=texts, modifiers=modifiers)


@dataclass(frozen=True, slots=True)
class PromptState:
    retry: int
    infinite: bool = False
    values: tuple[Any, ...] = ()

    @property
    def sends_prompt(self) -> bool:
        if self.retry == 1:
            return not (self.infinite and self.values)
        return True

    @property
    def kind(self) -> PromptKind:
        return "start" if self.retry == 1 else "retry"


@dataclass(frozen=True, slots=True)
class TimedOut:
    pass


@dataclass(frozen=True, slots=True)
class BrokeOut:
    message: IncomingMessage


@dataclass(frozen=True, slots=True)
class CancelWord:
    pass


@dataclass(frozen=True, slots=True)
class StopWord:
    pass


@dataclass(frozen=True, slots=True)
class CastAttempt:
    value: Any


type PromptEvent = TimedOut | BrokeOut | CancelWord | StopWord | CastAttempt


@dataclass(frozen=True, slots=True)
class Transition:
    state: PromptState
    outcome: Literal["continue", "resolved", "cancelled", "breakout"]
    notify: PromptKind | None = None
    value: Any = None


def advance(
    state: PromptState, event: PromptEvent, *, retries: int, limit: int | None
) -> Transition:
    match event:
        case TimedOut():
            return Transition(
                state, "cancelled", notify="timeout", value=Cancelled("timeout")
            )
        case BrokeOut(message=message):
            return Transition(state, "breakout", value=Breakout(message))
        case CancelWord():
            return Transition(
                state, "cancelled", notify="cancel", value=Cancelled("cancel_word")
            )
        case StopWord():
            if state.values:
                return Transition(state, "resolved", value=list(state.values))
            # nothing collected yet: ask again at the same retry count
            return Transition(state, "continue")
        case CastAttempt(value=None):
            if state.retry <= retries:
                return Transition(replace(state, retry=state.retry + 1), "continue")
            return Transition(
                state, "cancelled", notify="ended", value=Cancelled("ended")
            )
        case CastAttempt(value=value):
            if not state.infinite:
                return Transition(state, "resolved", value=value)
            collected = (*state.values, value)
            if limit is not None and len(collected) >= limit:
                return Transition(
                    replace(state, values=collected),
                    "resolved",
                    value=list(collected),
                )
            return Transition(replace(state, retry=1, values=collected), "continue")
    raise TypeError(f"unknown prompt event {event!r}")


def _reply_predicate(
    actor_id: ActorId, sent: MessageRef | None
) -> Callable[[IncomingMessage], bool]:
    def predicate(candidate: IncomingMessage) -> bool:
        if sent is not None and candidate.message_id == sent.message_id:
            return False
        return candidate.author_id == actor_id

    return predicate


def _join(text: Any) -> Any:
    if isinstance(text, (list, tuple)):
        return "\n".join(str(line) for line in text)
    return text


class Prompter:
    def __init__(
        self,
        *,
        transport: Transport,
        sessions: PromptSessions,
        settings: PromptSettings,
        types: TypeResolver,
        looks_like_command: CommandProbe,
    ) -> None:
        self.transport = transport
        self.sessions = sessions
        self.settings = settings
        self.types = types
        self.looks_like_command = looks_like_command

    def options_for(self, command: Command, argument: Argument) -> ResolvedPrompt:
        return resolve_prompt(self.settings, command.default_prompt, argument.prompt)

    async def _render(
        self,
        kind: PromptKind,
        prompt: ResolvedPrompt,
        *,
        origin: IncomingMessage,
        args: dict[str, Any],
        data: PromptData,
    ) -> str | None:
        text: Any = prompt.texts.get(kind)
        if callable(text):
            text = await maybe_await(text(origin, args, data))
        text = _join(text)
        modifier = prompt.modifiers.get(kind)
        if modifier is not None:
            text = _join(await maybe_await(modifier(text, origin, args, data)))
        if not text:
            return None
        return str(text)

    async def _send(
        self,
        kind: PromptKind,
        prompt: ResolvedPrompt,
        *,
        origin: IncomingMessage,
        args: dict[str, Any],
        data: PromptData,
    ) -> MessageRef | None:
        text = await self._render(kind, prompt, origin=origin, args=args, data=data)
        if text is None:
            return None
        return await self.transport.send(
            channel_id=origin.channel_id,
            message=RenderedMessage(text=text, extra={"prompt": kind}),
        )

    async def _classify(
        self,
        reply: IncomingMessage | None,
        prompt: ResolvedPrompt,
        state: PromptState,
        argument: Argument,
        args: dict[str, Any],
    ) -> PromptEvent:
        if reply is None:
            return TimedOut()
        if prompt.breakout and await self.looks_like_command(reply):
            return BrokeOut(reply)
        lowered = reply.text.strip().lower()
        if lowered == prompt.cancel_word.lower():
            return CancelWord()
        if state.infinite and lowered == prompt.stop_word.lower():
            return StopWord()
        value = await self.types.cast(argument.type, reply.text.strip(), reply, args)
        return CastAttempt(value)

    async def collect(
        self,
        command: Command,
        argument: Argument,
        message: IncomingMessage,
        args: dict[str, Any],
        command_input: str = "",
    ) -> Any:
        """Prompt the author of `message` for `argument`.

        Returns the collected value (a list in infinite mode), `Cancelled`, or
        `Breakout` carrying the reply that named another command.
        """
        prompt = self.options_for(command, argument)
        infinite = prompt.infinite and (
            argument.match != "separate" or not command_input
        )
        # an invalid value typed with the command already used the first try
        extra_retry = 1 if command_input else 0
        state = PromptState(retry=1 + extra_retry, infinite=infinite)

        channel_id, actor_id = message.channel_id, message.author_id
        if not self.sessions.add(channel_id, actor_id):
            # another prompt for this actor opened while this message was gated
            logger.debug(
                "prompt.already_open", command_id=command.id, argument_id=argument.id
            )
            return Cancelled("in_prompt")
        if infinite:
            args[argument.id] = []
        logger.debug(
            "prompt.started",
            command_id=command.id,
            argument_id=argument.id,
            infinite=infinite,
            retry=state.retry,
        )
        previous = message
        try:
            while True:
                sent: MessageRef | None = None
                if state.sends_prompt:
                    if state.retry <= 1 + extra_retry:
                        phrase = command_input
                    else:
                        phrase = previous.text
                    data = PromptData(
                        retries=state.retry,
                        infinite=infinite,
                        message=previous,
                        phrase=phrase,
                    )
                    sent = await self._send(
                        state.kind, prompt, origin=message, args=args, data=data
                    )

                reply = await self.transport.await_next_message(
                    channel_id=channel_id,
                    predicate=_reply_predicate(actor_id, sent),
                    timeout_s=prompt.time_s,
                )
                event = await self._classify(reply, prompt, state, argument, args)
                step = advance(state, event, retries=prompt.retries, limit=prompt.limit)

                if step.notify is not None:
                    notice_phrase = ""
                    if step.notify == "ended" and reply is not None:
                        notice_phrase = reply.text
                    data = PromptData(
                        retries=state.retry,
                        infinite=infinite,
                        message=reply or previous,
                        phrase=notice_phrase,
                    )
                    await self._send(
                        step.notify, prompt, origin=message, args=args, data=data
                    )

                state = step.state
                if infinite:
                    args[argument.id] = list(state.values)
                if reply is not None:
                    previous = reply if step.state.retry != 1 else message

                if step.outcome == "continue":
                    continue
                logger.debug(
                    "prompt.finished",
                    command_id=command.id,
                    argument_id=argument.id,
                    outcome=step.outcome,
                )
                return step.value
        finally:
            self.sessions.remove(channel_id, actor_id)
