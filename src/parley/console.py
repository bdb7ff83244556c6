"""Local stdin/stdout transport and a handful of demo commands."""

from __future__ import annotations

import itertools
import re
import time
from typing import Any

import anyio
from rich.console import Console
from rich.markup import escape

from .commands import Argument, Command, PromptOptions
from .context import CommandContext
from .dispatcher import Dispatcher
from .events import (
    CommandBlocked,
    CommandCancelled,
    CommandError,
    CooldownBlocked,
    MissingPermissions,
)
from .logging import get_logger
from .model import ActorId, ChannelId, IncomingMessage
from .transport import (
    MessagePredicate,
    MessageRef,
    MessageWaiters,
    RenderedMessage,
    SendOptions,
)

logger = get_logger(__name__)

CONSOLE_CHANNEL = "console"
CONSOLE_AUTHOR = "local"
CONSOLE_SELF = "parley"


class ConsoleTransport:
    def __init__(
        self,
        *,
        console: Console | None = None,
        channel_id: ChannelId = CONSOLE_CHANNEL,
        author_id: ActorId = CONSOLE_AUTHOR,
        guild_id: str | None = None,
    ) -> None:
        self.console = console if console is not None else Console()
        self.channel_id = channel_id
        self.author_id = author_id
        self.guild_id = guild_id
        self.waiters = MessageWaiters()
        self._inbound_ids = itertools.count(1)
        self._outbound_ids = itertools.count(1)

    async def close(self) -> None:
        self.waiters = MessageWaiters()

    async def send(
        self,
        *,
        channel_id: ChannelId,
        message: RenderedMessage,
        options: SendOptions | None = None,
    ) -> MessageRef:
        ref = MessageRef(
            channel_id=channel_id, message_id=f"out-{next(self._outbound_ids)}"
        )
        marker = "[dim]>>[/] " if options is not None and options.reply_to else ""
        self.console.print(
            f"{marker}[bold cyan]{CONSOLE_SELF}[/] {escape(message.text)}"
        )
        return ref

    async def edit(
        self,
        *,
        ref: MessageRef,
        message: RenderedMessage,
        wait: bool = True,
    ) -> MessageRef:
        self.console.print(
            f"[bold cyan]{CONSOLE_SELF}[/] {escape(message.text)} [dim](edited)[/]"
        )
        return ref

    async def await_next_message(
        self,
        *,
        channel_id: ChannelId,
        predicate: MessagePredicate,
        timeout_s: float,
    ) -> IncomingMessage | None:
        return await self.waiters.wait(
            channel_id=channel_id, predicate=predicate, timeout_s=timeout_s
        )

    async def typing(self, *, channel_id: ChannelId, active: bool) -> None:
        if active:
            self.console.print(f"[dim]{CONSOLE_SELF} is typing…[/]")

    def make_message(self, text: str) -> IncomingMessage:
        return IncomingMessage(
            channel_id=self.channel_id,
            message_id=f"in-{next(self._inbound_ids)}",
            author_id=self.author_id,
            text=text,
            timestamp=time.time(),
            guild_id=self.guild_id,
        )

    async def read_line(self) -> str | None:
        try:
            return await anyio.to_thread.run_sync(self.console.input, "[bold]> [/]")
        except EOFError:
            return None


async def _ping(ctx: CommandContext, args: dict[str, Any]) -> str:
    await ctx.reply("pong")
    return "pong"


async def _echo(ctx: CommandContext, args: dict[str, Any]) -> None:
    text = args["text"]
    if args["shout"]:
        text = text.upper()
    await ctx.send(text)


async def _pick(ctx: CommandContext, args: dict[str, Any]) -> None:
    await ctx.reply(f"you picked {args['choice']}")


async def _remind(ctx: CommandContext, args: dict[str, Any]) -> None:
    seconds, note = args["seconds"], args["note"]
    await ctx.reply(f"reminding you in {seconds}s")
    await anyio.sleep(seconds)
    await ctx.send(f"reminder: {note}")


async def _greet(ctx: CommandContext, args: dict[str, Any]) -> None:
    await ctx.send(f"hello, {args['match'].group(1)}")


def demo_commands() -> list[Command]:
    return [
        Command(
            id="ping",
            handler=_ping,
            aliases=("ping", "p"),
            description="Reply with pong.",
            cooldown_s=5.0,
            ratelimit=2,
        ),
        Command(
            id="echo",
            handler=_echo,
            aliases=("echo", "say"),
            description="Repeat the text back.",
            split="quoted",
            args=(
                Argument(id="shout", match="flag", flag=("--shout", "-s")),
                Argument(
                    id="text",
                    match="rest",
                    prompt=PromptOptions(start="What should I say?"),
                ),
            ),
        ),
        Command(
            id="pick",
            handler=_pick,
            aliases=("pick",),
            description="Pick rock, paper or scissors.",
            args=(
                Argument(
                    id="choice",
                    type=(("rock", "r"), ("paper", "p"), ("scissors", "s")),
                    prompt=PromptOptions(
                        retries=2,
                        start="Rock, paper or scissors?",
                        retry=lambda message, args, data: (
                            f"{data.phrase!r} is not a choice, try again."
                        ),
                        ended="Too many tries.",
                        cancel="Cancelled.",
                        timeout="Out of time.",
                    ),
                ),
            ),
        ),
        Command(
            id="remind",
            handler=_remind,
            aliases=("remind",),
            description="Send a note back after a delay.",
            typing=True,
            args=(
                Argument(
                    id="seconds",
                    type="integer",
                    prompt=PromptOptions(
                        start="In how many seconds?",
                        retry="That is not a whole number.",
                    ),
                ),
                Argument(id="note", match="rest", default="(no note)"),
            ),
        ),
        Command(
            id="greet",
            handler=_greet,
            description="Answer greetings.",
            regex=re.compile(r"^(?:hi|hello),?\s+(\w+)", re.IGNORECASE),
        ),
    ]


def _report(console: Console, dispatcher: Dispatcher) -> None:
    def blocked(event: CommandBlocked) -> None:
        console.print(f"[yellow]blocked[/] {event.command.id}: {event.reason}")

    def cooldown(event: CooldownBlocked) -> None:
        console.print(
            f"[yellow]cooldown[/] {event.command.id}: "
            f"wait {event.remaining_s:.1f}s"
        )

    def missing(event: MissingPermissions) -> None:
        console.print(
            f"[yellow]missing {event.kind} permissions[/] {event.command.id}: "
            f"{event.missing}"
        )

    def cancelled(event: CommandCancelled) -> None:
        console.print(f"[dim]{event.command.id} cancelled ({event.reason})[/]")

    def error(event: CommandError) -> None:
        console.print(f"[red]error[/] {escape(str(event.error))}")

    dispatcher.on("command_blocked", blocked)
    dispatcher.on("cooldown", cooldown)
    dispatcher.on("missing_permissions", missing)
    dispatcher.on("command_cancelled", cancelled)
    dispatcher.on("error", error)


async def run_console(dispatcher: Dispatcher, transport: ConsoleTransport) -> None:
    """Feed console lines to the dispatcher until end of input."""
    _report(transport.console, dispatcher)
    async with anyio.create_task_group() as tg:
        dispatcher.attach(tg)
        while True:
            line = await transport.read_line()
            if line is None:
                break
            if not line.strip():
                continue
            message = transport.make_message(line)
            if transport.waiters.feed(message):
                continue
            tg.start_soon(dispatcher.handle, message)
        dispatcher.attach(None)
        tg.cancel_scope.cancel()
    await transport.close()
    logger.info("console.closed")
