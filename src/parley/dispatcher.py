"""Per-message command pipeline.

`Dispatcher.handle` runs one inbound message through the gates, resolves the
command it names (or the regex and condition triggers that match it), builds
the argument bag and runs the handler. Blocks and cancellations are reported
as events; faults go to the `error` listeners or, when nobody listens, are
raised out of `handle`.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import anyio

from .arguments import ArgumentParser
from .commands import Command, IgnoreCheck, PermissionRequirement, PrefixValue
from .context import CommandContext, ResponseTracker
from .cooldowns import CooldownTracker, TaskGroup
from .events import (
    CommandBlocked,
    CommandCancelled,
    CommandDisabled,
    CommandError,
    CommandFinished,
    CommandStarted,
    CooldownBlocked,
    EventBus,
    EventType,
    InPrompt,
    Listener,
    MessageBlocked,
    MessageInvalid,
    MissingPermissions,
    PermissionKind,
)
from .identity import IdentityProvider, StaticIdentity
from .inhibitors import BuiltInReasons, Inhibitor, InhibitorPipeline
from .logging import bind_dispatch_context, clear_context, get_logger
from .model import ActorId, Breakout, Cancelled, IncomingMessage, ParseResult
from .prompts import Prompter, PromptSessions
from .registry import CommandRegistry
from .resolver import MentionPredicate, PrefixResolver
from .settings import DispatcherSettings
from .transport import Transport
from .types import TypeResolver
from .utils.awaitables import maybe_await

logger = get_logger(__name__)


def ignores(
    check: IgnoreCheck | None, message: IncomingMessage, command: Command
) -> bool:
    if check is None:
        return False
    if callable(check):
        return bool(check(message, command))
    if isinstance(check, (str, int)):
        return message.author_id == check
    return message.author_id in check


class Dispatcher:
    def __init__(
        self,
        *,
        transport: Transport,
        settings: DispatcherSettings | None = None,
        identity: IdentityProvider | None = None,
        registry: CommandRegistry | None = None,
        inhibitors: InhibitorPipeline | None = None,
        self_id: ActorId | None = None,
        prefix: PrefixValue | None = None,
        allow_mention: bool | MentionPredicate | None = None,
        ignore_cooldown: IgnoreCheck | None = None,
        ignore_permissions: IgnoreCheck | None = None,
        task_group: TaskGroup | None = None,
    ) -> None:
        self.settings = settings if settings is not None else DispatcherSettings()
        self.transport = transport
        self.self_id = self_id
        self.identity: IdentityProvider = (
            identity
            if identity is not None
            else StaticIdentity(owner_ids=self.settings.owner_ids)
        )
        self.registry = (
            registry
            if registry is not None
            else CommandRegistry(alias_replacement=self.settings.alias_pattern())
        )
        self.inhibitors = inhibitors if inhibitors is not None else InhibitorPipeline()
        self.events = EventBus()
        self.sessions = PromptSessions()
        self.responses = ResponseTracker()
        self.cooldowns = CooldownTracker(task_group=task_group)
        self.resolver = PrefixResolver(
            self.registry,
            prefix=prefix if prefix is not None else self.settings.prefix,
            allow_mention=(
                allow_mention
                if allow_mention is not None
                else self.settings.allow_mention
            ),
            self_id=self_id,
        )
        self.types = TypeResolver(self.registry)
        self.prompter = Prompter(
            transport=transport,
            sessions=self.sessions,
            settings=self.settings.prompt,
            types=self.types,
            looks_like_command=self.looks_like_command,
        )
        self.arguments = ArgumentParser(
            types=self.types,
            prompter=self.prompter,
            default_split=self.settings.default_split,
        )
        self.ignore_cooldown: IgnoreCheck = (
            ignore_cooldown if ignore_cooldown is not None else self._is_owner
        )
        self.ignore_permissions: IgnoreCheck = (
            ignore_permissions
            if ignore_permissions is not None
            else tuple(self.settings.ignore_permissions)
        )

    def attach(self, task_group: TaskGroup | None) -> None:
        self.cooldowns.attach(task_group)

    def register(self, command: Command) -> Command:
        self.registry.register(command)
        return command

    def deregister(self, command: Command | str) -> Command:
        return self.registry.deregister(command)

    def add_inhibitor(self, inhibitor: Inhibitor) -> Inhibitor:
        self.inhibitors.add(inhibitor)
        return inhibitor

    def on(self, event_type: EventType, listener: Listener) -> Listener:
        return self.events.on(event_type, listener)

    def off(self, event_type: EventType, listener: Listener) -> None:
        self.events.off(event_type, listener)

    def _is_owner(self, message: IncomingMessage, command: Command) -> bool:
        return self.identity.is_owner(message.author_id)

    async def looks_like_command(self, message: IncomingMessage) -> bool:
        parsed = await self.resolver.resolve(message)
        return parsed is not None and parsed.command is not None

    async def handle(self, message: IncomingMessage) -> bool:
        """Run the pipeline for one message.

        Returns True when a command handler ran (directly, through a
        breakout reply, or through a trigger).
        """
        bind_dispatch_context(
            channel_id=message.channel_id,
            author_id=message.author_id,
            message_id=message.message_id,
        )
        try:
            return await self._handle(message)
        finally:
            clear_context()

    async def _handle(self, message: IncomingMessage) -> bool:
        if message.edited and not self.settings.handle_edits:
            logger.debug("dispatch.edit_ignored")
            return False
        try:
            if await self._run_all_gates(message):
                return False
            reason = await self.inhibitors.test("pre", message)
            if reason is not None:
                await self.events.emit(MessageBlocked(message=message, reason=reason))
                return False
            parsed = await self.resolver.resolve(message)
        except Exception as exc:
            await self._route_error(exc, message, None)
            return False

        if parsed is not None and parsed.command is not None:
            return await self._dispatch_direct(message, parsed, parsed.command)
        return await self._dispatch_triggers(message)

    async def _run_all_gates(self, message: IncomingMessage) -> bool:
        reason: str | None = None
        if (
            self.settings.block_self
            and self.self_id is not None
            and message.author_id == self.self_id
        ):
            reason = BuiltInReasons.CLIENT
        elif self.settings.block_bots and message.author_is_bot:
            reason = BuiltInReasons.BOT
        else:
            reason = await self.inhibitors.test("all", message)
        if reason is not None:
            logger.debug("dispatch.blocked", stage="all", reason=reason)
            await self.events.emit(MessageBlocked(message=message, reason=reason))
            return True

        if self.sessions.has(message.channel_id, message.author_id):
            logger.debug("dispatch.in_prompt")
            await self.events.emit(InPrompt(message=message))
            return True
        return False

    async def _dispatch_direct(
        self, message: IncomingMessage, parsed: ParseResult, command: Command
    ) -> bool:
        if not self.registry.is_enabled(command):
            await self.events.emit(CommandDisabled(message=message, command=command))
            return False
        if message.edited and not command.editable:
            logger.debug("dispatch.not_editable", command_id=command.id)
            return False
        return await self._invoke(message, command, parsed=parsed)

    async def _dispatch_triggers(self, message: IncomingMessage) -> bool:
        matched: list[tuple[Command, dict[str, Any]]] = []
        for command in self.registry:
            if not self.registry.is_enabled(command):
                continue
            if message.edited and not command.editable:
                continue
            try:
                found = await self._trigger_args(message, command)
            except Exception as exc:
                await self._route_error(exc, message, command)
                continue
            matched.extend((command, args) for args in found)

        if not matched:
            await self.events.emit(MessageInvalid(message=message))
            return False

        logger.debug(
            "dispatch.triggers",
            command_ids=[command.id for command, _ in matched],
        )
        faults: list[Exception] = []

        async def run_one(command: Command, args: dict[str, Any]) -> None:
            try:
                await self._invoke(message, command, trigger_args=args)
            except Exception as exc:  # noqa: BLE001
                faults.append(exc)

        async with anyio.create_task_group() as tg:
            for command, args in matched:
                tg.start_soon(run_one, command, args)

        if len(faults) == 1:
            raise faults[0]
        if faults:
            raise ExceptionGroup("triggered commands failed", faults)
        return True

    async def _trigger_args(
        self, message: IncomingMessage, command: Command
    ) -> list[dict[str, Any]]:
        found: list[dict[str, Any]] = []
        if command.regex is not None:
            pattern = command.regex
            if callable(pattern):
                pattern = await maybe_await(pattern(message))
            if pattern is not None:
                match = pattern.search(message.text)
                if match is not None:
                    found.append(
                        {
                            "match": match,
                            "matches": list(pattern.finditer(message.text)),
                        }
                    )
        if command.condition is not None and await maybe_await(
            command.condition(message)
        ):
            found.append({})
        return found

    async def _invoke(
        self,
        message: IncomingMessage,
        command: Command,
        *,
        parsed: ParseResult | None = None,
        trigger_args: dict[str, Any] | None = None,
    ) -> bool:
        try:
            if await self._run_post_gates(message, command):
                return False
            ctx = CommandContext(
                message=message,
                command=command,
                dispatcher=self,
                transport=self.transport,
                parsed=parsed,
            )
            if command.before is not None:
                await maybe_await(command.before(ctx))

            if trigger_args is not None:
                outcome: Any = dict(trigger_args)
            else:
                content = parsed.content if parsed is not None else ""
                outcome = await self.arguments.parse(command, message, content)
        except Exception as exc:
            await self._route_error(exc, message, command)
            return False

        if isinstance(outcome, Breakout):
            logger.info("dispatch.breakout", command_id=command.id)
            await self.events.emit(
                CommandCancelled(
                    message=message, command=command, reason="breakout", retry=outcome
                )
            )
            return await self.handle(outcome.message)
        if isinstance(outcome, Cancelled):
            logger.info(
                "dispatch.cancelled", command_id=command.id, reason=outcome.reason
            )
            await self.events.emit(
                CommandCancelled(
                    message=message, command=command, reason=outcome.reason
                )
            )
            return False

        try:
            await self._execute(ctx, outcome)
        except Exception as exc:
            await self._route_error(exc, message, command)
            return False
        return True

    async def _execute(self, ctx: CommandContext, args: dict[str, Any]) -> None:
        command, message = ctx.command, ctx.message
        if command.typing:
            await self.transport.typing(channel_id=message.channel_id, active=True)
        await self.events.emit(
            CommandStarted(message=message, command=command, args=args)
        )
        logger.info("command.started", command_id=command.id)
        result = await maybe_await(command.handler(ctx, args))
        if command.typing:
            await self.transport.typing(channel_id=message.channel_id, active=False)
        logger.info("command.finished", command_id=command.id)
        await self.events.emit(
            CommandFinished(message=message, command=command, args=args, result=result)
        )

    async def _run_post_gates(self, message: IncomingMessage, command: Command) -> bool:
        reason: str | None = None
        if command.owner_only and not self.identity.is_owner(message.author_id):
            reason = BuiltInReasons.OWNER
        elif command.channel == "guild" and message.is_direct:
            reason = BuiltInReasons.GUILD
        elif command.channel == "dm" and not message.is_direct:
            reason = BuiltInReasons.DM
        if reason is not None:
            await self._blocked(message, command, reason)
            return True

        if await self._missing_permissions(message, command):
            return True

        reason = await self.inhibitors.test("post", message, command)
        if reason is not None:
            await self._blocked(message, command, reason)
            return True

        return await self._on_cooldown(message, command)

    async def _blocked(
        self, message: IncomingMessage, command: Command, reason: str
    ) -> None:
        logger.debug(
            "dispatch.blocked", stage="post", command_id=command.id, reason=reason
        )
        await self.events.emit(
            CommandBlocked(message=message, command=command, reason=reason)
        )

    async def _missing_permissions(
        self, message: IncomingMessage, command: Command
    ) -> bool:
        checks: list[tuple[PermissionKind, PermissionRequirement, ActorId | None]] = []
        if command.client_permissions is not None:
            checks.append(("client", command.client_permissions, self.self_id))
        if command.user_permissions is not None:
            ignore = (
                command.ignore_permissions
                if command.ignore_permissions is not None
                else self.ignore_permissions
            )
            if not ignores(ignore, message, command):
                checks.append(("user", command.user_permissions, message.author_id))

        for kind, requirement, actor_id in checks:
            missing = await self._check_permissions(message, requirement, actor_id)
            if missing:
                logger.debug(
                    "dispatch.missing_permissions",
                    command_id=command.id,
                    kind=kind,
                    missing=missing,
                )
                await self.events.emit(
                    MissingPermissions(
                        message=message, command=command, kind=kind, missing=missing
                    )
                )
                return True
        return False

    async def _check_permissions(
        self,
        message: IncomingMessage,
        requirement: PermissionRequirement,
        actor_id: ActorId | None,
    ) -> Any:
        if callable(requirement):
            return await maybe_await(requirement(message))
        required: Sequence[str] = list(requirement)
        if not required:
            return None
        return await self.identity.missing_permissions(
            channel_id=message.channel_id,
            actor_id=actor_id if actor_id is not None else "",
            required=required,
        )

    async def _on_cooldown(self, message: IncomingMessage, command: Command) -> bool:
        duration = (
            command.cooldown_s
            if command.cooldown_s is not None
            else self.settings.default_cooldown_s
        )
        if duration <= 0:
            return False
        ignore = (
            command.ignore_cooldown
            if command.ignore_cooldown is not None
            else self.ignore_cooldown
        )
        if ignores(ignore, message, command):
            return False
        hit = self.cooldowns.check(
            actor_id=message.author_id,
            command_id=command.id,
            now=message.timestamp,
            duration_s=duration,
            ratelimit=command.ratelimit,
        )
        if hit is None:
            return False
        await self.events.emit(
            CooldownBlocked(
                message=message, command=command, remaining_s=hit.remaining_s
            )
        )
        return True

    async def _route_error(
        self,
        exc: Exception,
        message: IncomingMessage,
        command: Command | None,
    ) -> None:
        logger.exception(
            "dispatch.error",
            command_id=command.id if command is not None else None,
            error_type=exc.__class__.__name__,
            exc_info=exc,
        )
        if command is not None and command.typing:
            await self.transport.typing(channel_id=message.channel_id, active=False)
        if self.events.listener_count("error") == 0:
            raise exc
        await self.events.emit(
            CommandError(error=exc, message=message, command=command)
        )
