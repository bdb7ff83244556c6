import anyio
import pytest

from parley.commands import Argument, Command, PromptOptions
from parley.inhibitors import Inhibitor
from parley.model import Breakout, Cancelled
from parley.prompts import (
    BrokeOut,
    CancelWord,
    CastAttempt,
    PromptSessions,
    PromptState,
    StopWord,
    TimedOut,
    advance,
    resolve_prompt,
)
from parley.settings import PromptSettings
from tests.fakes import (
    AUTHOR_ID,
    CHANNEL_ID,
    FakeTransport,
    capture_args,
    make_dispatcher,
    make_message,
    record,
)


async def _noop(ctx, args):
    return None


def _number_command(handler=_noop, **prompt) -> Command:
    options = {
        "start": "number?",
        "retry": "again?",
        "ended": "giving up",
        "cancel": "cancelled",
        "timeout": "too slow",
        **prompt,
    }
    return Command(
        id="num",
        handler=handler,
        aliases=("num",),
        args=(Argument(id="n", type="integer", prompt=PromptOptions(**options)),),
    )


def _list_command(handler=_noop, **prompt) -> Command:
    options = {"start": "numbers?", "retry": "again?", "infinite": True, **prompt}
    return Command(
        id="nums",
        handler=handler,
        aliases=("nums",),
        args=(
            Argument(
                id="items",
                match="separate",
                type="integer",
                prompt=PromptOptions(**options),
            ),
        ),
    )


def test_failed_cast_retries_then_ends() -> None:
    state = PromptState(retry=1)

    first = advance(state, CastAttempt(None), retries=1, limit=None)
    assert first.outcome == "continue"
    assert first.state.retry == 2

    second = advance(first.state, CastAttempt(None), retries=1, limit=None)
    assert second.outcome == "cancelled"
    assert second.notify == "ended"
    assert second.value == Cancelled("ended")


def test_terminal_events() -> None:
    state = PromptState(retry=1)
    reply = make_message("!other")

    timed_out = advance(state, TimedOut(), retries=1, limit=None)
    assert (timed_out.outcome, timed_out.notify) == ("cancelled", "timeout")
    assert timed_out.value == Cancelled("timeout")

    cancelled = advance(state, CancelWord(), retries=1, limit=None)
    assert (cancelled.outcome, cancelled.notify) == ("cancelled", "cancel")

    broke = advance(state, BrokeOut(reply), retries=1, limit=None)
    assert broke.outcome == "breakout"
    assert broke.value == Breakout(reply)

    resolved = advance(state, CastAttempt(7), retries=1, limit=None)
    assert (resolved.outcome, resolved.value) == ("resolved", 7)


def test_stop_word_without_values_keeps_retry_count() -> None:
    state = PromptState(retry=2, infinite=True)

    step = advance(state, StopWord(), retries=1, limit=None)

    assert step.outcome == "continue"
    assert step.state == state


def test_infinite_collects_until_stop_or_limit() -> None:
    state = PromptState(retry=2, infinite=True)

    step = advance(state, CastAttempt(1), retries=1, limit=2)
    assert step.outcome == "continue"
    assert step.state == PromptState(retry=1, infinite=True, values=(1,))
    assert not step.state.sends_prompt

    done = advance(step.state, CastAttempt(2), retries=1, limit=2)
    assert (done.outcome, done.value) == ("resolved", [1, 2])

    stopped = advance(step.state, StopWord(), retries=1, limit=None)
    assert (stopped.outcome, stopped.value) == ("resolved", [1])


def test_resolve_prompt_layers_override_in_order() -> None:
    settings = PromptSettings(retries=3, start="default start", cancel_word="quit")
    command_layer = PromptOptions(retries=2, time_s=5.0, retry="command retry")
    argument_layer = PromptOptions(retries=0, start="argument start")

    prompt = resolve_prompt(settings, command_layer, None, argument_layer)

    assert prompt.retries == 0
    assert prompt.time_s == 5.0
    assert prompt.cancel_word == "quit"
    assert prompt.texts["start"] == "argument start"
    assert prompt.texts["retry"] == "command retry"
    assert prompt.texts["ended"] is None


def test_prompt_sessions() -> None:
    sessions = PromptSessions()

    assert sessions.add(CHANNEL_ID, AUTHOR_ID)
    assert not sessions.add(CHANNEL_ID, AUTHOR_ID)
    assert sessions.has(CHANNEL_ID, AUTHOR_ID)
    assert not sessions.has(CHANNEL_ID, 2)
    sessions.remove(CHANNEL_ID, AUTHOR_ID)
    assert len(sessions) == 0


@pytest.mark.anyio
async def test_prompt_collects_value() -> None:
    calls, handler = capture_args()
    transport = FakeTransport(["7"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_number_command(handler))

    assert await dispatcher.handle(make_message("!num"))

    assert calls == [{"n": 7}]
    assert transport.texts == ["number?"]
    assert len(dispatcher.sessions) == 0


@pytest.mark.anyio
async def test_cancel_word_cancels_and_clears_session() -> None:
    transport = FakeTransport(["CANCEL"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_number_command())
    dispatcher.register(Command(id="ping", handler=_noop, aliases=("ping",)))
    events = record(dispatcher, "command_cancelled", "command_finished")

    assert not await dispatcher.handle(make_message("!num"))

    assert transport.texts == ["number?", "cancelled"]
    assert [(event.type, event.reason) for event in events] == [
        ("command_cancelled", "cancel_word")
    ]
    assert not dispatcher.sessions.has(CHANNEL_ID, AUTHOR_ID)

    assert await dispatcher.handle(make_message("!ping"))
    assert events[-1].type == "command_finished"


@pytest.mark.anyio
async def test_two_invalid_inputs_end_the_prompt() -> None:
    transport = FakeTransport(["x", "y", "8"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_number_command(retries=1))
    events = record(dispatcher, "command_cancelled")

    assert not await dispatcher.handle(make_message("!num"))

    assert transport.texts == ["number?", "again?", "giving up"]
    assert len(transport.await_calls) == 2
    assert events[0].reason == "ended"


@pytest.mark.anyio
async def test_invalid_command_input_starts_with_retry_text() -> None:
    transport = FakeTransport(["z"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_number_command(retries=1))

    assert not await dispatcher.handle(make_message("!num abc"))

    assert transport.texts == ["again?", "giving up"]


@pytest.mark.anyio
async def test_prompt_text_functions_and_modifiers() -> None:
    seen = []

    def retry_text(message, args, data):
        seen.append((data.retries, data.phrase))
        return [f"{data.phrase} is not a number", "try again"]

    def shout(text, message, args, data):
        return text.upper()

    transport = FakeTransport(["5"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_number_command(retry=retry_text, modify_retry=shout))

    assert await dispatcher.handle(make_message("!num abc"))

    assert transport.texts == ["ABC IS NOT A NUMBER\nTRY AGAIN"]
    assert seen == [(2, "abc")]


@pytest.mark.anyio
async def test_timeout_cancels() -> None:
    transport = FakeTransport([None])
    dispatcher = make_dispatcher(transport, prompt={"time_s": 2.5})
    dispatcher.register(_number_command())
    events = record(dispatcher, "command_cancelled")

    assert not await dispatcher.handle(make_message("!num"))

    assert transport.texts == ["number?", "too slow"]
    assert transport.await_calls[0]["timeout_s"] == 2.5
    assert events[0].reason == "timeout"


@pytest.mark.anyio
async def test_replies_from_other_actors_are_ignored() -> None:
    calls, handler = capture_args()
    transport = FakeTransport([make_message("3", author_id=2), "4"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_number_command(handler))

    assert await dispatcher.handle(make_message("!num"))

    assert calls == [{"n": 4}]


@pytest.mark.anyio
async def test_breakout_dispatches_the_reply() -> None:
    pings: list[str] = []

    async def ping(ctx, args):
        pings.append(ctx.message.text)

    transport = FakeTransport(["!ping"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_number_command())
    dispatcher.register(Command(id="ping", handler=ping, aliases=("ping",)))
    events = record(dispatcher, "command_cancelled")

    assert await dispatcher.handle(make_message("!num"))

    assert pings == ["!ping"]
    assert events[0].reason == "breakout"
    assert events[0].retry.message.text == "!ping"


@pytest.mark.anyio
async def test_breakout_disabled_treats_reply_as_input() -> None:
    transport = FakeTransport(["!ping"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_number_command(breakout=False, retries=0))
    dispatcher.register(Command(id="ping", handler=_noop, aliases=("ping",)))

    assert not await dispatcher.handle(make_message("!num"))

    assert transport.texts == ["number?", "giving up"]


@pytest.mark.anyio
async def test_infinite_prompt_collects_until_stop() -> None:
    calls, handler = capture_args()
    transport = FakeTransport(["1", "2", "stop"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_list_command(handler))

    assert await dispatcher.handle(make_message("!nums"))

    assert calls == [{"items": [1, 2]}]
    assert transport.texts == ["numbers?"]


@pytest.mark.anyio
async def test_stop_word_before_any_value_prompts_again() -> None:
    calls, handler = capture_args()
    transport = FakeTransport(["stop", "5", "stop"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_list_command(handler))

    assert await dispatcher.handle(make_message("!nums"))

    assert calls == [{"items": [5]}]
    assert transport.texts == ["numbers?", "numbers?"]


@pytest.mark.anyio
async def test_infinite_prompt_stops_at_limit() -> None:
    calls, handler = capture_args()
    transport = FakeTransport(["1", "2", "3"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_list_command(handler, limit=2))

    assert await dispatcher.handle(make_message("!nums"))

    assert calls == [{"items": [1, 2]}]
    assert len(transport.replies) == 1


@pytest.mark.anyio
async def test_separate_items_prompt_one_at_a_time() -> None:
    calls, handler = capture_args()
    transport = FakeTransport(["2"])
    dispatcher = make_dispatcher(transport)
    dispatcher.register(_list_command(handler))

    assert await dispatcher.handle(make_message("!nums 1 x 3"))

    assert calls == [{"items": [1, 2, 3]}]
    assert transport.texts == ["again?"]


@pytest.mark.anyio
async def test_actor_in_prompt_is_blocked_until_it_ends() -> None:
    transport = FakeTransport()
    dispatcher = make_dispatcher(transport)
    calls, handler = capture_args()
    dispatcher.register(_number_command(handler))
    dispatcher.register(Command(id="ping", handler=_noop, aliases=("ping",)))
    events = record(dispatcher, "in_prompt")
    results: list[bool] = []

    async def run_first() -> None:
        results.append(await dispatcher.handle(make_message("!num")))

    async with anyio.create_task_group() as tg:
        tg.start_soon(run_first)
        await anyio.wait_all_tasks_blocked()
        assert dispatcher.sessions.has(CHANNEL_ID, AUTHOR_ID)

        assert not await dispatcher.handle(make_message("!ping"))
        assert [event.type for event in events] == ["in_prompt"]

        other_channel = make_message("!ping", channel_id=CHANNEL_ID + 1)
        assert await dispatcher.handle(other_channel)

        assert transport.waiters.feed(make_message("9"))

    assert results == [True]
    assert calls == [{"n": 9}]
    assert not dispatcher.sessions.has(CHANNEL_ID, AUTHOR_ID)


@pytest.mark.anyio
async def test_second_gated_prompt_for_actor_is_cancelled() -> None:
    async def slow_gate(message, command):
        await anyio.sleep(0)
        return None

    transport = FakeTransport()
    dispatcher = make_dispatcher(transport)
    calls, handler = capture_args()
    dispatcher.register(_number_command(handler))
    dispatcher.register(Command(id="ping", handler=_noop, aliases=("ping",)))
    dispatcher.add_inhibitor(Inhibitor(id="slow", stage="pre", check=slow_gate))
    events = record(dispatcher, "command_cancelled")
    results: list[bool] = []

    async def run() -> None:
        results.append(await dispatcher.handle(make_message("!num")))

    async with anyio.create_task_group() as tg:
        tg.start_soon(run)
        tg.start_soon(run)
        await anyio.wait_all_tasks_blocked()

        assert [event.reason for event in events] == ["in_prompt"]
        assert transport.texts == ["number?"]
        assert dispatcher.sessions.has(CHANNEL_ID, AUTHOR_ID)
        assert not await dispatcher.handle(make_message("!ping"))

        assert transport.waiters.feed(make_message("4"))

    assert sorted(results) == [False, True]
    assert calls == [{"n": 4}]
    assert not dispatcher.sessions.has(CHANNEL_ID, AUTHOR_ID)
