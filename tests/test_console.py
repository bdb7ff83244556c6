import io

import anyio
import pytest
from rich.console import Console

from parley.console import CONSOLE_SELF, ConsoleTransport, demo_commands
from parley.dispatcher import Dispatcher
from parley.transport import RenderedMessage

pytestmark = pytest.mark.anyio


def _console_dispatcher() -> tuple[Dispatcher, ConsoleTransport]:
    console = Console(file=io.StringIO(), record=True, width=120)
    transport = ConsoleTransport(console=console)
    dispatcher = Dispatcher(transport=transport, self_id=CONSOLE_SELF)
    for command in demo_commands():
        dispatcher.register(command)
    return dispatcher, transport


async def test_demo_commands_answer_on_the_console() -> None:
    dispatcher, transport = _console_dispatcher()

    assert await dispatcher.handle(transport.make_message("!p"))
    assert await dispatcher.handle(transport.make_message("!say -s hello there"))
    assert await dispatcher.handle(transport.make_message("Hello, Ana"))

    output = transport.console.export_text()
    assert "parley pong" in output
    assert "parley HELLO THERE" in output
    assert "parley hello, Ana" in output


async def test_demo_prompt_reads_from_waiters() -> None:
    dispatcher, transport = _console_dispatcher()
    results: list[bool] = []

    async def run() -> None:
        results.append(await dispatcher.handle(transport.make_message("!pick")))

    async with anyio.create_task_group() as tg:
        tg.start_soon(run)
        await anyio.wait_all_tasks_blocked()
        assert transport.waiters.feed(transport.make_message("lizard"))
        await anyio.wait_all_tasks_blocked()
        assert transport.waiters.feed(transport.make_message("S"))

    output = transport.console.export_text()
    assert results == [True]
    assert "Rock, paper or scissors?" in output
    assert "'lizard' is not a choice, try again." in output
    assert "you picked scissors" in output


async def test_edit_marks_the_rewritten_line() -> None:
    _, transport = _console_dispatcher()
    ref = await transport.send(
        channel_id="console", message=RenderedMessage(text="first")
    )

    assert await transport.edit(ref=ref, message=RenderedMessage(text="second")) == ref
    assert "parley second (edited)" in transport.console.export_text()
