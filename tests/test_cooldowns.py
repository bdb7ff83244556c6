import anyio
import pytest

from parley.commands import Command
from parley.cooldowns import CooldownTracker
from parley.identity import StaticIdentity
from tests.fakes import make_dispatcher, make_message, record

pytestmark = pytest.mark.anyio


async def _noop(ctx, args):
    return None


def _limited(**kwargs) -> Command:
    return Command(
        id="ping",
        handler=_noop,
        aliases=("ping",),
        cooldown_s=kwargs.pop("cooldown_s", 1.0),
        ratelimit=kwargs.pop("ratelimit", 2),
        **kwargs,
    )


def test_tracker_window_and_ratelimit() -> None:
    tracker = CooldownTracker()
    check = {"actor_id": 1, "command_id": "ping", "duration_s": 1.0, "ratelimit": 2}

    assert tracker.check(now=0.0, **check) is None
    assert tracker.check(now=0.3, **check) is None
    hit = tracker.check(now=0.4, **check)
    assert hit is not None
    assert hit.remaining_s == pytest.approx(0.6)

    assert tracker.check(now=1.0, **check) is None
    entry = tracker.entry(1, "ping")
    assert entry is not None
    assert entry.uses == 1
    assert entry.window_end == 2.0


def test_tracker_keys_are_independent() -> None:
    tracker = CooldownTracker()
    window = {"duration_s": 5, "ratelimit": 1}

    assert tracker.check(actor_id=1, command_id="a", now=0, **window) is None
    assert tracker.check(actor_id=2, command_id="a", now=0, **window) is None
    assert tracker.check(actor_id=1, command_id="b", now=0, **window) is None
    assert tracker.check(actor_id=1, command_id="a", now=1, **window)


def test_zero_duration_never_limits() -> None:
    tracker = CooldownTracker()

    for _ in range(5):
        assert (
            tracker.check(actor_id=1, command_id="a", now=0, duration_s=0, ratelimit=1)
            is None
        )
    assert len(tracker) == 0


async def test_expiry_task_evicts_entries() -> None:
    async with anyio.create_task_group() as tg:
        tracker = CooldownTracker(task_group=tg)
        tracker.check(actor_id=1, command_id="a", now=0, duration_s=0.01, ratelimit=1)
        assert len(tracker) == 1
        with anyio.fail_after(1):
            while len(tracker):
                await anyio.sleep(0.01)

    assert tracker.entry(1, "a") is None


async def test_third_use_within_window_is_blocked() -> None:
    dispatcher = make_dispatcher()
    dispatcher.register(_limited())
    events = record(dispatcher, "cooldown", "command_finished")

    for timestamp in (0.0, 0.2, 0.5):
        await dispatcher.handle(make_message("!ping", timestamp=timestamp))
    assert [event.type for event in events] == [
        "command_finished",
        "command_finished",
        "cooldown",
    ]
    assert events[2].remaining_s == pytest.approx(0.5)

    assert await dispatcher.handle(make_message("!ping", timestamp=1.0))
    assert events[-1].type == "command_finished"


async def test_owners_skip_cooldowns_by_default() -> None:
    dispatcher = make_dispatcher(identity=StaticIdentity(owner_ids=[1]))
    dispatcher.register(_limited(ratelimit=1))

    assert await dispatcher.handle(make_message("!ping"))
    assert await dispatcher.handle(make_message("!ping"))


async def test_command_ignore_cooldown_override() -> None:
    dispatcher = make_dispatcher(identity=StaticIdentity(owner_ids=[1]))
    dispatcher.register(_limited(ratelimit=1, ignore_cooldown=[7]))

    assert await dispatcher.handle(make_message("!ping", author_id=7))
    assert await dispatcher.handle(make_message("!ping", author_id=7))
    assert await dispatcher.handle(make_message("!ping", author_id=1))
    assert not await dispatcher.handle(make_message("!ping", author_id=1))


async def test_default_cooldown_applies_to_commands_without_one() -> None:
    dispatcher = make_dispatcher(default_cooldown_s=10)
    dispatcher.register(Command(id="ping", handler=_noop, aliases=("ping",)))
    events = record(dispatcher, "cooldown")

    assert await dispatcher.handle(make_message("!ping", timestamp=0))
    assert not await dispatcher.handle(make_message("!ping", timestamp=3))

    assert events[0].remaining_s == pytest.approx(7)
