import asyncio
from datetime import datetime, timedelta
from itertools import count

import pytest

from chat_core.agents.chat_engine import ChatEngine
from chat_core.agents.dual_lane import DualLaneOrchestrator
from chat_core.domain.exceptions import ApiError, ValidationError
from chat_core.domain.models import ProviderIdentity, ProviderKind


class EchoAdapter:
    """回复 "<lane>:<输入>"，可指定某一次调用失败；设置 gate 后等待放行再回复。"""

    def __init__(self, name, fail_on=None):
        self.name = name
        self.fail_on = fail_on
        self.gate = None
        self.calls = []

    async def stream_generate(self, identity, model_id, turn_text, attachments, history,
                              system_instruction, config, on_increment, token):
        self.calls.append({"turn_text": turn_text, "history": list(history)})
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on is not None and len(self.calls) == self.fail_on:
            raise ApiError(code="API_ERROR", message="HTTP Error 503: overloaded", http_status=503)
        on_increment(f"{self.name}:{turn_text}")


async def _until(predicate):
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def _setup(left_fail_on=None, right_fail_on=None, **kw):
    start = datetime(2026, 1, 1)
    ticks = count()

    def clock():
        return start + timedelta(seconds=next(ticks))

    identity = ProviderIdentity.create(ProviderKind.OPENAI, "sk-test-0123456789")
    left_adapter = EchoAdapter("L", left_fail_on)
    right_adapter = EchoAdapter("R", right_fail_on)
    left = ChatEngine(left_adapter, identity, lane="left", system_instruction="", clock=clock)
    right = ChatEngine(right_adapter, identity, lane="right", system_instruction="", clock=clock)
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    orchestrator = DualLaneOrchestrator(left, right, cooldown=1.0, sleep=sleep, **kw)
    orchestrator.select_model("left", "model-l", "Left")
    orchestrator.select_model("right", "model-r", "Right")
    return orchestrator, left_adapter, right_adapter, delays


def _contents(lane):
    return [m.content for m in lane.messages]


@pytest.mark.asyncio
async def test_send_to_both_lanes():
    updates = []
    orch, left, right, _ = _setup(on_update=lambda lane, msgs: updates.append(lane))
    failures = await orch.send("hello")
    assert failures == {}
    assert _contents(orch.lanes["left"]) == ["hello", "L:hello"]
    assert _contents(orch.lanes["right"]) == ["hello", "R:hello"]
    assert {"left", "right"} <= set(updates)


@pytest.mark.asyncio
async def test_send_to_single_lane_and_failure_reporting():
    errors = []
    orch, left, right, _ = _setup(right_fail_on=1, on_error=lambda lane, exc: errors.append(lane))
    failures = await orch.send("x", target="right")
    assert list(failures) == ["right"]
    assert errors == ["right"]
    assert left.calls == []
    assert orch.lanes["right"].messages[-1].is_error


@pytest.mark.asyncio
async def test_manual_relay_sends_hidden_turn():
    orch, left, right, _ = _setup()
    await orch.send("topic", target="left")
    assert await orch.relay("left_to_right") is True

    relayed = orch.lanes["right"].messages
    assert relayed[0].content == "L:topic" and relayed[0].is_hidden
    assert relayed[1].content == "R:L:topic"


@pytest.mark.asyncio
async def test_relay_requires_a_reply():
    orch, *_ = _setup()
    with pytest.raises(ValidationError) as ei:
        await orch.relay("right_to_left")
    assert ei.value.code == "NOTHING_TO_RELAY"
    with pytest.raises(ValidationError):
        await orch.relay("sideways")


@pytest.mark.asyncio
async def test_next_battle_direction_follows_latest_reply():
    orch, *_ = _setup()
    assert orch.next_battle_direction() is None
    await orch.send("start", target="left")
    assert orch.next_battle_direction() == "left_to_right"
    await orch.send("reply", target="right")
    assert orch.next_battle_direction() == "right_to_left"


@pytest.mark.asyncio
async def test_auto_battle_alternates_until_max_turns():
    orch, left, right, delays = _setup()
    await orch.send("opening", target="left")

    turns = await orch.run_auto_battle(max_turns=3)

    assert turns == 3
    assert delays == [1.0, 1.0, 1.0]
    assert [c["turn_text"] for c in right.calls] == ["L:opening", "L:R:L:opening"]
    assert [c["turn_text"] for c in left.calls] == ["opening", "R:L:opening"]
    assert not orch.auto_battle_enabled
    # 对战转发是可见消息
    assert not any(m.is_hidden for m in orch.lanes["right"].messages)


@pytest.mark.asyncio
async def test_auto_battle_stops_when_target_fails():
    orch, left, right, delays = _setup(right_fail_on=1)
    await orch.send("opening", target="left")
    turns = await orch.run_auto_battle()
    assert turns == 1
    assert orch.lanes["right"].messages[-1].is_error
    assert orch.next_battle_direction() is None


@pytest.mark.asyncio
async def test_auto_battle_needs_a_pending_reply():
    orch, *_ = _setup()
    assert await orch.run_auto_battle() == 0


@pytest.mark.asyncio
async def test_stop_lane_disables_auto_battle():
    orch, left, right, delays = _setup()
    await orch.send("opening", target="left")

    async def sleep_then_stop(seconds):
        delays.append(seconds)
        orch.stop("right")

    orch._sleep = sleep_then_stop
    turns = await orch.run_auto_battle()
    assert turns == 0
    assert right.calls == []


def test_select_unknown_lane():
    orch, *_ = _setup()
    with pytest.raises(ValidationError):
        orch.select_model("middle", "m")


@pytest.mark.asyncio
async def test_relay_refused_while_a_lane_is_busy():
    orch, left, right, _ = _setup()
    await orch.send("topic", target="left")
    right.gate = asyncio.Event()
    pending = asyncio.create_task(orch.send("question", target="right"))
    await _until(lambda: right.calls)

    assert await orch.relay("left_to_right") is False

    right.gate.set()
    await pending
    assert [c["turn_text"] for c in right.calls] == ["question"]
    assert _contents(orch.lanes["right"]) == ["question", "R:question"]


@pytest.mark.asyncio
async def test_auto_battle_leaves_user_send_during_cooldown_alone():
    orch, left, right, _ = _setup()
    await orch.send("topic", target="left")

    sleeping, cooldown_done = asyncio.Event(), asyncio.Event()

    async def blocking_sleep(seconds):
        sleeping.set()
        await cooldown_done.wait()

    orch._sleep = blocking_sleep
    battle = asyncio.create_task(orch.run_auto_battle(max_turns=1))
    await sleeping.wait()

    right.gate = asyncio.Event()
    user_send = asyncio.create_task(orch.send("user question", target="right"))
    await _until(lambda: right.calls)

    cooldown_done.set()
    assert await battle == 0
    assert not orch.auto_battle_enabled

    right.gate.set()
    assert await user_send == {}
    assert [c["turn_text"] for c in right.calls] == ["user question"]
    assert _contents(orch.lanes["right"]) == ["user question", "R:user question"]
