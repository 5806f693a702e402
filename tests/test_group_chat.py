"""Tests for the group turn scheduler."""

import asyncio
import random

import pytest

from helpers import BlockingModelClient, ScriptedModelClient, settle
from nexus.ai.errors import SessionBusyError, SessionNotFoundError
from nexus.ai.group_chat import GroupTurnScheduler
from nexus.ai.model_client import ModelClient
from nexus.models.message import Sender


class NamedReplyClient(ModelClient):
    """Replies with the responding agent's name, taken from the prompt."""

    name = "named"

    def __init__(self):
        self.prompts = []

    async def call(self, prompt, model):
        self.prompts.append(prompt)
        name = prompt.split("You are ", 1)[1].split(",", 1)[0]
        return f"{name} here"


class GateAfterFirstClient(ModelClient):
    """First call answers at once, later calls wait for the gate."""

    name = "gated"

    def __init__(self):
        self.calls = 0
        self.waiting = asyncio.Event()
        self.gate = asyncio.Event()

    async def call(self, prompt, model):
        self.calls += 1
        if self.calls == 1:
            return "first answer"
        self.waiting.set()
        await self.gate.wait()
        return "late answer"


@pytest.fixture
def build_scheduler(roster, store, registry, coordinator, event_bus, make_pipeline):
    def factory(client, **kwargs):
        kwargs.setdefault("autonomous_interval", 0.01)
        return GroupTurnScheduler(roster, store, make_pipeline(client), registry,
                                  coordinator, event_bus, **kwargs)
    return factory


def agent_messages(store, key):
    return [m for m in store.read(key) if m.sender == Sender.AGENT]


def test_open_group_needs_two_known_agents(build_scheduler):
    scheduler = build_scheduler(ScriptedModelClient())

    with pytest.raises(ValueError):
        scheduler.open_group("Solo", ["aria"])
    with pytest.raises(ValueError):
        scheduler.open_group("Ghosts", ["aria", "ghost", "aria"])

    session = scheduler.open_group("Pair", ["aria", "ghost", "echo"])
    assert session.participants == ["aria", "echo"]
    assert session.is_group
    assert session.conversation_key == session.session_id


@pytest.mark.asyncio
async def test_manual_round_replies_in_roster_order(build_scheduler, store):
    client = NamedReplyClient()
    scheduler = build_scheduler(client)
    session = scheduler.open_group("Panel", ["nexus", "aria", "echo"])

    replies = await scheduler.send(session.session_id, "topic?")

    assert [m.agent_id for m in replies] == ["nexus", "aria", "echo"]
    assert [m.content for m in agent_messages(store, session.session_id)] == [
        "Nexus here", "Aria here", "Echo here",
    ]
    assert store.read(session.session_id)[0].content == "topic?"
    assert not session.busy


@pytest.mark.asyncio
async def test_turn_prompt_includes_transcript_and_other_participants(build_scheduler):
    client = NamedReplyClient()
    scheduler = build_scheduler(client)
    session = scheduler.open_group("Panel", ["nexus", "aria"])

    await scheduler.send(session.session_id, "topic?")

    second_prompt = client.prompts[1]
    assert "participating in a group chat with other AI agents: Nexus" in second_prompt
    assert "User: topic?\nNexus: Nexus here" in second_prompt


@pytest.mark.asyncio
async def test_transcript_limited_to_recent_messages(build_scheduler, store):
    client = NamedReplyClient()
    scheduler = build_scheduler(client, context_messages=2)
    session = scheduler.open_group("Panel", ["nexus", "aria"])
    for i in range(5):
        store.append(session.session_id, Sender.USER, f"old {i}")

    await scheduler.run_round(session.session_id, "go")

    assert "old 2" not in client.prompts[0]
    assert "User: old 3\nUser: old 4" in client.prompts[0]


@pytest.mark.asyncio
async def test_stop_mid_round_keeps_only_visited_participants(build_scheduler, store, coordinator):
    client = GateAfterFirstClient()
    scheduler = build_scheduler(client)
    session = scheduler.open_group("Panel", ["aria", "zephyr", "nexus"])

    pending = asyncio.create_task(scheduler.send(session.session_id, "topic?"))
    await client.waiting.wait()

    assert scheduler.stop(session.session_id) is True
    assert not session.busy

    client.gate.set()
    replies = await pending
    await settle()

    assert [m.agent_id for m in replies] == ["aria"]
    assert [m.agent_id for m in agent_messages(store, session.session_id)] == ["aria"]
    assert client.calls == 2
    assert coordinator.active_sessions() == []


@pytest.mark.asyncio
async def test_busy_group_rejects_messages(build_scheduler, events):
    client = BlockingModelClient()
    scheduler = build_scheduler(client)
    session = scheduler.open_group("Panel", ["aria", "echo"])

    pending = asyncio.create_task(scheduler.send(session.session_id, "one"))
    await client.started.wait()

    assert await scheduler.send(session.session_id, "two") is None
    assert await scheduler.run_round(session.session_id, "three") is None
    assert ("session_busy", (session.session_id,)) in events

    scheduler.stop(session.session_id)
    await pending


@pytest.mark.asyncio
async def test_autonomous_stopped_before_first_tick_adds_nothing(build_scheduler, store):
    scheduler = build_scheduler(ScriptedModelClient(default="chatter"), autonomous_interval=0.05)
    session = scheduler.open_group("Panel", ["aria", "echo"])
    store.append(session.session_id, Sender.USER, "let's talk")

    assert scheduler.start_autonomous(session.session_id) is True
    assert scheduler.stop_autonomous(session.session_id) is True
    await asyncio.sleep(0.15)

    assert agent_messages(store, session.session_id) == []
    assert not session.autonomous


@pytest.mark.asyncio
async def test_autonomous_ticks_reply_to_latest_message(build_scheduler, store):
    """Speaker choice is uniform random, so only membership of each reply is checked."""
    client = ScriptedModelClient(default="chatter")
    scheduler = build_scheduler(client, rng=random.Random(7))
    session = scheduler.open_group("Panel", ["aria", "echo", "nexus"])
    store.append(session.session_id, Sender.USER, "let's talk")

    scheduler.start_autonomous(session.session_id)
    for _ in range(100):
        if len(agent_messages(store, session.session_id)) >= 2:
            break
        await asyncio.sleep(0.01)
    scheduler.stop_autonomous(session.session_id)

    replies = agent_messages(store, session.session_id)
    assert len(replies) >= 2
    assert all(m.agent_id in session.participants for m in replies)
    assert "let's talk" in client.prompts[0]
    assert "chatter" in client.prompts[1]


@pytest.mark.asyncio
async def test_autonomous_skips_empty_log(build_scheduler, store):
    client = ScriptedModelClient(default="chatter")
    scheduler = build_scheduler(client)
    session = scheduler.open_group("Panel", ["aria", "echo"])

    scheduler.start_autonomous(session.session_id)
    await asyncio.sleep(0.05)
    scheduler.stop_autonomous(session.session_id)

    assert client.prompts == []
    assert store.read(session.session_id) == []


@pytest.mark.asyncio
async def test_stop_autonomous_cancels_tick_in_flight(build_scheduler, store, coordinator):
    client = BlockingModelClient("late tick")
    scheduler = build_scheduler(client)
    session = scheduler.open_group("Panel", ["aria", "echo"])
    store.append(session.session_id, Sender.USER, "let's talk")

    scheduler.start_autonomous(session.session_id)
    await asyncio.wait_for(client.started.wait(), timeout=1)
    scheduler.stop_autonomous(session.session_id)
    client.release()
    await settle()

    assert not session.busy
    assert agent_messages(store, session.session_id) == []
    assert coordinator.active_sessions() == []


@pytest.mark.asyncio
async def test_toggle_and_emergency_stop_end_autonomous_mode(build_scheduler, coordinator):
    scheduler = build_scheduler(ScriptedModelClient(), autonomous_interval=10)
    session = scheduler.open_group("Panel", ["aria", "echo"])

    assert scheduler.toggle_autonomous(session.session_id) is True
    assert coordinator.is_registered(session.session_id)

    assert coordinator.stop_all() == 1
    assert not session.autonomous
    assert not session.busy

    assert scheduler.toggle_autonomous(session.session_id) is True
    assert scheduler.toggle_autonomous(session.session_id) is False
    assert not coordinator.is_registered(session.session_id)


@pytest.mark.asyncio
async def test_close_group_stops_everything(build_scheduler, coordinator):
    scheduler = build_scheduler(ScriptedModelClient(), autonomous_interval=10)
    session = scheduler.open_group("Panel", ["aria", "echo"])
    scheduler.start_autonomous(session.session_id)

    scheduler.close_group(session.session_id)
    await settle()

    assert not session.autonomous
    assert coordinator.active_sessions() == []
    with pytest.raises(SessionNotFoundError):
        scheduler.get_session(session.session_id)


def autonomous_loops():
    return [task for task in asyncio.all_tasks()
            if not task.done() and task.get_coro().__qualname__.endswith("._autonomous_loop")]


@pytest.mark.asyncio
async def test_restarting_autonomous_during_a_tick_leaves_one_loop(build_scheduler, store):
    client = BlockingModelClient("late tick")
    scheduler = build_scheduler(client, autonomous_interval=10)
    session = scheduler.open_group("Panel", ["aria", "echo"])
    store.append(session.session_id, Sender.USER, "let's talk")

    scheduler.autonomous_interval = 0.01
    scheduler.start_autonomous(session.session_id)
    await asyncio.wait_for(client.started.wait(), timeout=1)
    scheduler.autonomous_interval = 10

    assert scheduler.toggle_autonomous(session.session_id) is False
    assert scheduler.toggle_autonomous(session.session_id) is True
    await settle()

    assert len(autonomous_loops()) == 1
    assert not session.busy

    scheduler.stop_autonomous(session.session_id)
    client.release()
    await settle()
    assert autonomous_loops() == []
    assert agent_messages(store, session.session_id) == []


@pytest.mark.asyncio
async def test_stop_autonomous_cancels_manual_round_in_flight(build_scheduler, store, coordinator):
    client = BlockingModelClient("late")
    scheduler = build_scheduler(client, autonomous_interval=10)
    session = scheduler.open_group("Panel", ["aria", "echo", "nexus"])
    scheduler.start_autonomous(session.session_id)

    pending = asyncio.create_task(scheduler.send(session.session_id, "topic?"))
    await client.started.wait()

    assert scheduler.stop_autonomous(session.session_id) is True
    assert not session.busy

    client.release()
    replies = await pending
    await settle()

    assert replies == []
    assert agent_messages(store, session.session_id) == []
    assert client.calls == 1
    assert coordinator.active_sessions() == []


@pytest.mark.asyncio
async def test_participants_can_join_and_leave_a_live_group(build_scheduler, events):
    client = NamedReplyClient()
    scheduler = build_scheduler(client)
    session = scheduler.open_group("Panel", ["aria", "echo"])

    assert scheduler.add_participants(session.session_id, ["nexus", "aria", "ghost"]) == ["nexus"]
    assert session.participants == ["aria", "echo", "nexus"]

    scheduler.remove_participant(session.session_id, "aria")
    replies = await scheduler.send(session.session_id, "topic?")
    await settle()

    assert [m.agent_id for m in replies] == ["echo", "nexus"]
    assert session.participants == ["echo", "nexus"]
    assert any(name == "session_state" for name, _ in events)


def test_remove_participant_keeps_two_agents(build_scheduler):
    scheduler = build_scheduler(ScriptedModelClient())
    session = scheduler.open_group("Pair", ["aria", "echo"])

    with pytest.raises(ValueError):
        scheduler.remove_participant(session.session_id, "echo")
    with pytest.raises(ValueError):
        scheduler.remove_participant(session.session_id, "nexus")
    assert session.participants == ["aria", "echo"]


@pytest.mark.asyncio
async def test_membership_changes_rejected_while_busy(build_scheduler):
    client = BlockingModelClient()
    scheduler = build_scheduler(client)
    session = scheduler.open_group("Panel", ["aria", "echo", "nexus"])

    pending = asyncio.create_task(scheduler.send(session.session_id, "topic?"))
    await client.started.wait()

    with pytest.raises(SessionBusyError):
        scheduler.add_participants(session.session_id, ["zephyr"])
    with pytest.raises(SessionBusyError):
        scheduler.remove_participant(session.session_id, "nexus")
    assert session.participants == ["aria", "echo", "nexus"]

    scheduler.stop(session.session_id)
    client.release()
    await pending
