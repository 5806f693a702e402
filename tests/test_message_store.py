"""Tests for the message store and its JSON persistence."""

import json
from datetime import datetime, timedelta

from nexus.core.message_store import JsonFileStorage, MessageStore
from nexus.models.message import Sender


def test_append_and_read_preserve_order_with_increasing_ids():
    store = MessageStore()
    for i in range(5):
        store.append("aria", Sender.USER if i % 2 == 0 else Sender.AGENT, f"message {i}")

    messages = store.read("aria")

    assert [m.content for m in messages] == [f"message {i}" for i in range(5)]
    ids = [m.id for m in messages]
    assert ids == sorted(ids) and len(set(ids)) == 5


def test_unknown_key_reads_as_empty():
    store = MessageStore()
    assert store.read("nobody") == []
    assert store.last("nobody") is None
    assert store.recent("nobody") == []


def test_read_returns_a_copy():
    store = MessageStore()
    store.append("aria", Sender.USER, "hello")

    snapshot = store.read("aria")
    snapshot.clear()

    assert len(store.read("aria")) == 1


def test_recent_and_last():
    store = MessageStore()
    for i in range(12):
        store.append("group-1", Sender.USER, str(i))

    assert [m.content for m in store.recent("group-1", 3)] == ["9", "10", "11"]
    assert store.last("group-1").content == "11"
    assert store.recent("group-1", 0) == []


def test_clear_and_clear_all():
    store = MessageStore()
    store.append("aria", Sender.USER, "hi")
    store.append("zephyr", Sender.USER, "hey")

    store.clear("aria")
    assert store.read("aria") == []
    assert store.keys() == ["zephyr"]

    store.clear_all()
    assert store.keys() == []


def test_agent_messages_carry_speaker_and_attachment():
    store = MessageStore()
    message = store.append("prism", Sender.AGENT, "Here you go", agent_id="prism",
                           agent_name="Prism", attachment="https://images.example/a.png")

    assert message.speaker == "Prism"
    assert message.attachment == "https://images.example/a.png"


def test_persisted_history_is_restored(tmp_path):
    path = tmp_path / "history.json"
    store = MessageStore(JsonFileStorage(path))
    store.append("aria", Sender.USER, "hello")
    store.append("aria", Sender.AGENT, "hi there", agent_id="aria", agent_name="Aria")

    reloaded = MessageStore(JsonFileStorage(path))
    messages = reloaded.read("aria")

    assert [(m.sender, m.content) for m in messages] == [(Sender.USER, "hello"), (Sender.AGENT, "hi there")]
    assert reloaded.append("aria", Sender.USER, "again").id == messages[-1].id + 1


def test_corrupt_history_file_starts_empty(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("{not json", encoding="utf-8")

    store = MessageStore(JsonFileStorage(path))

    assert store.keys() == []
    store.append("aria", Sender.USER, "fresh start")
    assert json.loads(path.read_text(encoding="utf-8"))["aria"][0]["content"] == "fresh start"


def test_search_across_conversations_is_case_insensitive():
    store = MessageStore()
    store.append("aria", Sender.USER, "Tell me about Mars")
    store.append("group-1", Sender.AGENT, "mars has two moons", agent_id="nexus", agent_name="Nexus")
    store.append("zephyr", Sender.USER, "Write a poem")

    assert [m.conversation_key for m in store.search("MARS")] == ["aria", "group-1"]
    assert [m.content for m in store.search("mars", conversation_key="group-1")] == ["mars has two moons"]
    assert store.search("mars", sender=Sender.AGENT)[0].agent_id == "nexus"
    assert store.search("mars", agent_id="aria") == []
    assert store.search("   ") == []


def test_search_date_filter():
    store = MessageStore()
    store.append("aria", Sender.USER, "old idea")
    cutoff = datetime.now() + timedelta(seconds=1)

    assert [m.content for m in store.search("idea")] == ["old idea"]
    assert store.search("idea", since=cutoff) == []
