"""Shared pytest fixtures."""

import pytest

from nexus.ai.model_client import ModelClient
from nexus.ai.pipeline import PromptEscalationPipeline
from nexus.core.cancellation import CancellationRegistry
from nexus.core.emergency_stop import EmergencyStopCoordinator
from nexus.core.event_bus import EventBus
from nexus.core.message_store import MessageStore
from nexus.models.agent import DEFAULT_AGENTS, Agent, AgentRoster


@pytest.fixture
def roster() -> AgentRoster:
    return AgentRoster([Agent.from_dict(entry) for entry in DEFAULT_AGENTS])


@pytest.fixture
def store() -> MessageStore:
    return MessageStore()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def registry() -> CancellationRegistry:
    return CancellationRegistry()


@pytest.fixture
def coordinator() -> EmergencyStopCoordinator:
    return EmergencyStopCoordinator()


@pytest.fixture
def make_pipeline():
    def factory(client: ModelClient, **kwargs) -> PromptEscalationPipeline:
        return PromptEscalationPipeline(client, default_model="test-model", **kwargs)
    return factory


@pytest.fixture
def events(event_bus):
    """Record every core event as (name, args)."""
    recorded = []
    for name in ("message_added", "session_busy", "session_state", "reply_fallback",
                 "emergency_stop", "voice_level"):
        event_bus.subscribe(name, lambda *args, _name=name: recorded.append((_name, args)))
    return recorded
