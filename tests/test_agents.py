"""Tests for the agent roster."""

import yaml

from nexus.models.agent import DEFAULT_AGENTS, VOICE_PROFILES, Agent, load_roster


def test_default_roster_has_six_agents():
    roster = load_roster()

    assert len(roster) == len(DEFAULT_AGENTS) == 6
    assert "aria" in roster
    assert roster.get("aria").internet_enabled
    assert roster.get("zephyr").image_enabled
    assert roster.get("missing") is None


def test_roster_from_yaml(tmp_path):
    path = tmp_path / "agents.yaml"
    path.write_text(yaml.safe_dump({"agents": [
        {"id": "sage", "name": "Sage", "personality": "Calm", "voice_profile": "mentor"},
        {"id": "bolt", "voice_profile": {"name": "fast", "rate": 1.4}},
    ]}), encoding="utf-8")

    roster = load_roster(str(path))

    assert [agent.id for agent in roster.list()] == ["sage", "bolt"]
    assert roster.get("sage").voice_profile == VOICE_PROFILES["mentor"]
    assert roster.get("bolt").name == "bolt"
    assert roster.get("bolt").voice_profile.rate == 1.4


def test_broken_yaml_falls_back_to_defaults(tmp_path):
    path = tmp_path / "agents.yaml"
    path.write_text("agents: [unclosed", encoding="utf-8")

    assert len(load_roster(str(path))) == 6


def test_unknown_voice_profile_uses_companion():
    agent = Agent.from_dict({"id": "x", "voice_profile": "nonexistent"})
    assert agent.voice_profile == VOICE_PROFILES["companion"]
