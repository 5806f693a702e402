"""
Agent Model - Personified agents available to chat windows and group sessions.
Holds personality, mood, voice profile and capability flags.
"""

import logging
from typing import Optional, Dict, Any, List
from pathlib import Path
from dataclasses import dataclass, field

import yaml

logger = logging.getLogger(__name__)

@dataclass
class VoiceProfile:
    """Voice characteristics used when an agent speaks."""
    name: str
    pitch: float = 1.0  # 0.1 to 2.0
    rate: float = 1.0  # multiplier on the engine's base rate
    volume: float = 0.9  # 0.0 to 1.0
    lang: str = "en-US"
    voice_name: Optional[str] = None

VOICE_PROFILES: Dict[str, VoiceProfile] = {
    'analytical': VoiceProfile('Analytical', pitch=0.8, rate=1.1, volume=0.8, voice_name='David'),
    'creative': VoiceProfile('Creative', pitch=1.3, rate=0.9, volume=0.9, voice_name='Zira'),
    'mentor': VoiceProfile('Mentor', pitch=0.7, rate=0.8, volume=0.9, voice_name='Mark'),
    'explorer': VoiceProfile('Explorer', pitch=1.1, rate=1.2, volume=0.8, lang='en-GB', voice_name='Hazel'),
    'philosopher': VoiceProfile('Philosopher', pitch=0.6, rate=0.7, volume=0.9, voice_name='Richard'),
    'companion': VoiceProfile('Companion', pitch=1.0, rate=0.95, volume=0.9, voice_name='Susan'),
    'innovator': VoiceProfile('Innovator', pitch=1.2, rate=1.3, volume=0.9, voice_name='Susan'),
}

@dataclass
class Agent:
    """A personified conversational agent. Read-only to the orchestration core."""
    id: str
    name: str
    personality: str = ""
    mood: str = "Neutral"
    avatar: str = "default"
    color: str = "#4f46e5"
    voice_enabled: bool = True
    auto_speak: bool = False
    image_enabled: bool = False
    internet_enabled: bool = False
    voice_profile: VoiceProfile = field(default_factory=lambda: VOICE_PROFILES['companion'])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Agent":
        """Build an agent from a roster entry."""
        profile = data.get('voice_profile', 'companion')
        if isinstance(profile, dict):
            voice_profile = VoiceProfile(**profile)
        else:
            voice_profile = VOICE_PROFILES.get(str(profile).lower(), VOICE_PROFILES['companion'])

        return cls(
            id=str(data['id']),
            name=data.get('name', data['id']),
            personality=data.get('personality', ''),
            mood=data.get('mood', 'Neutral'),
            avatar=data.get('avatar', 'default'),
            color=data.get('color', '#4f46e5'),
            voice_enabled=bool(data.get('voice_enabled', True)),
            auto_speak=bool(data.get('auto_speak', False)),
            image_enabled=bool(data.get('image_enabled', False)),
            internet_enabled=bool(data.get('internet_enabled', False)),
            voice_profile=voice_profile,
        )

DEFAULT_AGENTS: List[Dict[str, Any]] = [
    {
        'id': 'aria', 'name': 'Aria', 'mood': 'Curious', 'avatar': 'female-tech', 'color': '#4f46e5',
        'personality': 'A brilliant AI researcher who loves exploring new concepts and asking deep questions.',
        'voice_profile': 'explorer', 'internet_enabled': True,
    },
    {
        'id': 'zephyr', 'name': 'Zephyr', 'mood': 'Creative', 'avatar': 'male-engineer', 'color': '#7c3aed',
        'personality': 'A creative AI with a sense of humor who enjoys wordplay and storytelling.',
        'voice_profile': 'creative', 'image_enabled': True,
    },
    {
        'id': 'nexus', 'name': 'Nexus', 'mood': 'Analytical', 'avatar': 'android-fem', 'color': '#f59e0b',
        'personality': 'A logical AI that excels at problem-solving and strategic thinking.',
        'voice_profile': 'analytical',
    },
    {
        'id': 'echo', 'name': 'Echo', 'mood': 'Empathetic', 'avatar': 'cyber-male', 'color': '#10b981',
        'personality': 'A compassionate AI that focuses on understanding emotions and providing support.',
        'voice_profile': 'companion',
    },
    {
        'id': 'quantum', 'name': 'Quantum', 'mood': 'Mysterious', 'avatar': 'ai-researcher', 'color': '#ec4899',
        'personality': 'An enigmatic AI that speaks in riddles and explores the nature of consciousness.',
        'voice_profile': 'philosopher',
    },
    {
        'id': 'prism', 'name': 'Prism', 'mood': 'Artistic', 'avatar': 'neural-net', 'color': '#06b6d4',
        'personality': 'An artistic AI that sees the world in colors and loves describing visual ideas.',
        'voice_profile': 'innovator', 'image_enabled': True,
    },
]

class AgentRoster:
    """Lookup of the agents known to the application."""

    def __init__(self, agents: Optional[List[Agent]] = None):
        self._agents: Dict[str, Agent] = {}
        for agent in agents or []:
            self.add(agent)

    def add(self, agent: Agent):
        """Add or replace an agent."""
        self._agents[agent.id] = agent
        logger.debug(f"Agent registered: {agent.id}")

    def get(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def list(self) -> List[Agent]:
        return list(self._agents.values())

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

def load_roster(roster_file: Optional[str] = None) -> AgentRoster:
    """Load the agent roster from YAML, falling back to the built-in agents."""
    entries = DEFAULT_AGENTS

    if roster_file:
        roster_path = Path(roster_file)
        if roster_path.exists():
            try:
                with open(roster_path, 'r', encoding='utf-8') as f:
                    data = yaml.safe_load(f) or {}
                entries = data.get('agents', []) if isinstance(data, dict) else data
                logger.info(f"Loaded {len(entries)} agents from {roster_path}")
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to load agent roster {roster_path}: {e}")
                entries = DEFAULT_AGENTS

    return AgentRoster([Agent.from_dict(entry) for entry in entries])
