"""
Conversation sessions - Per-window conversation scope and its busy state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .cancellation import CancellationToken

@dataclass
class ConversationSession:
    """One conversation window, single-agent or group.

    ``busy``, ``active_token`` and ``autonomous`` are written only by the
    controller or scheduler that owns the session.
    """
    session_id: str
    participants: List[str]
    conversation_key: str
    model: str
    name: str = ""
    is_group: bool = False
    busy: bool = False
    autonomous: bool = False
    active_token: Optional[CancellationToken] = None
    auto_speak: bool = False
    discord_enabled: bool = False
    image_enabled: bool = False
    internet_enabled: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def agent_id(self) -> Optional[str]:
        """The single participant of a 1:1 session."""
        if self.is_group or not self.participants:
            return None
        return self.participants[0]

    def summary(self) -> dict:
        return {
            'session_id': self.session_id,
            'name': self.name,
            'is_group': self.is_group,
            'participants': list(self.participants),
            'busy': self.busy,
            'autonomous': self.autonomous,
        }
