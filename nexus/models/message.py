"""
Conversation Message Model - Immutable records stored in a conversation log.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class Sender(str, Enum):
    """Who produced a message."""
    USER = "user"
    AGENT = "agent"


@dataclass(frozen=True)
class ConversationMessage:
    """A single stored message. Created only by the message store."""
    id: int
    conversation_key: str
    sender: Sender
    content: str
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    attachment: Optional[str] = None

    @property
    def speaker(self) -> str:
        """Display name used when rendering transcripts."""
        if self.sender == Sender.USER:
            return "User"
        return self.agent_name or self.agent_id or "Agent"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_key": self.conversation_key,
            "sender": self.sender.value,
            "content": self.content,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "timestamp": self.timestamp.isoformat(),
            "attachment": self.attachment,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationMessage":
        return cls(
            id=int(data["id"]),
            conversation_key=data["conversation_key"],
            sender=Sender(data.get("sender", "user")),
            content=data.get("content", ""),
            agent_id=data.get("agent_id"),
            agent_name=data.get("agent_name"),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now(),
            attachment=data.get("attachment"),
        )
