"""
Message Store - Append-only conversation logs keyed by agent id or group session id.
Optionally persists the whole log to a JSON file after every mutation.
"""

import itertools
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any

from ..models.message import ConversationMessage, Sender

logger = logging.getLogger(__name__)

class JsonFileStorage:
    """Durable key-value storage for conversation logs backed by one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Dict[str, List[Dict[str, Any]]]:
        if not self.path.exists():
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def save(self, data: Dict[str, List[Dict[str, Any]]]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.path)

class MessageStore:
    """Per-conversation message logs. Messages are immutable once appended."""

    def __init__(self, storage: Optional[JsonFileStorage] = None):
        self.storage = storage
        self._logs: Dict[str, List[ConversationMessage]] = {}
        self._ids = itertools.count(1)

        if self.storage:
            self._restore()

    def _restore(self):
        """Reload persisted logs and resume the id sequence after them."""
        try:
            data = self.storage.load()
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load chat history from {self.storage.path}: {e}")
            return

        highest = 0
        for key, entries in data.items():
            messages = []
            for entry in entries:
                try:
                    messages.append(ConversationMessage.from_dict(entry))
                except (KeyError, ValueError) as e:
                    logger.warning(f"Skipping malformed stored message in {key}: {e}")
            messages.sort(key=lambda m: m.id)
            if messages:
                self._logs[key] = messages
                highest = max(highest, messages[-1].id)

        self._ids = itertools.count(highest + 1)
        logger.info(f"Restored {len(self._logs)} conversations from {self.storage.path}")

    def _persist(self):
        if not self.storage:
            return
        try:
            self.storage.save({
                key: [message.to_dict() for message in messages]
                for key, messages in self._logs.items()
            })
        except (OSError, TypeError) as e:
            logger.error(f"Failed to persist chat history: {e}")

    def append(self,
               conversation_key: str,
               sender: Sender,
               content: str,
               agent_id: Optional[str] = None,
               agent_name: Optional[str] = None,
               attachment: Optional[str] = None) -> ConversationMessage:
        """Append a message, assigning its id and timestamp."""
        message = ConversationMessage(
            id=next(self._ids),
            conversation_key=conversation_key,
            sender=Sender(sender),
            content=content,
            agent_id=agent_id,
            agent_name=agent_name,
            timestamp=datetime.now(),
            attachment=attachment,
        )
        self._logs.setdefault(conversation_key, []).append(message)
        self._persist()

        logger.debug(f"Appended message {message.id} to {conversation_key}")
        return message

    def read(self, conversation_key: str) -> List[ConversationMessage]:
        """All messages for a conversation in append order."""
        return list(self._logs.get(conversation_key, []))

    def recent(self, conversation_key: str, limit: int = 10) -> List[ConversationMessage]:
        if limit <= 0:
            return []
        return list(self._logs.get(conversation_key, [])[-limit:])

    def last(self, conversation_key: str) -> Optional[ConversationMessage]:
        messages = self._logs.get(conversation_key)
        return messages[-1] if messages else None

    def keys(self) -> List[str]:
        return list(self._logs.keys())

    def search(self,
               query: str,
               conversation_key: Optional[str] = None,
               since: Optional[datetime] = None,
               sender: Optional[Sender] = None,
               agent_id: Optional[str] = None) -> List[ConversationMessage]:
        """Case-insensitive content search over one conversation or all of them.

        Results are ordered oldest first. A blank query matches nothing.
        """
        needle = (query or "").strip().lower()
        if not needle:
            return []

        if conversation_key is None:
            logs = self._logs.values()
        else:
            logs = [self._logs.get(conversation_key, [])]

        matches = []
        for messages in logs:
            for message in messages:
                if since is not None and message.timestamp < since:
                    continue
                if sender is not None and message.sender != Sender(sender):
                    continue
                if agent_id is not None and message.agent_id != agent_id:
                    continue
                if needle in message.content.lower():
                    matches.append(message)

        matches.sort(key=lambda m: m.id)
        return matches

    def clear(self, conversation_key: str):
        """Remove the whole log for one conversation."""
        if self._logs.pop(conversation_key, None) is not None:
            self._persist()
            logger.info(f"Chat history cleared for {conversation_key}")

    def clear_all(self):
        self._logs.clear()
        self._persist()
        logger.info("All chat history cleared")
