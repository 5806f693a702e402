"""
Reply broadcasting - Hands finished agent replies to voice and Discord.
Work runs as background tasks so a session is never kept busy by playback or
posting, and collaborator failures are logged rather than raised.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set

from ..core.event_bus import EventBus
from ..core.session import ConversationSession
from ..integrations.discord import DiscordBridge
from ..models.agent import Agent
from ..voice.synthesis import VoiceSynthesis

logger = logging.getLogger(__name__)

class ReplyBroadcaster:
    """Fans agent replies out to the enabled collaborators."""

    def __init__(self,
                 voice: Optional[VoiceSynthesis] = None,
                 discord: Optional[DiscordBridge] = None,
                 event_bus: Optional[EventBus] = None):
        self.voice = voice
        self.discord = discord
        self.event_bus = event_bus
        self._speech: Dict[str, Set[asyncio.Task]] = defaultdict(set)
        self._posts: Set[asyncio.Task] = set()

    def broadcast(self, session: ConversationSession, agent: Agent, text: str) -> List[asyncio.Task]:
        tasks = []

        if self.voice and session.auto_speak and agent.voice_enabled:
            task = asyncio.create_task(self._speak(session.session_id, agent, text))
            speech = self._speech[session.session_id]
            speech.add(task)
            task.add_done_callback(speech.discard)
            tasks.append(task)

        if self.discord and session.discord_enabled:
            task = asyncio.create_task(self._post(agent, text))
            self._posts.add(task)
            task.add_done_callback(self._posts.discard)
            tasks.append(task)

        return tasks

    async def _speak(self, session_id: str, agent: Agent, text: str):
        def on_level(level: float):
            if self.event_bus:
                self.event_bus.emit_nowait("voice_level", session_id, agent.id, level)

        try:
            await self.voice.speak(text, agent.voice_profile, on_level=on_level)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Voice playback failed for {agent.name}: {e}")

    async def _post(self, agent: Agent, text: str):
        try:
            await self.discord.forward(text, agent.name)
        except Exception as e:
            logger.warning(f"Discord forwarding failed for {agent.name}: {e}")

    def halt(self, session_id: str) -> int:
        """Stop a session's voice playback."""
        tasks = self._speech.pop(session_id, set())
        for task in tasks:
            task.cancel()
        if tasks and self.voice:
            self.voice.stop()
        return len(tasks)

    def halt_all(self) -> int:
        count = 0
        for session_id in list(self._speech):
            count += self.halt(session_id)
        if self.voice:
            self.voice.stop()
        return count

    def pending(self) -> List[asyncio.Task]:
        tasks = [task for speech in self._speech.values() for task in speech]
        return tasks + list(self._posts)

    async def drain(self):
        """Wait for outstanding playback and posts to finish."""
        tasks = self.pending()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
