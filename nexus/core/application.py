"""
Main application class for Nexus Prime.
Builds every component from the configuration and exposes the window-level
operations used by the front-end.
"""

import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from .cancellation import CancellationRegistry
from .config import Config
from .emergency_stop import EmergencyStopCoordinator
from .event_bus import EventBus
from .message_store import JsonFileStorage, MessageStore
from .session import ConversationSession
from ..ai.broadcast import ReplyBroadcaster
from ..ai.conversation import ChatSessionController
from ..ai.errors import SessionNotFoundError
from ..ai.group_chat import GroupTurnScheduler
from ..ai.model_client import ModelClient, create_model_client
from ..ai.pipeline import PromptEscalationPipeline
from ..integrations.discord import DiscordBridge
from ..integrations.images import ImageGenerator
from ..integrations.internet import InternetService
from ..models.agent import AgentRoster, load_roster
from ..models.message import ConversationMessage
from ..voice.synthesis import VoiceSynthesis

logger = logging.getLogger(__name__)

class NexusApplication:
    """Main application class that orchestrates all components."""

    def __init__(self, config: Config,
                 model_client: Optional[ModelClient] = None,
                 roster: Optional[AgentRoster] = None,
                 rng: Optional[random.Random] = None):
        self.config = config
        self.running = False
        self.event_bus = EventBus()

        self._model_client = model_client
        self._roster = roster
        self._rng = rng

        # Core components
        self.roster: Optional[AgentRoster] = None
        self.store: Optional[MessageStore] = None
        self.cancellation = CancellationRegistry()
        self.coordinator = EmergencyStopCoordinator()
        self.model_client: Optional[ModelClient] = None
        self.pipeline: Optional[PromptEscalationPipeline] = None
        self.chats: Optional[ChatSessionController] = None
        self.groups: Optional[GroupTurnScheduler] = None

        # Collaborators
        self.voice: Optional[VoiceSynthesis] = None
        self.discord: Optional[DiscordBridge] = None
        self.internet: Optional[InternetService] = None
        self.images: Optional[ImageGenerator] = None
        self.broadcaster: Optional[ReplyBroadcaster] = None

    async def initialize(self):
        """Initialize all application components."""
        logger.info("Initializing application components...")

        try:
            await self.event_bus.initialize()

            self.roster = self._roster or load_roster(self.config.storage.agents_file)

            storage = JsonFileStorage(self.config.history_path) if self.config.storage.persist_history else None
            self.store = MessageStore(storage)

            self.model_client = self._model_client or create_model_client(self.config.ai)
            logger.info(f"Model backend: {self.model_client.name}")

            if self.config.internet.enabled:
                self.internet = InternetService(self.config.internet)

            self.pipeline = PromptEscalationPipeline(
                self.model_client,
                default_model=self.config.ai.default_model,
                context_provider=self.internet,
                request_timeout=self.config.ai.request_timeout,
                max_input_chars=self.config.ai.max_input_chars,
            )

            if self.config.voice.enabled:
                self.voice = VoiceSynthesis(self.config.voice, self.event_bus)

            if self.config.discord.enabled:
                self.discord = DiscordBridge(self.config.discord)
                if not self.discord.available:
                    logger.warning("Discord enabled but no bot token/channel or webhook configured")

            if self.config.image.enabled and self.config.ai.openai_api_key:
                self.images = ImageGenerator(self.config.image, self.config.ai.openai_api_key)

            self.broadcaster = ReplyBroadcaster(self.voice, self.discord, self.event_bus)

            self.chats = ChatSessionController(
                self.roster,
                self.store,
                self.pipeline,
                self.cancellation,
                self.coordinator,
                self.event_bus,
                broadcaster=self.broadcaster,
                images=self.images,
            )
            self.groups = GroupTurnScheduler(
                self.roster,
                self.store,
                self.pipeline,
                self.cancellation,
                self.coordinator,
                self.event_bus,
                broadcaster=self.broadcaster,
                context_messages=self.config.group_chat.context_messages,
                autonomous_interval=self.config.group_chat.autonomous_interval,
                rng=self._rng,
            )

            self.running = True
            logger.info(f"{self.config.app_name} initialized with {len(self.roster)} agents")

        except Exception as e:
            logger.error(f"Failed to initialize application: {e}", exc_info=True)
            raise

    # Windows

    def open_chat(self, agent_id: str, **flags) -> ConversationSession:
        if 'discord_enabled' not in flags:
            flags['discord_enabled'] = self.discord is not None and self.discord.available
        return self.chats.open_session(agent_id, **flags)

    def close_chat(self, session_id: str):
        self.chats.close_session(session_id)

    def open_group(self, name: str, participant_ids: Sequence[str], **flags) -> ConversationSession:
        if 'discord_enabled' not in flags:
            flags['discord_enabled'] = self.discord is not None and self.discord.available
        return self.groups.open_group(name, participant_ids, **flags)

    def close_group(self, session_id: str):
        self.groups.close_group(session_id)

    def close_window(self, session_id: str):
        if self.groups.has_session(session_id):
            self.close_group(session_id)
        else:
            self.close_chat(session_id)

    def _controller_for(self, session_id: str) -> Union[ChatSessionController, GroupTurnScheduler]:
        if self.chats.has_session(session_id):
            return self.chats
        if self.groups.has_session(session_id):
            return self.groups
        raise SessionNotFoundError(f"No open window {session_id}")

    def get_window(self, session_id: str) -> ConversationSession:
        return self._controller_for(session_id).get_session(session_id)

    async def send(self, session_id: str, text: str) -> Any:
        """Send user text to a chat or group window."""
        return await self._controller_for(session_id).send(session_id, text)

    def toggle_autonomous(self, session_id: str) -> bool:
        return self.groups.toggle_autonomous(session_id)

    def add_to_group(self, session_id: str, agent_ids: Sequence[str]) -> List[str]:
        return self.groups.add_participants(session_id, agent_ids)

    def remove_from_group(self, session_id: str, agent_id: str):
        self.groups.remove_participant(session_id, agent_id)

    def history(self, session_id: str) -> List[ConversationMessage]:
        return self._controller_for(session_id).history(session_id)

    def clear_history(self, session_id: str):
        self._controller_for(session_id).clear_history(session_id)

    def search_history(self, query: str, session_id: Optional[str] = None,
                       since: Optional[datetime] = None) -> List[ConversationMessage]:
        """Search one window's log, or every stored conversation when no window is given."""
        key = self.get_window(session_id).conversation_key if session_id else None
        return self.store.search(query, conversation_key=key, since=since)

    def active_windows(self) -> List[Dict[str, Any]]:
        sessions = self.chats.sessions() + self.groups.sessions()
        return [session.summary() for session in sessions]

    # Stopping

    def stop_window(self, session_id: str) -> bool:
        return self._controller_for(session_id).stop(session_id)

    def stop_all(self) -> int:
        """Emergency stop: halt every session's work and all voice playback."""
        stopped = self.coordinator.stop_all()
        self.cancellation.cancel_all()
        if self.broadcaster:
            self.broadcaster.halt_all()

        self.event_bus.emit_nowait("emergency_stop", stopped)
        logger.warning(f"Emergency stop halted {stopped} sessions")
        return stopped

    async def shutdown(self):
        """Shutdown the application gracefully."""
        if not self.running:
            return

        logger.info("Shutting down application...")
        self.running = False
        self.stop_all()

        for session in self.chats.sessions():
            self.chats.close_session(session.session_id)
        for session in self.groups.sessions():
            self.groups.close_group(session.session_id)

        for name, component in (('model client', self.model_client),
                                ('image generator', self.images),
                                ('voice synthesis', self.voice)):
            if component:
                try:
                    await component.shutdown()
                except Exception as e:
                    logger.error(f"Error shutting down {name}: {e}")

        if self.internet:
            self.internet.close()

        await self.event_bus.shutdown()
        logger.info("Application shutdown complete")
