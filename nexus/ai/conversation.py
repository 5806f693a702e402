"""
Chat Session Controller - One-on-one conversations between the user and an agent.
Owns each session's busy flag and cancellation token, and keeps the message log
consistent when a reply is stopped midway.
"""

import asyncio
import itertools
import logging
from typing import Dict, List, Optional

from ..core.cancellation import CancellationRegistry, CancellationToken
from ..core.emergency_stop import EmergencyStopCoordinator
from ..core.event_bus import EventBus
from ..core.message_store import MessageStore
from ..core.session import ConversationSession
from ..integrations.images import ImageGenerator, extract_image_prompt, is_image_request
from ..models.agent import Agent, AgentRoster
from ..models.message import ConversationMessage, Sender
from .broadcast import ReplyBroadcaster
from .errors import IMAGE_FALLBACK_MESSAGE, SessionNotFoundError, classify_error
from .pipeline import (
    CANCELLED_MESSAGE,
    PromptEscalationPipeline,
    ReplyRequest,
    ReplyResult,
    ReplyStatus,
)

logger = logging.getLogger(__name__)

class ChatSessionController:
    """Runs single-agent chat windows."""

    def __init__(self,
                 roster: AgentRoster,
                 store: MessageStore,
                 pipeline: PromptEscalationPipeline,
                 cancellation: CancellationRegistry,
                 coordinator: EmergencyStopCoordinator,
                 event_bus: EventBus,
                 broadcaster: Optional[ReplyBroadcaster] = None,
                 images: Optional[ImageGenerator] = None):
        self.roster = roster
        self.store = store
        self.pipeline = pipeline
        self.cancellation = cancellation
        self.coordinator = coordinator
        self.event_bus = event_bus
        self.broadcaster = broadcaster or ReplyBroadcaster()
        self.images = images

        self._sessions: Dict[str, ConversationSession] = {}
        self._session_ids = itertools.count(1)

    def open_session(self,
                     agent_id: str,
                     model: Optional[str] = None,
                     auto_speak: Optional[bool] = None,
                     discord_enabled: bool = False,
                     image_enabled: Optional[bool] = None,
                     internet_enabled: Optional[bool] = None) -> ConversationSession:
        """Open a chat window with one agent. Flags default to the agent's own settings."""
        agent = self.roster.get(agent_id)
        if agent is None:
            raise ValueError(f"Unknown agent: {agent_id}")

        session = ConversationSession(
            session_id=f"chat-{next(self._session_ids)}",
            participants=[agent.id],
            conversation_key=agent.id,
            model=model or self.pipeline.default_model,
            name=agent.name,
            auto_speak=agent.auto_speak if auto_speak is None else auto_speak,
            discord_enabled=discord_enabled,
            image_enabled=agent.image_enabled if image_enabled is None else image_enabled,
            internet_enabled=agent.internet_enabled if internet_enabled is None else internet_enabled,
        )
        self._sessions[session.session_id] = session

        logger.info(f"Opened chat {session.session_id} with {agent.name}")
        return session

    def close_session(self, session_id: str):
        """Stop anything in flight and forget the session. The message log is kept."""
        session = self.get_session(session_id)
        self.stop(session_id)
        self.cancellation.cancel_session(session_id)
        del self._sessions[session_id]
        logger.info(f"Closed chat {session_id} ({session.name})")

    def get_session(self, session_id: str) -> ConversationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"No chat session {session_id}")
        return session

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def sessions(self) -> List[ConversationSession]:
        return list(self._sessions.values())

    def history(self, session_id: str) -> List[ConversationMessage]:
        return self.store.read(self.get_session(session_id).conversation_key)

    def clear_history(self, session_id: str):
        self.store.clear(self.get_session(session_id).conversation_key)

    async def send(self, session_id: str, text: str) -> Optional[ReplyResult]:
        """Send a user message and wait for the agent's reply.

        Returns None when the message was ignored (blank text or a busy
        session). A stopped send returns the cancelled result and leaves
        nothing after the user message in the log.
        """
        session = self.get_session(session_id)
        if not text or not text.strip():
            return None

        if session.busy:
            logger.info(f"Chat {session_id} is busy, ignoring message")
            await self.event_bus.emit("session_busy", session_id)
            return None

        agent = self.roster.get(session.agent_id)
        if agent is None:
            raise SessionNotFoundError(f"Agent {session.agent_id} is no longer on the roster")

        token = self.cancellation.create_token(session_id)
        session.busy = True
        session.active_token = token

        def halt():
            token.cancel()
            if session.active_token is token:
                session.busy = False
                session.active_token = None
                self.event_bus.emit_nowait("session_state", session.summary())

        self.coordinator.register_stop(session_id, halt)

        try:
            await self.event_bus.emit("session_state", session.summary())
            if token.is_cancelled():
                return self._cancelled()

            user_message = self.store.append(session.conversation_key, Sender.USER, text.strip())
            await self.event_bus.emit("message_added", session_id, user_message)

            if self._wants_image(session, agent, text):
                result = await self._generate_image(text, token)
            else:
                result = await self.pipeline.reply(ReplyRequest(
                    user_message=text,
                    agent_name=agent.name,
                    personality=agent.personality,
                    mood=agent.mood,
                    token=token,
                    model=session.model,
                    use_internet=session.internet_enabled and agent.internet_enabled,
                ))

            if result.cancelled or token.is_cancelled():
                logger.info(f"Reply from {agent.name} stopped in {session_id}")
                return self._cancelled()

            await self._record_reply(session, agent, result)
            return result

        finally:
            self.coordinator.unregister_stop(session_id, halt)
            self.cancellation.release(session_id, token)
            if session.active_token is token:
                session.busy = False
                session.active_token = None
                await self.event_bus.emit("session_state", session.summary())

    async def _record_reply(self, session: ConversationSession, agent: Agent, result: ReplyResult):
        message = self.store.append(
            session.conversation_key,
            Sender.AGENT,
            result.text,
            agent_id=agent.id,
            agent_name=agent.name,
            attachment=result.attachment,
        )
        await self.event_bus.emit("message_added", session.session_id, message)

        if result.was_fallback:
            await self.event_bus.emit("reply_fallback", session.session_id, result.error_kind)

        self.broadcaster.broadcast(session, agent, result.text)

    def _wants_image(self, session: ConversationSession, agent: Agent, text: str) -> bool:
        if not (session.image_enabled and agent.image_enabled):
            return False
        if self.images is None or not self.images.available:
            return False
        return is_image_request(text)

    async def _generate_image(self, text: str, token: CancellationToken) -> ReplyResult:
        prompt = extract_image_prompt(text)
        generation = asyncio.ensure_future(self.images.generate(prompt))
        token.on_cancel(generation.cancel)

        try:
            url = await generation
        except asyncio.CancelledError:
            if token.is_cancelled():
                return self._cancelled()
            raise
        except Exception as e:
            if token.is_cancelled():
                return self._cancelled()
            logger.error(f"Image generation failed: {e}")
            return ReplyResult(ReplyStatus.FALLBACK, IMAGE_FALLBACK_MESSAGE,
                               error_kind=classify_error(e), attempts=1)
        finally:
            token.remove_callback(generation.cancel)

        if token.is_cancelled():
            return self._cancelled()
        return ReplyResult(ReplyStatus.OK, f"Here's what I made: {prompt}", attempts=1, attachment=url)

    @staticmethod
    def _cancelled() -> ReplyResult:
        return ReplyResult(ReplyStatus.CANCELLED, CANCELLED_MESSAGE)

    def stop(self, session_id: str) -> bool:
        """Stop the session's in-flight reply and its voice playback. Idle sessions are a no-op."""
        stopped = self.coordinator.stop_one(session_id)
        self.broadcaster.halt(session_id)
        return stopped
