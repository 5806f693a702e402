"""
Group Turn Scheduler - Multi-agent group conversations.

Manual rounds let every participant answer the user in roster order. Autonomous
mode keeps the discussion going on a timer, one randomly chosen agent per tick,
replying to whatever was said last.
"""

import asyncio
import itertools
import logging
import random
from typing import Callable, Dict, List, Optional, Sequence

from ..core.cancellation import CancellationRegistry, CancellationToken
from ..core.emergency_stop import EmergencyStopCoordinator
from ..core.event_bus import EventBus
from ..core.message_store import MessageStore
from ..core.session import ConversationSession
from ..models.agent import Agent, AgentRoster
from ..models.message import ConversationMessage, Sender
from .broadcast import ReplyBroadcaster
from .errors import SessionBusyError, SessionNotFoundError
from .pipeline import PromptEscalationPipeline, ReplyRequest
from .prompts import format_transcript

logger = logging.getLogger(__name__)

class GroupTurnScheduler:
    """Runs group chat sessions and their autonomous discussion loops."""

    def __init__(self,
                 roster: AgentRoster,
                 store: MessageStore,
                 pipeline: PromptEscalationPipeline,
                 cancellation: CancellationRegistry,
                 coordinator: EmergencyStopCoordinator,
                 event_bus: EventBus,
                 broadcaster: Optional[ReplyBroadcaster] = None,
                 context_messages: int = 10,
                 autonomous_interval: float = 8.0,
                 rng: Optional[random.Random] = None):
        self.roster = roster
        self.store = store
        self.pipeline = pipeline
        self.cancellation = cancellation
        self.coordinator = coordinator
        self.event_bus = event_bus
        self.broadcaster = broadcaster or ReplyBroadcaster()
        self.context_messages = context_messages
        self.autonomous_interval = autonomous_interval
        self.rng = rng or random.Random()

        self._sessions: Dict[str, ConversationSession] = {}
        self._loops: Dict[str, asyncio.Task] = {}
        self._stop_handlers: Dict[str, Callable[[], None]] = {}
        self._group_ids = itertools.count(1)

    # Session lifecycle

    def open_group(self,
                   name: str,
                   participant_ids: Sequence[str],
                   model: Optional[str] = None,
                   auto_speak: bool = False,
                   discord_enabled: bool = False,
                   internet_enabled: bool = False) -> ConversationSession:
        """Open a group chat. Needs at least two agents known to the roster."""
        participants = []
        for agent_id in dict.fromkeys(participant_ids):
            if agent_id in self.roster:
                participants.append(agent_id)
            else:
                logger.warning(f"Ignoring unknown group participant: {agent_id}")

        if len(participants) < 2:
            raise ValueError("A group chat needs at least two known agents")

        session_id = f"group-{next(self._group_ids)}"
        session = ConversationSession(
            session_id=session_id,
            participants=participants,
            conversation_key=session_id,
            model=model or self.pipeline.default_model,
            name=name or "Group Chat",
            is_group=True,
            auto_speak=auto_speak,
            discord_enabled=discord_enabled,
            internet_enabled=internet_enabled,
        )
        self._sessions[session_id] = session

        logger.info(f"Opened group {session_id} '{session.name}' with {', '.join(participants)}")
        return session

    def close_group(self, session_id: str):
        """Stop the group's round and autonomous loop, then forget the session."""
        session = self.get_session(session_id)
        self.stop(session_id)
        if session.autonomous:
            self.stop_autonomous(session_id)
        self._disarm_stop(session)
        self.cancellation.cancel_session(session_id)
        del self._sessions[session_id]
        logger.info(f"Closed group {session_id}")

    def get_session(self, session_id: str) -> ConversationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"No group session {session_id}")
        return session

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def sessions(self) -> List[ConversationSession]:
        return list(self._sessions.values())

    def history(self, session_id: str) -> List[ConversationMessage]:
        return self.store.read(self.get_session(session_id).conversation_key)

    def clear_history(self, session_id: str):
        self.store.clear(self.get_session(session_id).conversation_key)

    def participants(self, session: ConversationSession) -> List[Agent]:
        return [agent for agent in map(self.roster.get, session.participants) if agent is not None]

    def add_participants(self, session_id: str, agent_ids: Sequence[str]) -> List[str]:
        """Invite agents into a live group. Returns the ids actually added."""
        session = self.get_session(session_id)
        self._check_idle(session)

        added = []
        for agent_id in dict.fromkeys(agent_ids):
            if agent_id not in self.roster:
                logger.warning(f"Ignoring unknown group participant: {agent_id}")
            elif agent_id not in session.participants:
                added.append(agent_id)

        if added:
            session.participants = session.participants + added
            self.event_bus.emit_nowait("session_state", session.summary())
            logger.info(f"Added {', '.join(added)} to group {session_id}")
        return added

    def remove_participant(self, session_id: str, agent_id: str):
        """Remove one agent from a live group, keeping at least two."""
        session = self.get_session(session_id)
        self._check_idle(session)

        if agent_id not in session.participants:
            raise ValueError(f"{agent_id} is not in group {session_id}")
        if len(session.participants) <= 2:
            raise ValueError("A group chat needs at least two agents")

        session.participants = [p for p in session.participants if p != agent_id]
        self.event_bus.emit_nowait("session_state", session.summary())
        logger.info(f"Removed {agent_id} from group {session_id}")

    def _check_idle(self, session: ConversationSession):
        if session.busy:
            self.event_bus.emit_nowait("session_busy", session.session_id)
            raise SessionBusyError(f"Group {session.session_id} is busy, try again when the round ends")

    # Manual rounds

    async def send(self, session_id: str, text: str) -> Optional[List[ConversationMessage]]:
        """Post a user message and let every participant answer it."""
        session = self.get_session(session_id)
        if not text or not text.strip():
            return None
        if session.busy:
            await self._reject_busy(session)
            return None

        token = self._begin(session)
        try:
            user_message = self.store.append(session.conversation_key, Sender.USER, text.strip())
            await self.event_bus.emit("message_added", session_id, user_message)
            return await self._round(session, text, token)
        finally:
            self._finish(session, token)

    async def run_round(self, session_id: str, trigger: str) -> Optional[List[ConversationMessage]]:
        """Let every participant respond to the trigger without storing a user message."""
        session = self.get_session(session_id)
        if session.busy:
            await self._reject_busy(session)
            return None

        token = self._begin(session)
        try:
            return await self._round(session, trigger, token)
        finally:
            self._finish(session, token)

    async def _round(self, session: ConversationSession, trigger: str,
                     token: CancellationToken) -> List[ConversationMessage]:
        replies = []
        for agent in self.participants(session):
            if token.is_cancelled():
                logger.info(f"Round in {session.session_id} stopped before {agent.name}")
                break

            message = await self._turn(session, agent, trigger, token)
            if message is None:
                break
            replies.append(message)

        return replies

    async def _turn(self, session: ConversationSession, agent: Agent, trigger: str,
                    token: CancellationToken) -> Optional[ConversationMessage]:
        """One participant's reply. Returns None if the token was cancelled."""
        recent = self.store.recent(session.conversation_key, self.context_messages)
        others = [other.name for other in self.participants(session) if other.id != agent.id]

        result = await self.pipeline.reply(ReplyRequest(
            user_message=trigger,
            agent_name=agent.name,
            personality=agent.personality,
            mood=agent.mood,
            token=token,
            model=session.model,
            use_internet=session.internet_enabled and agent.internet_enabled,
            transcript=format_transcript(recent),
            other_participants=others,
        ))

        if result.cancelled or token.is_cancelled():
            return None

        message = self.store.append(
            session.conversation_key,
            Sender.AGENT,
            result.text,
            agent_id=agent.id,
            agent_name=agent.name,
        )
        await self.event_bus.emit("message_added", session.session_id, message)
        if result.was_fallback:
            await self.event_bus.emit("reply_fallback", session.session_id, result.error_kind)

        self.broadcaster.broadcast(session, agent, result.text)
        return message

    # Autonomous mode

    def start_autonomous(self, session_id: str) -> bool:
        """Start the discussion timer. Returns False if it was already running."""
        session = self.get_session(session_id)
        if session.autonomous:
            return False

        session.autonomous = True
        self._arm_stop(session)
        self._loops[session_id] = asyncio.create_task(self._autonomous_loop(session))
        self.event_bus.emit_nowait("session_state", session.summary())

        logger.info(f"Autonomous mode started for {session_id}")
        return True

    def stop_autonomous(self, session_id: str) -> bool:
        """Stop the timer and any round or tick in flight. Returns False if it was not running."""
        session = self.get_session(session_id)
        if not session.autonomous:
            return False

        self._interrupt(session)
        self._disarm_stop(session)

        logger.info(f"Autonomous mode stopped for {session_id}")
        return True

    def toggle_autonomous(self, session_id: str) -> bool:
        """Flip autonomous mode and return the new state."""
        session = self.get_session(session_id)
        if session.autonomous:
            self.stop_autonomous(session_id)
        else:
            self.start_autonomous(session_id)
        return session.autonomous

    async def _autonomous_loop(self, session: ConversationSession):
        try:
            while session.autonomous and self._owns_loop(session):
                await asyncio.sleep(self.autonomous_interval)
                if not session.autonomous or not self._owns_loop(session):
                    break
                if session.busy:
                    logger.debug(f"Group {session.session_id} busy, skipping autonomous tick")
                    continue
                try:
                    await self._autonomous_tick(session)
                except Exception as e:
                    logger.error(f"Autonomous tick failed in {session.session_id}: {e}")
        except asyncio.CancelledError:
            logger.debug(f"Autonomous loop cancelled for {session.session_id}")
            raise

    async def _autonomous_tick(self, session: ConversationSession) -> Optional[ConversationMessage]:
        last = self.store.last(session.conversation_key)
        if last is None:
            logger.debug(f"Group {session.session_id} has no messages yet, skipping tick")
            return None

        agents = self.participants(session)
        if not agents:
            return None
        agent = self.rng.choice(agents)

        token = self._begin(session)
        try:
            return await self._turn(session, agent, last.content, token)
        finally:
            self._finish(session, token)

    def _owns_loop(self, session: ConversationSession) -> bool:
        """A loop replaced by a later start_autonomous must exit."""
        return self._loops.get(session.session_id) is asyncio.current_task()

    # Busy state and stop handling

    async def _reject_busy(self, session: ConversationSession):
        logger.info(f"Group {session.session_id} is busy, ignoring request")
        await self.event_bus.emit("session_busy", session.session_id)

    def _begin(self, session: ConversationSession) -> CancellationToken:
        token = self.cancellation.create_token(session.session_id)
        session.busy = True
        session.active_token = token
        self._arm_stop(session)
        self.event_bus.emit_nowait("session_state", session.summary())
        return token

    def _finish(self, session: ConversationSession, token: CancellationToken):
        self.cancellation.release(session.session_id, token)
        if session.active_token is token:
            session.busy = False
            session.active_token = None
        if not session.busy and not session.autonomous:
            self._disarm_stop(session)
        self.event_bus.emit_nowait("session_state", session.summary())

    def _arm_stop(self, session: ConversationSession):
        session_id = session.session_id
        handler = self._stop_handlers.get(session_id)
        if handler is None:
            def handler():
                self._halt(session_id)
            self._stop_handlers[session_id] = handler
        self.coordinator.register_stop(session_id, handler)

    def _disarm_stop(self, session: ConversationSession):
        handler = self._stop_handlers.pop(session.session_id, None)
        if handler is not None:
            self.coordinator.unregister_stop(session.session_id, handler)

    def _halt(self, session_id: str):
        """Stop handler: cancel the round or tick in flight and end autonomous mode."""
        self._stop_handlers.pop(session_id, None)
        session = self._sessions.get(session_id)
        if session is None:
            return

        self._interrupt(session)

    def _interrupt(self, session: ConversationSession):
        """End autonomous mode and cancel whatever round or tick is running."""
        session.autonomous = False
        loop = self._loops.pop(session.session_id, None)
        if loop is not None:
            loop.cancel()

        if session.active_token is not None:
            session.active_token.cancel()
        session.busy = False
        session.active_token = None
        self.event_bus.emit_nowait("session_state", session.summary())

    def stop(self, session_id: str) -> bool:
        """Stop the group's round, autonomous mode and voice playback."""
        self.get_session(session_id)
        stopped = self.coordinator.stop_one(session_id)
        self.broadcaster.halt(session_id)
        return stopped
