"""
Emergency Stop - Process-wide registry of per-window stop callbacks.
"""

import logging
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

StopCallback = Callable[[], None]

class EmergencyStopCoordinator:
    """Keeps one stop callback per live session and fires them on demand."""

    def __init__(self):
        self._handlers: Dict[str, StopCallback] = {}

    def register_stop(self, session_id: str, callback: StopCallback):
        """Register the stop handler for a session, replacing any previous one."""
        self._handlers[session_id] = callback
        logger.debug(f"Registered stop handler for session: {session_id}")

    def unregister_stop(self, session_id: str, callback: Optional[StopCallback] = None) -> bool:
        """Remove a session's stop handler.

        When ``callback`` is given the handler is only removed if it is still the
        registered one, so a finishing operation cannot drop its successor's handler.
        """
        current = self._handlers.get(session_id)
        if current is None:
            return False
        if callback is not None and current is not callback:
            return False

        del self._handlers[session_id]
        logger.debug(f"Unregistered stop handler for session: {session_id}")
        return True

    def is_registered(self, session_id: str) -> bool:
        return session_id in self._handlers

    def active_sessions(self) -> List[str]:
        return list(self._handlers.keys())

    def stop_one(self, session_id: str) -> bool:
        """Invoke and remove one session's stop handler. Idle sessions are a no-op."""
        callback = self._handlers.pop(session_id, None)
        if callback is None:
            logger.debug(f"No stop handler for session {session_id}")
            return False

        logger.info(f"Force stopping session: {session_id}")
        callback()
        return True

    def stop_all(self) -> int:
        """Invoke every stop handler, isolating failures, then clear the registry."""
        handlers = list(self._handlers.items())
        logger.info(f"Emergency stop: stopping {len(handlers)} sessions")

        for session_id, callback in handlers:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error stopping session {session_id}: {e}")

        self._handlers.clear()
        return len(handlers)
