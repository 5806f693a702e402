"""
Cancellation - Cooperative cancellation tokens and the per-session registry.

Every outer operation (a send, a group round, an autonomous tick) gets a fresh
token. Async steps check the token before each side effect and abort quietly
when it has been cancelled.
"""

import itertools
import logging
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_token_ids = itertools.count(1)

class CancellationToken:
    """Cancelled flag plus the callbacks that depend on it."""

    def __init__(self, label: str = ""):
        self.id = next(_token_ids)
        self.label = label
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def on_cancel(self, callback: Callable[[], None]):
        """Register a dependent callback. Runs immediately if already cancelled."""
        if self._cancelled:
            self._invoke(callback)
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], None]):
        """Drop a callback that is no longer relevant."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def cancel(self):
        """Cancel the token. Each callback runs exactly once; repeat calls do nothing."""
        if self._cancelled:
            return

        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        logger.debug(f"Token {self} cancelled, running {len(callbacks)} callbacks")

        for callback in callbacks:
            self._invoke(callback)

    def _invoke(self, callback: Callable[[], None]):
        try:
            callback()
        except Exception as e:
            logger.error(f"Error in cancellation callback for {self}: {e}")

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<CancellationToken #{self.id} {self.label} {state}>"

class CancellationRegistry:
    """Maps session ids to their currently active cancellation token."""

    def __init__(self):
        self._active: Dict[str, CancellationToken] = {}

    def create_token(self, session_id: Optional[str] = None) -> CancellationToken:
        """Create a fresh token, making it the session's active token if an id is given."""
        token = CancellationToken(label=session_id or "")
        if session_id is None:
            return token

        stale = self._active.get(session_id)
        if stale is not None and not stale.is_cancelled():
            logger.warning(f"Replacing active token for session {session_id}")
            stale.cancel()

        self._active[session_id] = token
        return token

    def cancel(self, token: CancellationToken):
        token.cancel()

    def is_cancelled(self, token: CancellationToken) -> bool:
        return token.is_cancelled()

    def active_token(self, session_id: str) -> Optional[CancellationToken]:
        return self._active.get(session_id)

    def cancel_session(self, session_id: str) -> bool:
        """Cancel and forget the session's active token."""
        token = self._active.pop(session_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def release(self, session_id: str, token: CancellationToken):
        """Forget the session's token once its operation has finished."""
        if self._active.get(session_id) is token:
            del self._active[session_id]

    def cancel_all(self) -> int:
        """Cancel every active token."""
        tokens = list(self._active.values())
        self._active.clear()
        for token in tokens:
            token.cancel()
        logger.info(f"Cancelled {len(tokens)} active operations")
        return len(tokens)
