"""
Event Bus - Central event system for component communication.
Lets the front-end follow messages, busy state and emergency stops without
the orchestration core knowing about any window.
"""

import logging
import asyncio
from typing import Dict, List, Callable, Optional, Set
from collections import defaultdict

logger = logging.getLogger(__name__)

class EventBus:
    """Async event bus for component communication."""

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = defaultdict(list)
        self.running = True
        self._pending: Set[asyncio.Task] = set()

    async def initialize(self):
        """Initialize the event bus."""
        self.running = True
        logger.info("Event bus initialized")

    def subscribe(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        self.listeners[event_name].append(callback)
        logger.debug(f"Subscribed to event: {event_name}")

    def unsubscribe(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if callback in self.listeners[event_name]:
            self.listeners[event_name].remove(callback)
            logger.debug(f"Unsubscribed from event: {event_name}")

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners."""
        if not self.running:
            return

        listeners = list(self.listeners.get(event_name, []))
        if listeners:
            logger.debug(f"Emitting event: {event_name} to {len(listeners)} listeners")

            for callback in listeners:
                try:
                    if asyncio.iscoroutinefunction(callback):
                        await callback(*args, **kwargs)
                    else:
                        callback(*args, **kwargs)
                except Exception as e:
                    logger.error(f"Error in event listener for {event_name}: {e}")

    def emit_nowait(self, event_name: str, *args, **kwargs) -> Optional[asyncio.Task]:
        """Schedule an emit from synchronous code such as stop handlers."""
        if not self.running or not self.listeners.get(event_name):
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, dropping event: {event_name}")
            return None

        task = loop.create_task(self.emit(event_name, *args, **kwargs))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def shutdown(self):
        """Shutdown the event bus."""
        self.running = False
        for task in list(self._pending):
            task.cancel()
        self.listeners.clear()
        logger.info("Event bus shutdown")
