#!/usr/bin/env python3
"""
Nexus Prime - Console Entry Point
Chat with personified AI agents one-on-one or in group discussions.

Commands:
  /agents                     list the agent roster
  /open <agent_id>            open a chat window with an agent
  /group <name> <id> <id>...  open a group chat
  /windows                    list open windows
  /switch <session_id>        make another window current
  /auto                       toggle autonomous discussion in the current group
  /stop                       stop the current window's reply
  /stopall                    emergency stop for every window
  /history                    show the current window's messages
  /clear                      clear the current window's messages
  /search [today|week|month] <text>
                              search every conversation for text
  /invite <id> <id>...        add agents to the current group
  /kick <id>                  remove an agent from the current group
  /close                      close the current window
  /quit                       exit

Python: 3.10+
"""

import sys
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Set

from nexus.ai.errors import NexusError
from nexus.core.application import NexusApplication
from nexus.core.config import load_config
from nexus.models.message import ConversationMessage, Sender
from nexus.utils.logger import setup_logging

logger = logging.getLogger(__name__)

SEARCH_RANGES = {
    'week': timedelta(days=7),
    'month': timedelta(days=30),
}

def check_python_version():
    """Ensure compatible Python version."""
    if sys.version_info < (3, 10):
        print("❌ Python 3.10 or higher is required!")
        print(f"Current version: {sys.version}")
        sys.exit(1)

class Console:
    """Line-based front-end driving the application."""

    def __init__(self, app: NexusApplication):
        self.app = app
        self.current: Optional[str] = None
        self.pending: Set[asyncio.Task] = set()

        app.event_bus.subscribe("message_added", self._on_message)
        app.event_bus.subscribe("session_busy", self._on_busy)
        app.event_bus.subscribe("emergency_stop", self._on_emergency_stop)

    def _on_message(self, session_id: str, message: ConversationMessage):
        if message.sender == Sender.AGENT:
            attachment = f" [{message.attachment}]" if message.attachment else ""
            print(f"\n[{session_id}] {message.speaker}: {message.content}{attachment}")

    def _on_busy(self, session_id: str):
        print(f"⏳ {session_id} is still working on a reply. Use /stop to interrupt.")

    def _on_emergency_stop(self, count: int):
        print(f"🛑 Emergency stop: {count} sessions halted")

    async def run(self):
        print(f"🤖 {self.app.config.app_name} - type /agents to begin, /quit to exit")

        while self.app.running:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break

            line = line.strip()
            if not line:
                continue

            try:
                if line.startswith('/'):
                    if not self.handle_command(line):
                        break
                else:
                    self.send(line)
            except (NexusError, ValueError, KeyError) as e:
                print(f"❌ {e}")

    def send(self, text: str):
        if not self.current:
            print("Open a window first with /open or /group")
            return
        task = asyncio.create_task(self.app.send(self.current, text))
        self.pending.add(task)
        task.add_done_callback(self._on_send_done)

    def _on_send_done(self, task: asyncio.Task):
        self.pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Send failed: {error}")
            print(f"❌ {error}")

    def search(self, args):
        since = None
        if args and args[0].lower() == 'today':
            since = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
            args = args[1:]
        elif args and args[0].lower() in SEARCH_RANGES:
            since = datetime.now() - SEARCH_RANGES[args[0].lower()]
            args = args[1:]
        if not args:
            raise ValueError("Usage: /search [today|week|month] <text>")

        results = self.app.search_history(' '.join(args), since=since)
        print(f"🔎 {len(results)} matching messages")
        for message in results:
            print(f"  {message.timestamp:%Y-%m-%d %H:%M} [{message.conversation_key}] "
                  f"{message.speaker}: {message.content}")
        return results

    def handle_command(self, line: str) -> bool:
        """Run one slash command. Returns False to quit."""
        command, *args = line.split()
        command = command.lower()

        if command == '/quit':
            return False

        if command == '/agents':
            for agent in self.app.roster.list():
                print(f"  {agent.avatar} {agent.id:<10} {agent.name} - {agent.personality}")

        elif command == '/open':
            if not args:
                raise ValueError("Usage: /open <agent_id>")
            session = self.app.open_chat(args[0])
            self.current = session.session_id
            print(f"✅ Chatting with {session.name} in {session.session_id}")

        elif command == '/group':
            if len(args) < 3:
                raise ValueError("Usage: /group <name> <agent_id> <agent_id> ...")
            session = self.app.open_group(args[0], args[1:])
            self.current = session.session_id
            print(f"✅ Group '{session.name}' opened as {session.session_id}")

        elif command == '/windows':
            for window in self.app.active_windows():
                marker = '*' if window['session_id'] == self.current else ' '
                state = 'busy' if window['busy'] else 'idle'
                print(f" {marker} {window['session_id']:<10} {window['name']} ({state})")

        elif command == '/switch':
            if not args:
                raise ValueError("Usage: /switch <session_id>")
            self.current = self.app.get_window(args[0]).session_id

        elif command == '/stopall':
            self.app.stop_all()

        elif command == '/search':
            self.search(args)

        elif not self.current:
            print("Open a window first with /open or /group")

        elif command == '/auto':
            enabled = self.app.toggle_autonomous(self.current)
            print(f"🔁 Autonomous mode {'on' if enabled else 'off'}")

        elif command == '/stop':
            if self.app.stop_window(self.current):
                print("⏹️ Stopped")

        elif command == '/history':
            for message in self.app.history(self.current):
                print(f"  {message.timestamp:%H:%M} {message.speaker}: {message.content}")

        elif command == '/clear':
            self.app.clear_history(self.current)
            print("🧹 History cleared")

        elif command == '/invite':
            if not args:
                raise ValueError("Usage: /invite <agent_id> ...")
            added = self.app.add_to_group(self.current, args)
            print(f"➕ Added: {', '.join(added) or 'nobody new'}")

        elif command == '/kick':
            if not args:
                raise ValueError("Usage: /kick <agent_id>")
            self.app.remove_from_group(self.current, args[0])
            print(f"➖ Removed {args[0]}")

        elif command == '/close':
            self.app.close_window(self.current)
            self.current = None

        else:
            print(f"Unknown command: {command}")

        return True

async def run():
    config = load_config()
    setup_logging(config.log_level, config.log_dir)
    logger.info(f"Starting {config.app_name} {config.version}")

    app = NexusApplication(config)
    await app.initialize()
    try:
        await Console(app).run()
    finally:
        await app.shutdown()

def main():
    """Main application entry point."""
    check_python_version()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except Exception as e:
        logger.error(f"Application error: {e}", exc_info=True)
        print(f"❌ Application error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
