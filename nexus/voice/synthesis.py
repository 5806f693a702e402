"""
Voice Synthesis System - Speaks agent replies through the local pyttsx3 engine.
Emits simulated voice levels while speaking so avatars can animate lip sync.
"""

import logging
import asyncio
import random
from typing import Optional, Dict, Any, List, Callable

import pyttsx3

from ..core.config import VoiceConfig
from ..core.event_bus import EventBus
from ..models.agent import VoiceProfile

logger = logging.getLogger(__name__)

LevelCallback = Callable[[float], None]

class VoiceSynthesis:
    """Text-to-speech for agent replies."""

    def __init__(self, config: VoiceConfig, event_bus: Optional[EventBus] = None):
        self.config = config
        self.event_bus = event_bus

        self.engine: Optional[Any] = None
        self.available_voices: List[Dict[str, Any]] = []
        self.is_speaking = False
        self._lock = asyncio.Lock()

    def initialize(self) -> bool:
        """Create the pyttsx3 engine on first use."""
        if self.engine is not None:
            return True

        try:
            self.engine = pyttsx3.init()
            self.engine.setProperty('rate', self.config.tts_rate)
            self.engine.setProperty('volume', self.config.tts_volume)

            self.available_voices = [
                {'id': voice.id, 'name': voice.name}
                for voice in self.engine.getProperty('voices') or []
            ]
            logger.info(f"pyttsx3 initialized with {len(self.available_voices)} voices")
            return True

        except Exception as e:
            logger.error(f"Failed to initialize pyttsx3: {e}")
            self.engine = None
            return False

    @property
    def available(self) -> bool:
        return self.config.enabled and self.initialize()

    def _apply_profile(self, profile: Optional[VoiceProfile]):
        if profile is None:
            self.engine.setProperty('rate', self.config.tts_rate)
            self.engine.setProperty('volume', self.config.tts_volume)
            return

        self.engine.setProperty('rate', int(self.config.tts_rate * profile.rate))
        self.engine.setProperty('volume', max(0.0, min(1.0, profile.volume)))

        if profile.voice_name:
            for voice in self.available_voices:
                if profile.voice_name.lower() in voice['name'].lower():
                    self.engine.setProperty('voice', voice['id'])
                    break

    def _run(self, text: str):
        self.engine.say(text)
        self.engine.runAndWait()

    async def _simulate_levels(self, on_level: LevelCallback, volume: float):
        # pyttsx3 exposes no amplitude, so levels are simulated while it speaks
        while self.is_speaking:
            on_level(round(random.uniform(0.2, 1.0) * volume, 2))
            await asyncio.sleep(self.config.level_interval)

    async def speak(self, text: str, profile: Optional[VoiceProfile] = None,
                    on_level: Optional[LevelCallback] = None) -> bool:
        """Speak text with an agent's voice profile. Returns False when nothing was spoken."""
        if not text or not text.strip():
            return False
        if not self.available:
            return False

        async with self._lock:
            self._apply_profile(profile)
            self.is_speaking = True

            if self.event_bus:
                await self.event_bus.emit("speech_started", text)

            levels = None
            if on_level:
                volume = profile.volume if profile else self.config.tts_volume
                levels = asyncio.create_task(self._simulate_levels(on_level, volume))

            try:
                await asyncio.to_thread(self._run, text)
                return True
            finally:
                self.is_speaking = False
                if levels:
                    levels.cancel()
                if on_level:
                    on_level(0.0)
                if self.event_bus:
                    await self.event_bus.emit("speech_finished", text)

    def stop(self):
        """Interrupt current playback."""
        self.is_speaking = False
        if self.engine is None:
            return
        try:
            self.engine.stop()
            logger.debug("Speech synthesis stopped")
        except Exception as e:
            logger.error(f"Error stopping speech: {e}")

    async def shutdown(self):
        self.stop()
        self.engine = None
        logger.info("Voice synthesis shutdown complete")
