"""Fake collaborators shared by the test modules."""

import asyncio
from typing import List

from nexus.ai.model_client import ModelClient


class ScriptedModelClient(ModelClient):
    """Returns (or raises) queued responses in order, then a stock reply."""

    name = "scripted"

    def __init__(self, *responses, default: str = "Sounds good."):
        self.responses = list(responses)
        self.default = default
        self.prompts: List[str] = []

    async def call(self, prompt: str, model: str) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, BaseException):
            raise response
        return response


class BlockingModelClient(ModelClient):
    """Holds every call until ``release`` is called."""

    name = "blocking"

    def __init__(self, reply: str = "late reply"):
        self.reply = reply
        self.started = asyncio.Event()
        self.released = asyncio.Event()
        self.calls = 0

    async def call(self, prompt: str, model: str) -> str:
        self.calls += 1
        self.started.set()
        await self.released.wait()
        return self.reply

    def release(self):
        self.released.set()


class RecordingVoice:
    def __init__(self):
        self.spoken = []
        self.stopped = 0

    async def speak(self, text, profile=None, on_level=None):
        self.spoken.append(text)
        if on_level:
            on_level(0.5)
        return True

    def stop(self):
        self.stopped += 1


class RecordingDiscord:
    def __init__(self, error: Exception = None):
        self.forwarded = []
        self.error = error

    async def forward(self, content, display_name=None):
        if self.error:
            raise self.error
        self.forwarded.append((display_name, content))


class FakeImages:
    available = True

    def __init__(self, url: str = "https://images.example/cat.png", error: Exception = None):
        self.url = url
        self.error = error
        self.prompts = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.url


async def settle(rounds: int = 5):
    """Let scheduled callbacks and background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


