"""
Remote model clients - ``call(prompt, model) -> str`` over OpenAI, Anthropic,
Google Gemini and local Ollama backends.
Errors are raised with their provider message so the escalation pipeline can
classify them.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import anthropic
import google.generativeai as genai
import openai
import requests

from ..core.config import AIConfig
from .errors import InvalidResponseError, ModelCallError, ServiceUnavailableError

logger = logging.getLogger(__name__)

def validate_response(response: Any) -> str:
    """Reject non-string or blank model output."""
    if not isinstance(response, str):
        raise InvalidResponseError("Invalid response from AI service: non-string result")
    if not response.strip():
        raise InvalidResponseError("Empty response from AI service")
    return response.strip()

class ModelClient(ABC):
    """Base class for remote language-model backends."""

    name: str = "base"

    @abstractmethod
    async def call(self, prompt: str, model: str) -> str:
        """Return the model's reply text or raise."""

    async def shutdown(self):
        """Release network resources."""

class OpenAIModelClient(ModelClient):
    """OpenAI chat completions. The async client aborts the HTTP request when cancelled."""

    name = "openai"

    def __init__(self, config: AIConfig):
        self.config = config
        self.client = openai.AsyncOpenAI(api_key=config.openai_api_key)
        logger.info("OpenAI client initialized")

    async def call(self, prompt: str, model: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=model or self.config.default_model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.BadRequestError as e:
            raise ModelCallError(f"400 Bad Request: {e}") from e
        except openai.APIConnectionError as e:
            raise ModelCallError(f"Network error contacting OpenAI: {e}") from e

        if not response.choices:
            raise InvalidResponseError("Empty response from AI service: no choices")

        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ModelCallError("Response filtered by content policy")
        return validate_response(choice.message.content)

    async def shutdown(self):
        await self.client.close()

class AnthropicModelClient(ModelClient):
    """Anthropic messages API."""

    name = "anthropic"

    def __init__(self, config: AIConfig):
        self.config = config
        self.client = anthropic.AsyncAnthropic(api_key=config.anthropic_api_key)
        logger.info("Anthropic client initialized")

    async def call(self, prompt: str, model: str) -> str:
        try:
            response = await self.client.messages.create(
                model=model or self.config.default_model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except anthropic.BadRequestError as e:
            raise ModelCallError(f"400 Bad Request: {e}") from e
        except anthropic.APIConnectionError as e:
            raise ModelCallError(f"Network error contacting Anthropic: {e}") from e

        if not response.content:
            raise InvalidResponseError("Empty response from AI service: no content blocks")
        return validate_response(getattr(response.content[0], "text", None))

    async def shutdown(self):
        await self.client.close()

class GeminiModelClient(ModelClient):
    """Google Gemini. The SDK is synchronous, so calls run in a worker thread."""

    name = "gemini"

    def __init__(self, config: AIConfig):
        self.config = config
        genai.configure(api_key=config.gemini_api_key)
        self.generation_config = {
            "temperature": config.temperature,
            "max_output_tokens": config.max_tokens,
        }
        logger.info("Gemini client initialized")

    async def call(self, prompt: str, model: str) -> str:
        gemini_model = genai.GenerativeModel(
            model_name=model or self.config.default_model,
            generation_config=self.generation_config,
        )
        response = await asyncio.to_thread(gemini_model.generate_content, prompt)

        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            raise ModelCallError(f"Prompt blocked by safety filter: {feedback.block_reason}")

        try:
            text = response.text
        except ValueError as e:
            # Raised when the candidate was stopped by the safety filter
            raise ModelCallError(f"Response filtered: {e}") from e
        return validate_response(text)

class OllamaModelClient(ModelClient):
    """Local Ollama server over its HTTP generate endpoint."""

    name = "ollama"

    def __init__(self, config: AIConfig):
        self.config = config
        self.base_url = config.local_api_url.rstrip("/")
        logger.info(f"Ollama client initialized: {self.base_url}")

    def _generate(self, prompt: str, model: str) -> Any:
        try:
            response = requests.post(
                f"{self.base_url}/api/generate",
                json={
                    "model": model or self.config.default_model,
                    "prompt": prompt,
                    "stream": False,
                    "options": {
                        "temperature": self.config.temperature,
                        "num_predict": self.config.max_tokens,
                    },
                },
                timeout=self.config.request_timeout or 30,
            )
        except requests.RequestException as e:
            raise ModelCallError(f"Network error contacting Ollama: {e}") from e

        if response.status_code == 400:
            raise ModelCallError(f"400 Bad Request: {response.text}")
        if response.status_code != 200:
            raise ModelCallError(f"Local AI request failed with protocol error {response.status_code}")

        try:
            return response.json().get("response")
        except ValueError as e:
            raise InvalidResponseError(f"Invalid response from AI service: {e}") from e

    async def call(self, prompt: str, model: str) -> str:
        result = await asyncio.to_thread(self._generate, prompt, model)
        return validate_response(result)

class UnavailableModelClient(ModelClient):
    """Stands in when no backend can be configured; every call reports the reason."""

    name = "unavailable"

    def __init__(self, reason: str):
        self.reason = reason

    async def call(self, prompt: str, model: str) -> str:
        raise ServiceUnavailableError(self.reason)

def create_model_client(config: AIConfig) -> ModelClient:
    """Create the configured backend, or an unavailable client explaining why not."""
    backend = config.backend.lower()

    try:
        if backend == "openai":
            if not config.openai_api_key:
                return UnavailableModelClient("OpenAI API key not configured")
            return OpenAIModelClient(config)

        if backend == "anthropic":
            if not config.anthropic_api_key:
                return UnavailableModelClient("Anthropic API key not configured")
            return AnthropicModelClient(config)

        if backend == "gemini":
            if not config.gemini_api_key:
                return UnavailableModelClient("Gemini API key not configured")
            return GeminiModelClient(config)

        if backend == "ollama":
            return OllamaModelClient(config)

    except Exception as e:
        logger.error(f"Failed to create {backend} client: {e}")
        return UnavailableModelClient(f"Model backend {backend} not available: {e}")

    logger.warning(f"Unknown AI backend: {config.backend}")
    return UnavailableModelClient(f"No model backend named {config.backend}")
