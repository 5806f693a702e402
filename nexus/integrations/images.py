"""
Image requests - Classifier for "draw me ..." style messages and the OpenAI
image generator used on that alternate reply path.
"""

import logging
import re
from typing import Optional

import openai

from ..core.config import ImageConfig
from ..ai.errors import ImageGenerationError

logger = logging.getLogger(__name__)

IMAGE_REQUEST_PATTERNS = [
    re.compile(r"\b(draw|paint|sketch|illustrate|render)\b\s+(me\s+)?(a|an|the|some|my|this)\b", re.IGNORECASE),
    re.compile(r"\b(create|generate|make|show|design)\b\s+(me\s+)?(a|an|some)?\s*"
               r"(image|picture|photo|drawing|painting|illustration|artwork|portrait)\b", re.IGNORECASE),
    re.compile(r"\b(image|picture|drawing|painting) of\b", re.IGNORECASE),
]

_PROMPT_PREFIX = re.compile(
    r"^\s*(please\s+)?(can you\s+|could you\s+)?"
    r"(draw|paint|sketch|illustrate|render|create|generate|make|show|design)\s+(me\s+)?"
    r"((a|an|some)\s+)?((image|picture|photo|drawing|painting|illustration|artwork|portrait)\s+of\s+)?"
    r"((a|an|the)\s+)?",
    re.IGNORECASE,
)

def is_image_request(text: str) -> bool:
    """True when the message asks for a picture rather than a chat reply."""
    if not text:
        return False
    return any(pattern.search(text) for pattern in IMAGE_REQUEST_PATTERNS)

def extract_image_prompt(text: str) -> str:
    """Strip the request phrasing, keeping what should be drawn."""
    prompt = _PROMPT_PREFIX.sub("", text or "").strip(" .!?")
    return prompt or (text or "").strip()

class ImageGenerator:
    """Generates images through the OpenAI images API."""

    def __init__(self, config: ImageConfig, api_key: Optional[str] = None):
        self.config = config
        self.client = openai.AsyncOpenAI(api_key=api_key) if api_key else None

    @property
    def available(self) -> bool:
        return self.config.enabled and self.client is not None

    async def generate(self, prompt: str) -> str:
        """Return a URL for an image matching the prompt."""
        if not self.available:
            raise ImageGenerationError("Image generation not available")

        try:
            response = await self.client.images.generate(
                model=self.config.model,
                prompt=prompt,
                size=self.config.size,
                n=1,
            )
        except openai.OpenAIError as e:
            raise ImageGenerationError(f"Image generation failed: {e}") from e

        if not response.data or not response.data[0].url:
            raise ImageGenerationError("Image generation returned no image")

        logger.info(f"Generated image for prompt: {prompt[:60]}")
        return response.data[0].url

    async def shutdown(self):
        if self.client:
            await self.client.close()
