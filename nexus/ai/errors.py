"""
Error taxonomy for model calls and the canned replies shown instead of raw errors.
"""

import asyncio
from enum import Enum
from typing import Dict, Optional


class NexusError(Exception):
    """Base class for application errors."""


class ModelCallError(NexusError):
    """A remote model call failed."""


class ServiceUnavailableError(ModelCallError):
    """No model runtime or credentials are available."""


class InvalidResponseError(ModelCallError):
    """The model returned something that is not usable text."""


class SessionNotFoundError(NexusError, KeyError):
    """No open session has the requested id."""


class SessionBusyError(NexusError):
    """The session has a round or tick in flight."""


class DiscordError(NexusError):
    """Posting to Discord failed."""


class ImageGenerationError(NexusError):
    """The image collaborator could not produce an image."""


class ErrorKind(str, Enum):
    CONTENT_POLICY = "content_policy"
    NETWORK_OR_PROTOCOL = "network_or_protocol"
    BAD_REQUEST = "bad_request"
    INVALID_OR_EMPTY_RESPONSE = "invalid_or_empty_response"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UNKNOWN = "unknown"


FALLBACK_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.CONTENT_POLICY: "Let's keep things within guidelines. Could we talk about something else?",
    ErrorKind.NETWORK_OR_PROTOCOL: "I'm having trouble connecting right now. Please try again in a moment.",
    ErrorKind.BAD_REQUEST: "I couldn't quite process that request. Could you rephrase it?",
    ErrorKind.INVALID_OR_EMPTY_RESPONSE: "I didn't come up with a proper answer that time. Could you ask again?",
    ErrorKind.SERVICE_UNAVAILABLE: "My language model isn't available right now. Please check the AI settings.",
    ErrorKind.UNKNOWN: "Sorry, I encountered an error. Please try again.",
}

IMAGE_FALLBACK_MESSAGE = "I couldn't create that image right now. Let's try again in a moment."

CONTENT_POLICY_MARKERS = (
    "content policy", "content_policy", "policy violation", "violates our usage",
    "usage policies", "jailbreak", "content filter", "content_filter", "filtered",
    "responsible ai", "safety system", "blocked by safety",
)

NETWORK_MARKERS = (
    "network", "protocol", "fetch", "connection", "connect", "timeout", "timed out",
    "socket", "dns", "unreachable", "502", "503", "504", "ssl",
)

BAD_REQUEST_MARKERS = ("400", "bad request", "invalid_request")

INVALID_RESPONSE_MARKERS = ("invalid response", "empty response", "non-string", "no content")

UNAVAILABLE_MARKERS = ("not available", "not installed", "no model backend", "api key not")


def _matches(message: str, markers) -> bool:
    return any(marker in message for marker in markers)


def classify_error(error: Optional[BaseException]) -> ErrorKind:
    """Classify a failed model call into the error taxonomy."""
    if error is None:
        return ErrorKind.UNKNOWN

    message = str(error).lower()

    # Policy markers win over everything else; a 400 carrying a filter
    # notice is still a policy rejection.
    if _matches(message, CONTENT_POLICY_MARKERS):
        return ErrorKind.CONTENT_POLICY

    if isinstance(error, ServiceUnavailableError):
        return ErrorKind.SERVICE_UNAVAILABLE
    if isinstance(error, InvalidResponseError):
        return ErrorKind.INVALID_OR_EMPTY_RESPONSE
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorKind.NETWORK_OR_PROTOCOL

    if _matches(message, BAD_REQUEST_MARKERS):
        return ErrorKind.BAD_REQUEST
    if _matches(message, NETWORK_MARKERS):
        return ErrorKind.NETWORK_OR_PROTOCOL
    if _matches(message, INVALID_RESPONSE_MARKERS):
        return ErrorKind.INVALID_OR_EMPTY_RESPONSE
    if _matches(message, UNAVAILABLE_MARKERS):
        return ErrorKind.SERVICE_UNAVAILABLE

    return ErrorKind.UNKNOWN


def fallback_message(kind: ErrorKind) -> str:
    return FALLBACK_MESSAGES.get(kind, FALLBACK_MESSAGES[ErrorKind.UNKNOWN])
