"""
Prompt Escalation Pipeline - Turns one reply request into agent text.

Tries an enriched prompt, then a basic one, then a minimal one. Content-policy
rejections stop the escalation at once since every simpler prompt would meet
the same filter. Whatever happens the caller gets text back: a real reply, a
canned fallback, or the cancelled result that must not be stored.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol

from ..core.cancellation import CancellationToken
from .errors import ErrorKind, classify_error, fallback_message
from .model_client import ModelClient, validate_response
from .prompts import (
    build_basic_prompt,
    build_enriched_prompt,
    build_minimal_prompt,
    clean_user_message,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Request stopped."


class ContextProvider(Protocol):
    """Supplies extra context (search results, weather) for the enriched tier."""

    async def gather_context(self, message: str) -> Optional[str]:
        ...


class PromptTier(str, Enum):
    ENRICHED = "enriched"
    BASIC = "basic"
    MINIMAL = "minimal"


class OutcomeKind(str, Enum):
    OK = "ok"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TierOutcome:
    """Result of one tier attempt: ok(text) | cancelled | failed(kind, error)."""
    kind: OutcomeKind
    text: str = ""
    error_kind: Optional[ErrorKind] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, text: str) -> "TierOutcome":
        return cls(OutcomeKind.OK, text=text)

    @classmethod
    def cancelled(cls) -> "TierOutcome":
        return cls(OutcomeKind.CANCELLED)

    @classmethod
    def failed(cls, error: BaseException) -> "TierOutcome":
        return cls(OutcomeKind.FAILED, error_kind=classify_error(error), error=error)


class ReplyStatus(str, Enum):
    OK = "ok"
    FALLBACK = "fallback"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ReplyResult:
    status: ReplyStatus
    text: str
    tier: Optional[PromptTier] = None
    error_kind: Optional[ErrorKind] = None
    attempts: int = 0
    attachment: Optional[str] = None

    @property
    def was_fallback(self) -> bool:
        return self.status == ReplyStatus.FALLBACK

    @property
    def cancelled(self) -> bool:
        return self.status == ReplyStatus.CANCELLED


@dataclass
class ReplyRequest:
    """Everything needed to produce one agent reply."""
    user_message: str
    agent_name: str
    personality: str
    mood: str
    token: CancellationToken
    model: str = ""
    use_internet: bool = False
    transcript: Optional[str] = None
    other_participants: Optional[List[str]] = None


def remove_asterisk_actions(text: str) -> str:
    """Remove asterisk-enclosed actions like *smiles* or *nods*."""
    return re.sub(r'\*[^*]+\*', '', text).strip()


def clean_formatting(text: str) -> str:
    """Collapse whitespace left behind by the model or other filters."""
    return re.sub(r'[ \t]+', ' ', text).strip()


DEFAULT_RESPONSE_FILTERS: List[Callable[[str], str]] = [remove_asterisk_actions, clean_formatting]


class PromptEscalationPipeline:
    """Produces agent replies with graceful prompt degradation."""

    def __init__(self,
                 model_client: ModelClient,
                 default_model: str = "gpt-4o",
                 context_provider: Optional[ContextProvider] = None,
                 request_timeout: Optional[float] = None,
                 max_input_chars: int = 1000,
                 response_filters: Optional[List[Callable[[str], str]]] = None):
        self.model_client = model_client
        self.default_model = default_model
        self.context_provider = context_provider
        self.request_timeout = request_timeout
        self.max_input_chars = max_input_chars
        self.response_filters = DEFAULT_RESPONSE_FILTERS if response_filters is None else response_filters

    async def reply(self, request: ReplyRequest) -> ReplyResult:
        """Resolve a request to text. Never raises for model failures."""
        token = request.token
        model = request.model or self.default_model
        message = clean_user_message(request.user_message, self.max_input_chars)
        attempts = 0
        last: Optional[TierOutcome] = None

        for tier in (PromptTier.ENRICHED, PromptTier.BASIC, PromptTier.MINIMAL):
            if token.is_cancelled():
                return self._cancelled(attempts)

            prompt = await self._build_prompt(tier, request, message)
            if token.is_cancelled():
                return self._cancelled(attempts)

            attempts += 1
            outcome = await self._attempt(prompt, model, token)

            if outcome.kind == OutcomeKind.OK:
                logger.debug(f"{request.agent_name} replied on {tier.value} tier after {attempts} attempts")
                return ReplyResult(ReplyStatus.OK, outcome.text, tier=tier, attempts=attempts)

            if outcome.kind == OutcomeKind.CANCELLED:
                return self._cancelled(attempts)

            last = outcome
            logger.warning(
                f"{tier.value} prompt failed for {request.agent_name} "
                f"({outcome.error_kind.value}): {outcome.error}"
            )

            if outcome.error_kind == ErrorKind.CONTENT_POLICY:
                return self._fallback(ErrorKind.CONTENT_POLICY, tier, attempts)

        kind = last.error_kind if last else ErrorKind.UNKNOWN
        return self._fallback(kind, PromptTier.MINIMAL, attempts)

    async def _build_prompt(self, tier: PromptTier, request: ReplyRequest, message: str) -> str:
        if tier == PromptTier.ENRICHED:
            internet_context = None
            if request.use_internet and self.context_provider:
                internet_context = await self._lookup_context(message, request.token)
            return build_enriched_prompt(
                message,
                request.agent_name,
                request.personality,
                request.mood,
                internet_context=internet_context,
                transcript=request.transcript,
                other_participants=request.other_participants,
            )

        if tier == PromptTier.BASIC:
            return build_basic_prompt(message, request.agent_name, request.personality, request.mood)

        return build_minimal_prompt(message)

    async def _race(self, awaitable: Awaitable, token: CancellationToken) -> asyncio.Future:
        """Run the awaitable as a task that a token stop cancels.

        Returns the finished (or token-cancelled) task. Cancelling the caller's
        own task is not swallowed: the inner task is cancelled and the error
        propagates.
        """
        task = asyncio.ensure_future(awaitable)
        token.on_cancel(task.cancel)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            token.remove_callback(task.cancel)
        return task

    async def _lookup_context(self, message: str, token: CancellationToken) -> Optional[str]:
        lookup = await self._race(self.context_provider.gather_context(message), token)
        if lookup.cancelled():
            logger.debug("Context lookup stopped")
            return None
        error = lookup.exception()
        if error is not None:
            logger.error(f"Context lookup failed: {error}")
            return None
        return lookup.result()

    async def _attempt(self, prompt: str, model: str, token: CancellationToken) -> TierOutcome:
        """One model call that resolves early if the token is cancelled."""
        call = await self._race(self._call_model(prompt, model), token)
        error = None if call.cancelled() else call.exception()

        if token.is_cancelled():
            # Anything that finished after a stop is discarded
            return TierOutcome.cancelled()
        if call.cancelled():
            return TierOutcome.failed(asyncio.CancelledError("model call was cancelled"))
        if error is not None:
            return TierOutcome.failed(error)
        return TierOutcome.ok(self._apply_response_filters(call.result()))

    async def _call_model(self, prompt: str, model: str) -> str:
        if self.request_timeout:
            response = await asyncio.wait_for(self.model_client.call(prompt, model), self.request_timeout)
        else:
            response = await self.model_client.call(prompt, model)
        return validate_response(response)

    def _apply_response_filters(self, text: str) -> str:
        filtered = text
        for filter_func in self.response_filters:
            try:
                filtered = filter_func(filtered)
            except Exception as e:
                logger.error(f"Response filter error: {e}")

        # Never let filtering turn a real reply into nothing
        return filtered or text

    def _fallback(self, kind: ErrorKind, tier: PromptTier, attempts: int) -> ReplyResult:
        logger.info(f"Using fallback reply for {kind.value} after {attempts} attempts")
        return ReplyResult(ReplyStatus.FALLBACK, fallback_message(kind), tier=tier, error_kind=kind, attempts=attempts)

    def _cancelled(self, attempts: int) -> ReplyResult:
        logger.debug("Reply cancelled")
        return ReplyResult(ReplyStatus.CANCELLED, CANCELLED_MESSAGE, attempts=attempts)
