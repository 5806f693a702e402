"""Tests for error classification and fallback messages."""

import asyncio

import pytest

from nexus.ai.errors import (
    FALLBACK_MESSAGES,
    ErrorKind,
    InvalidResponseError,
    ModelCallError,
    ServiceUnavailableError,
    SessionNotFoundError,
    classify_error,
    fallback_message,
)


@pytest.mark.parametrize("message", [
    "Your request was rejected as a result of our safety system",
    "content_policy_violation: prompt flagged",
    "Detected a jailbreak attempt",
    "Response filtered by content policy",
    "400 Bad Request: content filter triggered",
])
def test_policy_messages(message):
    assert classify_error(ModelCallError(message)) == ErrorKind.CONTENT_POLICY


@pytest.mark.parametrize("error, kind", [
    (ModelCallError("400 Bad Request: missing field"), ErrorKind.BAD_REQUEST),
    (ModelCallError("Network error contacting OpenAI"), ErrorKind.NETWORK_OR_PROTOCOL),
    (ModelCallError("Failed to fetch"), ErrorKind.NETWORK_OR_PROTOCOL),
    (asyncio.TimeoutError(), ErrorKind.NETWORK_OR_PROTOCOL),
    (ConnectionResetError("reset by peer"), ErrorKind.NETWORK_OR_PROTOCOL),
    (InvalidResponseError("Empty response from AI service"), ErrorKind.INVALID_OR_EMPTY_RESPONSE),
    (ServiceUnavailableError("OpenAI API key not configured"), ErrorKind.SERVICE_UNAVAILABLE),
    (RuntimeError("something odd"), ErrorKind.UNKNOWN),
])
def test_classification(error, kind):
    assert classify_error(error) == kind


def test_every_kind_has_a_distinct_fallback():
    assert set(FALLBACK_MESSAGES) == set(ErrorKind)
    assert len(set(FALLBACK_MESSAGES.values())) == len(ErrorKind)
    assert all(text.strip() for text in FALLBACK_MESSAGES.values())


def test_fallback_messages_do_not_leak_error_details():
    assert "guidelines" in fallback_message(ErrorKind.CONTENT_POLICY)
    assert fallback_message(ErrorKind.UNKNOWN) == "Sorry, I encountered an error. Please try again."


def test_session_not_found_is_a_key_error():
    with pytest.raises(KeyError):
        raise SessionNotFoundError("chat-9")
