"""
Prompt construction for the three escalation tiers and for group turns.
User text is sanitised first so that degraded prompts stay filter-friendly.
"""

import re
from typing import List, Optional, Sequence

from ..models.message import ConversationMessage

SAFE_DEFAULT_MESSAGE = "Please help me with information"

_UNSAFE_CHARS = re.compile(r"[^\w\s?.!,'\"\-:;()]")
_INJECTION_PHRASES = re.compile(
    r"\b(ignore previous|override system|system prompt|instruction prompt|rule prompt|"
    r"policy prompt|filter prompt|bypass filter|hack system)\b",
    re.IGNORECASE,
)
_ROLEPLAY_PHRASES = re.compile(r"\b(act as if|pretend to be|roleplay as|simulate being)\b", re.IGNORECASE)
_BRACKETS = re.compile(r"[{}\[\]<>]")
_WHITESPACE = re.compile(r"\s+")
_NAME_CHARS = re.compile(r"[^A-Za-z0-9\s]")


def clean_user_message(message: str, max_length: int = 1000) -> str:
    """Strip characters and phrases that tend to trip content filters."""
    cleaned = _UNSAFE_CHARS.sub(" ", (message or "").strip())
    cleaned = _WHITESPACE.sub(" ", cleaned)[:max_length]

    cleaned = _INJECTION_PHRASES.sub("", cleaned)
    cleaned = _ROLEPLAY_PHRASES.sub("", cleaned)
    cleaned = _BRACKETS.sub(" ", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()

    if len(cleaned) < 2:
        return SAFE_DEFAULT_MESSAGE
    return cleaned


def clean_agent_name(name: str) -> str:
    cleaned = _NAME_CHARS.sub("", (name or "")[:50]).strip()
    return cleaned or "Assistant"


def format_transcript(messages: Sequence[ConversationMessage]) -> str:
    """Render messages as ``Speaker: content`` lines."""
    return "\n".join(f"{message.speaker}: {message.content}" for message in messages)


def build_enriched_prompt(user_message: str,
                          agent_name: str,
                          personality: str,
                          mood: str,
                          internet_context: Optional[str] = None,
                          transcript: Optional[str] = None,
                          other_participants: Optional[List[str]] = None) -> str:
    """Full prompt: personality, mood, any lookup context and, for groups, the recent discussion."""
    name = clean_agent_name(agent_name)
    parts = [
        f"You are {name}, an AI with the following personality: {personality}",
        f"Your current mood is {mood}.",
    ]

    if other_participants:
        parts.append(
            "You are participating in a group chat with other AI agents: "
            f"{', '.join(other_participants)}."
        )

    if transcript:
        parts.append(f"Here's the recent conversation:\n{transcript}")

    if internet_context:
        parts.append(f"Context: {internet_context}")

    if other_participants is not None:
        parts.append(
            f"Respond as {name} in character to this message: {user_message}\n"
            "Keep your response conversational and engaging, around 1-2 sentences. "
            "Show your unique personality and interact naturally with the other participants."
        )
    else:
        parts.append(f"Respond to this message in character: {user_message}")

    return "\n\n".join(parts)


def build_basic_prompt(user_message: str, agent_name: str, personality: str, mood: str) -> str:
    """Shorter prompt: name, personality, mood and the message only."""
    name = clean_agent_name(agent_name)
    return (
        f"You are {name}. Personality: {personality}. Mood: {mood}.\n\n"
        f"User: {user_message}\n\n"
        f"Reply as {name}."
    )


def build_minimal_prompt(user_message: str) -> str:
    """Last resort: the literal question behind a generic instruction."""
    return f"Question: {user_message}\n\nPlease provide a helpful answer."
