"""
Conversation serialization for LLM consumption, and reply parsing.

Responsibilities:
- Convert system prompt + conversation context + current transcript
  into LLM-ready message format
- Split a raw model reply into spoken text and an optional trailing
  tool directive

Non-responsibilities:
- No truncation logic
- No turn storage
- No orchestration decisions
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from context.conversation import ConversationContext, speaker_name
from observability.logger import log_event
from spec import END_CONVERSATION_TOOL, TOOL_DIRECTIVE_MARKER


def serialize_for_llm(
    *,
    system_prompt: str,
    context: ConversationContext,
    speaker_id: int,
    user_text: str,
) -> list[dict[str, str]]:
    """
    Serialize conversation context into LLM message format.

    Output format:
    [
        {"role": "system", "content": "..."},
        {"role": "user", "content": "...", "name": "speaker_<id>"},
        {"role": "assistant", "content": "..."},
        ...
        {"role": "user", "content": "<current transcript>", "name": "speaker_<id>"},
    ]

    Rules:
    - System prompt is always first
    - Stored context turns come next (already truncated)
    - Current transcript is appended last as a fresh user turn
    """
    messages: list[dict[str, str]] = [{
        "role": "system",
        "content": system_prompt,
    }]

    messages.extend(context.serialize())

    messages.append({
        "role": "user",
        "content": user_text,
        "name": speaker_name(speaker_id),
    })

    return messages


@dataclass(frozen=True)
class ParsedReply:
    """Spoken part of a model reply plus any directive it carried."""
    text: str
    end_conversation: bool = False


def parse_reply(raw: str) -> ParsedReply:
    """
    Split a model reply at the first directive marker.

    Everything before the marker is spoken. Everything after must be a JSON
    object with a "tool" field; the end-conversation tool sets
    end_conversation. Malformed or unknown directives are logged and
    otherwise ignored.
    """
    if TOOL_DIRECTIVE_MARKER not in raw:
        return ParsedReply(text=raw.strip())

    speech_part, tool_part = raw.split(TOOL_DIRECTIVE_MARKER, 1)
    text = speech_part.strip()

    try:
        data = json.loads(tool_part)
    except json.JSONDecodeError as exc:
        log_event({
            "event_type": "REPLY_DIRECTIVE_MALFORMED",
            "error": str(exc),
            "directive_preview": tool_part[:100],
        })
        return ParsedReply(text=text)

    if not isinstance(data, dict) or "tool" not in data:
        log_event({
            "event_type": "REPLY_DIRECTIVE_MALFORMED",
            "error": "missing 'tool' field",
            "directive_preview": tool_part[:100],
        })
        return ParsedReply(text=text)

    if data["tool"] != END_CONVERSATION_TOOL:
        log_event({
            "event_type": "REPLY_DIRECTIVE_UNKNOWN",
            "tool": data["tool"],
        })
        return ParsedReply(text=text)

    return ParsedReply(text=text, end_conversation=True)
