"""
Payload validation and prompt construction for reply drafting.

Everything here is pure: no I/O, no clock, no randomness. The prompt text
is consumed verbatim by the model endpoint, so its layout is fixed.
"""

import re
from typing import Any, List, Optional

from pydantic import ValidationError

from shared.errors import InvalidRequestError
from .models import AnalyzeRequest, ChatMessage

MAX_MESSAGES = 30

PROMPT_PREAMBLE = (
    "You are an AI assistant helping a human chat operator draft ONE reply.",
    "Use the following rules:",
    "- Respect the requested tone and length.",
    "- Do not escalate the tone beyond the user intent.",
    "- Ask at most one question.",
    "- Return only the reply content, no extra commentary.",
)

_WHITESPACE = re.compile(r"\s+")


def sanitize_text(value: str) -> str:
    """Collapse whitespace runs to a single space and trim."""
    return _WHITESPACE.sub(" ", value).strip()


def validate_payload(payload: Any, max_messages: int = MAX_MESSAGES) -> AnalyzeRequest:
    """Structurally validate a decoded request body.

    Raises InvalidRequestError naming the first problem found. Checks run in
    a fixed order: message list bounds, tone, then each message's text.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("messages"), list) \
            or len(payload["messages"]) < 1:
        raise InvalidRequestError("messages must be a non-empty array")

    if len(payload["messages"]) > max_messages:
        raise InvalidRequestError(f"messages cannot exceed {max_messages} items")

    tone = payload.get("tone")
    if not isinstance(tone, str) or not tone.strip():
        raise InvalidRequestError("tone must be a valid string")

    for message in payload["messages"]:
        if not isinstance(message, dict) or not isinstance(message.get("text"), str):
            raise InvalidRequestError("each message must include text")
        if not sanitize_text(message["text"]):
            raise InvalidRequestError("message text cannot be empty")

    try:
        return AnalyzeRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidRequestError(f"{field or 'body'}: {first.get('msg', 'invalid value')}") from exc


def format_message(message: ChatMessage) -> str:
    author = sanitize_text(message.author or "Unknown") or "Unknown"
    return f"- {author}: {sanitize_text(message.text or '')}"


def build_prompt(messages: List[ChatMessage], tone: str, length: Optional[str] = None) -> str:
    """Render the model prompt from already validated inputs."""
    length_hint = f"Preferred length: {length.strip()}." if length and length.strip() else ""

    lines = [
        *PROMPT_PREAMBLE,
        f"Tone: {sanitize_text(tone)}.",
        length_hint,
        "Chat context (most recent last):",
        "\n".join(format_message(message) for message in messages),
    ]
    return "\n".join(line for line in lines if line)
