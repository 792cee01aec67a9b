"""Adapter for structured turn/candidate JSON (Gemini style).

Handles both the request shape ``{"contents": [{"parts": [...]}]}`` and the
response shape ``{"candidates": [{"content": {"parts": [...]}}]}``.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError, model_validator

from .types import Channel, ChannelAdapter, ChannelMessage


class TurnContent(BaseModel):
    role: Optional[str] = None
    parts: Optional[List[Any]] = None


class TurnCandidate(BaseModel):
    content: Optional[TurnContent] = None


class StructuredChunk(BaseModel):
    contents: Optional[List[TurnContent]] = None
    candidates: Optional[List[TurnCandidate]] = None

    @model_validator(mode="before")
    @classmethod
    def require_turns(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not ("contents" in data or "candidates" in data):
            raise ValueError("expected 'contents' or 'candidates'")
        return data


def _part_messages(part: Dict[str, Any], turn_role: Optional[str]) -> List[ChannelMessage]:
    messages: List[ChannelMessage] = []
    role = part.get("role", turn_role)
    text = part.get("text")
    thought = part.get("thought")

    if text and role != "tool":
        # Gemini flags thinking parts with ``thought: true`` on a text part
        channel = Channel.ANALYSIS if thought is True else Channel.FINAL
        messages.append(ChannelMessage(channel, str(text)))
    if thought and thought is not True:
        messages.append(ChannelMessage(Channel.ANALYSIS, str(thought)))
    if part.get("functionCall"):
        messages.append(
            ChannelMessage(Channel.COMMENTARY, json.dumps(part["functionCall"]))
        )
    return messages


class StructuredTurnAdapter(ChannelAdapter):
    """Maps structured parts to final/analysis/commentary channels."""

    name = "structured"

    def detect(self, chunk: Any) -> bool:
        try:
            StructuredChunk.model_validate(chunk)
        except ValidationError:
            return False
        return True

    def extract(self, chunk: Any) -> List[ChannelMessage]:
        parsed = StructuredChunk.model_validate(chunk)
        messages: List[ChannelMessage] = []

        turns: List[TurnContent] = []
        if parsed.contents:
            turns.append(parsed.contents[0])
        if parsed.candidates and parsed.candidates[0].content is not None:
            turns.append(parsed.candidates[0].content)

        for turn in turns:
            for part in turn.parts or []:
                if isinstance(part, dict):
                    messages.extend(_part_messages(part, turn.role))
        return messages
