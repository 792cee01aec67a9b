"""Adapter for chat-completion deltas (DeepSeek R1 style).

Frames look like ``{"choices": [{"delta": {...}}]}`` where the delta may
carry ``reasoning_content``, ``content`` and ``tool_calls``.
"""

import json
from typing import Any, List, Optional

from pydantic import BaseModel, ValidationError

from .types import Channel, ChannelAdapter, ChannelMessage


class R1Delta(BaseModel):
    reasoning_content: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[List[Any]] = None


class R1Choice(BaseModel):
    delta: Optional[R1Delta] = None


class R1Chunk(BaseModel):
    choices: List[R1Choice]


class R1Adapter(ChannelAdapter):
    """Maps chat deltas to analysis/final/commentary channels."""

    name = "r1"

    def detect(self, chunk: Any) -> bool:
        try:
            R1Chunk.model_validate(chunk)
        except ValidationError:
            return False
        return True

    def extract(self, chunk: Any) -> List[ChannelMessage]:
        parsed = R1Chunk.model_validate(chunk)
        if not parsed.choices or parsed.choices[0].delta is None:
            return []

        delta = parsed.choices[0].delta
        messages: List[ChannelMessage] = []
        if delta.reasoning_content:
            messages.append(ChannelMessage(Channel.ANALYSIS, delta.reasoning_content))
        if delta.content:
            messages.append(ChannelMessage(Channel.FINAL, delta.content))
        for tool_call in delta.tool_calls or []:
            messages.append(ChannelMessage(Channel.COMMENTARY, json.dumps(tool_call)))
        return messages
