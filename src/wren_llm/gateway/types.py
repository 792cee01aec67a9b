"""Gateway types for wren-llm multi-backend generation.

This module defines the backend-agnostic request/response types shared by
every content generator. Requests use a turn/part shape; each generator
maps it onto its own wire vocabulary.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..channels.types import Channel, ChannelMessage


@dataclass
class FunctionCall:
    """A tool invocation requested by the model."""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class FunctionResponse:
    """The result of a tool invocation, sent back to the model."""

    name: str
    response: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class Part:
    """One part of a turn. Exactly one field is normally set."""

    text: Optional[str] = None
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None


@dataclass
class Turn:
    """A conversation turn.

    ``role`` is "user" or "model"; generators remap "model" to whatever the
    backend expects (e.g. "assistant").
    """

    role: str
    parts: List[Part] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "Turn":
        return cls(role="user", parts=[Part(text=text)])

    @classmethod
    def model(cls, text: str) -> "Turn":
        return cls(role="model", parts=[Part(text=text)])


@dataclass
class SamplingConfig:
    """Sampling parameters; unset values use backend defaults."""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_output_tokens: Optional[int] = None


@dataclass
class GenerationRequest:
    """Backend-agnostic content generation request.

    ``abort`` is an optional cancellation signal; once set, an open stream
    stops producing output and releases its connection.
    """

    turns: List[Turn]
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    abort: Optional[asyncio.Event] = None

    def text_parts(self) -> List[str]:
        """All non-empty text parts, in order."""
        return [
            part.text
            for turn in self.turns
            for part in turn.parts
            if part.text
        ]

    @property
    def aborted(self) -> bool:
        return self.abort is not None and self.abort.is_set()


@dataclass
class Candidate:
    """One candidate of a generation response."""

    channel_content: List[ChannelMessage] = field(default_factory=list)
    finish_reason: Optional[str] = None
    index: int = 0
    function_calls: List[FunctionCall] = field(default_factory=list)

    def text(self, channel: Channel = Channel.FINAL) -> str:
        """Concatenate the non-marker content of one channel."""
        return "".join(
            msg.content
            for msg in self.channel_content
            if msg.channel == channel and not msg.is_marker
        )


@dataclass
class GenerationResponse:
    """Response (or one streamed delta) from a content generator."""

    candidates: List[Candidate] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Final-channel text of the first candidate."""
        if not self.candidates:
            return ""
        return self.candidates[0].text(Channel.FINAL)
