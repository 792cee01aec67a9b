"""Per-connection decode state for streaming generators.

A StreamDecodeContext lives exactly as long as one open stream. It owns:

- the line buffer used to split incoming text into complete SSE lines
- the marker-once flags for the analysis and commentary channels
- the tool-call accumulator, keyed by the call index declared on the wire

Nothing here is shared between streams, so concurrent requests never
contend on marker flags or tool-call buffers.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..channels.types import Channel, ChannelMessage
from .types import Candidate, FunctionCall, GenerationResponse

logger = logging.getLogger(__name__)

# SSE event-frame prefix
DATA_PREFIX = "data:"

# Chat-completion terminal sentinel
DONE_SENTINEL = "[DONE]"

# Chat finish reasons mapped onto the normalized vocabulary
FINISH_REASONS = {
    "stop": "STOP",
    "tool_calls": "STOP",
    "function_call": "STOP",
    "length": "MAX_TOKENS",
    "content_filter": "SAFETY",
}


def normalize_finish_reason(reason: Optional[str]) -> Optional[str]:
    if not reason:
        return None
    return FINISH_REASONS.get(reason, reason.upper())


def data_payload(line: str) -> Optional[str]:
    """Return the payload of an SSE ``data:`` line, or None for other lines."""
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):].strip()
    return payload or None


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Parse a tool-call argument string; anything invalid becomes ``{}``."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Discarding malformed tool-call arguments: {str(raw)[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


@dataclass
class PendingToolCall:
    """A tool call being reassembled from streamed fragments."""

    id: Optional[str] = None
    name: Optional[str] = None
    args_buffer: str = ""

    def to_function_call(self) -> FunctionCall:
        return FunctionCall(
            name=self.name or "unknown_function",
            args=parse_arguments(self.args_buffer),
            id=self.id,
        )


@dataclass
class StreamDecodeContext:
    """Decode state for one open stream."""

    line_buffer: str = ""
    reasoning_marker_emitted: bool = False
    commentary_marker_emitted: bool = False
    pending_tool_calls: Dict[int, PendingToolCall] = field(default_factory=dict)
    finished: bool = False

    def feed(self, text: str) -> List[str]:
        """Append raw text and return the complete lines it produced.

        The trailing incomplete line stays buffered for the next read.
        """
        self.line_buffer += text
        *lines, self.line_buffer = self.line_buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def drain(self) -> List[str]:
        """Return whatever is left in the buffer once the connection closes."""
        rest, self.line_buffer = self.line_buffer, ""
        return [rest.rstrip("\r")] if rest.strip() else []

    def mark(self, messages: Iterable[ChannelMessage]) -> List[ChannelMessage]:
        """Drop empty fragments and insert channel markers once per stream."""
        marked: List[ChannelMessage] = []
        for message in messages:
            if not message.content:
                continue
            if message.channel == Channel.ANALYSIS and not self.reasoning_marker_emitted:
                marked.append(ChannelMessage.marker_for(Channel.ANALYSIS))
                self.reasoning_marker_emitted = True
            elif message.channel == Channel.COMMENTARY and not self.commentary_marker_emitted:
                marked.append(ChannelMessage.marker_for(Channel.COMMENTARY))
                self.commentary_marker_emitted = True
            marked.append(message)
        return marked

    def accumulate_tool_call(self, fragment: Dict[str, Any]) -> None:
        """Merge one tool-call delta into the buffer for its index.

        Accepts the chat wire shape ``{index, id, function: {name, arguments}}``
        as well as the flat ``{index, name, args}`` shape. Name fragments are
        concatenated, except that a fragment repeating the call's ``id``
        together with the complete accumulated name is a re-announcement of
        the same call and adds nothing.
        """
        index = fragment.get("index", 0)
        if not isinstance(index, int):
            index = 0
        pending = self.pending_tool_calls.setdefault(index, PendingToolCall())

        call_id = str(fragment["id"]) if fragment.get("id") else None
        announced_again = call_id is not None and call_id == pending.id
        if call_id and not pending.id:
            pending.id = call_id

        function = fragment.get("function")
        if not isinstance(function, dict):
            function = {}

        name = function.get("name") or fragment.get("name")
        if name:
            if pending.name is None:
                pending.name = str(name)
            elif not (announced_again and pending.name == name):
                pending.name += str(name)

        args = function.get("arguments")
        if args is None:
            args = fragment.get("args")
        if isinstance(args, dict):
            args = json.dumps(args)
        if args:
            pending.args_buffer += str(args)

    def finalize_tool_calls(self) -> List[FunctionCall]:
        """Turn every pending call into a FunctionCall and clear the buffers."""
        calls = [
            self.pending_tool_calls[index].to_function_call()
            for index in sorted(self.pending_tool_calls)
        ]
        self.pending_tool_calls.clear()
        return calls

    def finish(self) -> None:
        """Terminal sentinel observed: reset markers and stop decoding."""
        self.reasoning_marker_emitted = False
        self.commentary_marker_emitted = False
        self.finished = True


def delta_response(
    messages: List[ChannelMessage],
    function_calls: Optional[List[FunctionCall]] = None,
    finish_reason: Optional[str] = None,
    index: int = 0,
) -> GenerationResponse:
    """Wrap one tick of streamed output as a partial response."""
    return GenerationResponse(
        candidates=[
            Candidate(
                channel_content=messages,
                finish_reason=finish_reason,
                index=index,
                function_calls=function_calls or [],
            )
        ]
    )
