"""Channel message types and the adapter interface.

A ChannelMessage is one semantically tagged fragment of model output:

- analysis: hidden reasoning / thought
- commentary: narration about a tool invocation
- final: user-facing answer text
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional


class Channel(Enum):
    """Semantic output channels."""

    ANALYSIS = "analysis"
    COMMENTARY = "commentary"
    FINAL = "final"


class Marker(Enum):
    """Start-of-channel markers emitted once per stream."""

    REASONING = "👽"
    COMMENTARY = "👓"


# Marker that opens each non-final channel
CHANNEL_MARKERS = {
    Channel.ANALYSIS: Marker.REASONING,
    Channel.COMMENTARY: Marker.COMMENTARY,
}


@dataclass(frozen=True)
class ChannelMessage:
    """One fragment of normalized model output.

    Attributes:
        channel: Channel the fragment belongs to
        content: Text of the fragment
        marker: Set only on marker messages, which open a channel
    """

    channel: Channel
    content: str
    marker: Optional[Marker] = None

    @property
    def is_marker(self) -> bool:
        return self.marker is not None

    @classmethod
    def marker_for(cls, channel: Channel) -> "ChannelMessage":
        """Build the marker message that opens ``channel``."""
        marker = CHANNEL_MARKERS[channel]
        return cls(channel=channel, content=f"{marker.value} ", marker=marker)

    def to_dict(self) -> dict:
        data = {"channel": self.channel.value, "content": self.content}
        if self.marker is not None:
            data["marker"] = self.marker.value
        return data


def serialize_chunk(chunk: Any) -> str:
    """Serialize an arbitrary chunk to text, never raising."""
    try:
        return json.dumps(chunk, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(chunk)


class ChannelAdapter(ABC):
    """Converts one wire shape into channel messages.

    ``detect`` decides whether the adapter understands a raw chunk,
    ``extract`` converts a detected chunk, and ``fallback`` is the last
    resort conversion for anything else.
    """

    name: str = "adapter"

    @abstractmethod
    def detect(self, chunk: Any) -> bool:
        """Return True if this adapter understands ``chunk``."""

    @abstractmethod
    def extract(self, chunk: Any) -> List[ChannelMessage]:
        """Convert a detected chunk to channel messages."""

    def fallback(self, chunk: Any) -> List[ChannelMessage]:
        return [ChannelMessage(Channel.FINAL, str(chunk))]
