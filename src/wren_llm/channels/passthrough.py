"""Last-resort adapter: any chunk becomes one final-channel message."""

from typing import Any, List

from .types import Channel, ChannelAdapter, ChannelMessage, serialize_chunk


class PassthroughAdapter(ChannelAdapter):
    """Always matches; serializes the chunk verbatim."""

    name = "passthrough"

    def detect(self, chunk: Any) -> bool:
        return True

    def extract(self, chunk: Any) -> List[ChannelMessage]:
        return [ChannelMessage(Channel.FINAL, serialize_chunk(chunk))]

    def fallback(self, chunk: Any) -> List[ChannelMessage]:
        return self.extract(chunk)
