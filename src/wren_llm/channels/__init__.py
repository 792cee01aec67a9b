"""Channel adapters: normalize heterogeneous wire frames.

Example usage:
    from wren_llm.channels import AdapterChain

    chain = AdapterChain()
    chain.adapt({"choices": [{"delta": {"content": "hi"}}]})
    # [ChannelMessage(channel=Channel.FINAL, content='hi', marker=None)]
"""

from .chain import AdapterChain, default_adapters
from .passthrough import PassthroughAdapter
from .r1 import R1Adapter
from .structured import StructuredTurnAdapter
from .types import (
    CHANNEL_MARKERS,
    Channel,
    ChannelAdapter,
    ChannelMessage,
    Marker,
)

__all__ = [
    # Types
    "Channel",
    "ChannelAdapter",
    "ChannelMessage",
    "Marker",
    "CHANNEL_MARKERS",
    # Adapters
    "R1Adapter",
    "StructuredTurnAdapter",
    "PassthroughAdapter",
    # Chain
    "AdapterChain",
    "default_adapters",
]
