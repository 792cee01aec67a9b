"""Ordered adapter chain with a guaranteed non-empty result.

Adapters are tried in fixed priority order, most specific wire shape first:

    R1 chat delta -> structured turn -> passthrough

The order matters on ambiguous input (a dict carrying both ``choices`` and
``candidates`` is claimed by the R1 adapter).
"""

import logging
from typing import Any, List, Optional, Sequence

from .passthrough import PassthroughAdapter
from .r1 import R1Adapter
from .structured import StructuredTurnAdapter
from .types import Channel, ChannelAdapter, ChannelMessage, serialize_chunk

logger = logging.getLogger(__name__)


def default_adapters() -> List[ChannelAdapter]:
    """Return a fresh list of the built-in adapters in priority order."""
    return [R1Adapter(), StructuredTurnAdapter(), PassthroughAdapter()]


class AdapterChain:
    """Runs raw frames through the first adapter that detects them.

    ``adapt`` never raises and never returns an empty list. A frame that is
    recognized but carries no payload yields a single empty final message.
    """

    def __init__(self, adapters: Optional[Sequence[ChannelAdapter]] = None):
        self.adapters: List[ChannelAdapter] = list(
            adapters if adapters is not None else default_adapters()
        )

    def adapt(self, chunk: Any) -> List[ChannelMessage]:
        for adapter in self.adapters:
            try:
                if not adapter.detect(chunk):
                    continue
                messages = adapter.extract(chunk)
            except Exception as e:
                logger.warning(f"Adapter {adapter.name} failed, trying next: {e}")
                continue

            if messages:
                return list(messages)
            return [ChannelMessage(Channel.FINAL, "")]

        return [ChannelMessage(Channel.FINAL, serialize_chunk(chunk))]
