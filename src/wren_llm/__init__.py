"""wren-llm - multi-backend content generation with weighted failover.

Usage:
    from wren_llm import FailoverContentGenerator, GenerationRequest, Turn

    generator = FailoverContentGenerator.from_config()
    stream = await generator.generate_content_stream(
        GenerationRequest(turns=[Turn.user("Explain this stack trace")])
    )
    async for delta in stream:
        print(delta.text, end="")
"""

from wren_llm.channels import AdapterChain, Channel, ChannelMessage
from wren_llm.gateway import (
    AllBackendsExhausted,
    ContentGenerator,
    FailoverContentGenerator,
    GenerationError,
    GenerationRequest,
    GenerationResponse,
    SamplingConfig,
    Turn,
)
from wren_llm.performance import BackendStore, PerformanceTracker
from wren_llm.unified_config import get_config

__version__ = "0.1.0"

__all__ = [
    "AdapterChain",
    "Channel",
    "ChannelMessage",
    "ContentGenerator",
    "FailoverContentGenerator",
    "GenerationRequest",
    "GenerationResponse",
    "SamplingConfig",
    "Turn",
    "GenerationError",
    "AllBackendsExhausted",
    "BackendStore",
    "PerformanceTracker",
    "get_config",
]
