"""Multi-backend content generation gateway.

This package turns one backend-agnostic request into the right wire call
for whichever backend is selected, and fails over across backends:

- Chat-completion, structured-turn and reasoning-responses generators
- Incremental SSE decoding into analysis/commentary/final channels
- Tool-call reassembly from streamed fragments
- Performance-weighted failover across the backend pool

Example usage:
    from wren_llm.gateway import FailoverContentGenerator, GenerationRequest, Turn

    generator = FailoverContentGenerator.from_config()
    request = GenerationRequest(turns=[Turn.user("Hello")])
    response = await generator.generate_content(request)
    print(response.text)
"""

from .base import (
    BackendHealth,
    ContentGenerator,
    GeneratorCapabilities,
    HealthStatus,
    HttpContentGenerator,
    build_models_url,
    estimate_tokens,
)
from .chat import ChatCompletionGenerator
from .errors import (
    AllBackendsExhausted,
    AuthenticationError,
    BackendError,
    GenerationAborted,
    GenerationError,
    NetworkError,
    NoBackendAvailable,
    ProtocolError,
    RateLimitError,
    UnsupportedOperation,
)
from .factory import create_generator
from .failover import FailoverContentGenerator
from .model_cache import ModelDiscoveryCache
from .responses import ReasoningGenerator
from .streaming import PendingToolCall, StreamDecodeContext
from .structured import StructuredTurnGenerator
from .types import (
    Candidate,
    FunctionCall,
    FunctionResponse,
    GenerationRequest,
    GenerationResponse,
    Part,
    SamplingConfig,
    Turn,
)

__all__ = [
    # Types
    "Candidate",
    "FunctionCall",
    "FunctionResponse",
    "GenerationRequest",
    "GenerationResponse",
    "Part",
    "SamplingConfig",
    "Turn",
    # Errors
    "GenerationError",
    "NetworkError",
    "BackendError",
    "RateLimitError",
    "AuthenticationError",
    "ProtocolError",
    "UnsupportedOperation",
    "GenerationAborted",
    "NoBackendAvailable",
    "AllBackendsExhausted",
    # Base
    "ContentGenerator",
    "HttpContentGenerator",
    "GeneratorCapabilities",
    "BackendHealth",
    "HealthStatus",
    "build_models_url",
    "estimate_tokens",
    # Streaming
    "StreamDecodeContext",
    "PendingToolCall",
    # Generators
    "ChatCompletionGenerator",
    "StructuredTurnGenerator",
    "ReasoningGenerator",
    "create_generator",
    # Failover
    "FailoverContentGenerator",
    "ModelDiscoveryCache",
]
