"""Build a ContentGenerator for a backend descriptor.

The backend's ``protocol`` selects the generator class; the credential is
resolved from ``api_key_ref`` at build time and never stored.
"""

import logging
from typing import Callable, Dict, Optional, Type

import httpx

from ..config import get_api_key
from ..performance.types import BackendDescriptor
from .base import ContentGenerator, HttpContentGenerator
from .chat import ChatCompletionGenerator
from .responses import ReasoningGenerator
from .structured import StructuredTurnGenerator

logger = logging.getLogger(__name__)

GENERATOR_CLASSES: Dict[str, Type[HttpContentGenerator]] = {
    "chat": ChatCompletionGenerator,
    "structured": StructuredTurnGenerator,
    "responses": ReasoningGenerator,
}

GeneratorFactory = Callable[[BackendDescriptor], ContentGenerator]


def create_generator(
    backend: BackendDescriptor,
    default_model: str = "",
    timeout: float = 120.0,
    max_output_tokens: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ContentGenerator:
    """Construct the generator for one backend.

    Args:
        backend: Descriptor naming protocol, base URL, model and credential
        default_model: Model used when the descriptor names none
        timeout: Per-request timeout in seconds
        max_output_tokens: Output cap for protocols that require one
        transport: Optional httpx transport (tests)

    Raises:
        ValueError: If the protocol is unknown or no model is configured.
    """
    generator_class = GENERATOR_CLASSES.get(backend.protocol)
    if generator_class is None:
        raise ValueError(f"No generator for protocol '{backend.protocol}' (backend {backend.id})")

    model = backend.model or default_model
    if not model:
        raise ValueError(f"No model configured for backend {backend.id}")

    api_key = get_api_key(backend.api_key_ref) if backend.api_key_ref else None
    if backend.api_key_ref and not api_key:
        logger.warning(f"No credential found for {backend.api_key_ref} (backend {backend.id})")

    kwargs: Dict[str, int] = {}
    if generator_class is ReasoningGenerator and max_output_tokens:
        kwargs["max_output_tokens"] = max_output_tokens

    return generator_class(
        backend_id=backend.id,
        base_url=backend.base_url,
        model=model,
        api_key=api_key,
        default_timeout=timeout,
        transport=transport,
        **kwargs,
    )
