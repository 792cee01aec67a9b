"""Once-per-process model listing cache.

Each ``(backend id, base URL)`` pair is fetched at most once for the
lifetime of the cache object, whether the fetch succeeds or not.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

import httpx

from ..performance.types import BackendDescriptor
from .base import build_models_url

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


def _parse_model_ids(data) -> List[str]:
    if not isinstance(data, dict):
        return []
    if isinstance(data.get("data"), list):
        return [str(m["id"]) for m in data["data"] if isinstance(m, dict) and "id" in m]
    if isinstance(data.get("models"), list):
        return [str(m["name"]) for m in data["models"] if isinstance(m, dict) and "name" in m]
    return []


class ModelDiscoveryCache:
    """Remembers which backends have had their model listing fetched."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout
        self._transport = transport
        self._fetched: Set[CacheKey] = set()
        self._models: Dict[CacheKey, List[str]] = {}

    @staticmethod
    def key(backend: BackendDescriptor) -> CacheKey:
        return (backend.id, backend.base_url)

    def fetched(self, backend: BackendDescriptor) -> bool:
        return self.key(backend) in self._fetched

    def models(self, backend: BackendDescriptor) -> List[str]:
        return list(self._models.get(self.key(backend), []))

    async def ensure_fetched(
        self, backend: BackendDescriptor, api_key: Optional[str] = None
    ) -> List[str]:
        """Fetch the backend's model listing unless already attempted.

        Never raises; failures are logged and leave an empty listing.
        """
        key = self.key(backend)
        if key in self._fetched:
            return self.models(backend)
        self._fetched.add(key)

        headers = {}
        params = None
        if backend.protocol == "structured":
            url = f"{backend.base_url.rstrip('/')}/models"
            if api_key:
                params = {"key": api_key}
        else:
            url = build_models_url(backend.base_url)
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers, params=params)
            response.raise_for_status()
            models = _parse_model_ids(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Model discovery failed for {backend.id}: {e}")
            return []

        self._models[key] = models
        logger.debug(f"Discovered {len(models)} models for {backend.id}")
        return list(models)

    def clear(self) -> None:
        self._fetched.clear()
        self._models.clear()
