"""JSON file store for backend descriptors.

The store is a single JSON document:

    {"backends": [{"id": ..., "base_url": ..., "stats": {...}}, ...]}

Every mutation is a whole-file read-modify-write finished by an atomic
rename, so readers see either the old or the new document, never a partial
one. Concurrent writers are last-writer-wins.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..config import DEFAULT_STORE_PATH
from .types import DEFAULT_WEIGHT, BackendDescriptor, PerformanceStats, utc_now

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _parse_document(data: Any, source: PathLike) -> List[BackendDescriptor]:
    if not isinstance(data, dict) or not isinstance(data.get("backends"), list):
        raise ValueError(f"Invalid backend store format in {source}. Expected {{\"backends\": [...]}}")
    backends = []
    for entry in data["backends"]:
        try:
            backends.append(BackendDescriptor.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed backend entry in {source}: {e}")
    return backends


def _atomic_write(path: Path, document: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as temp_f:
            json.dump(document, temp_f, indent=2)
            temp_f.flush()
            os.fsync(temp_f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


class BackendStore:
    """CRUD access to the persisted backend pool."""

    def __init__(self, path: Optional[PathLike] = None):
        self.path = Path(path) if path is not None else DEFAULT_STORE_PATH

    def load_all(self) -> List[BackendDescriptor]:
        """Read every backend. A missing or unreadable store is an empty pool."""
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return _parse_document(data, self.path)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read backend store {self.path}: {e}")
            return []

    def save_all(self, backends: List[BackendDescriptor]) -> None:
        _atomic_write(self.path, {"backends": [b.to_dict() for b in backends]})
        logger.debug(f"Wrote {len(backends)} backends to {self.path}")

    def get(self, backend_id: str) -> Optional[BackendDescriptor]:
        for backend in self.load_all():
            if backend.id == backend_id:
                return backend
        return None

    def create(
        self,
        backend_id: str,
        base_url: str,
        api_key_ref: str = "",
        protocol: str = "chat",
        model: str = "",
        enabled: bool = True,
    ) -> BackendDescriptor:
        """Register a new backend with zeroed stats and the default weight.

        Raises:
            ValueError: If a backend with this id already exists.
        """
        backends = self.load_all()
        if any(b.id == backend_id for b in backends):
            raise ValueError(f"Backend '{backend_id}' already exists")

        backend = BackendDescriptor(
            id=backend_id,
            base_url=base_url,
            api_key_ref=api_key_ref,
            protocol=protocol,
            model=model,
            enabled=enabled,
            weight=DEFAULT_WEIGHT,
            stats=PerformanceStats(),
        )
        backends.append(backend)
        self.save_all(backends)
        logger.info(f"Registered backend {backend_id} ({protocol} at {base_url})")
        return backend

    def update(self, backend_id: str, **changes: Any) -> Optional[BackendDescriptor]:
        """Apply field changes to one backend; returns None if it is unknown."""
        backends = self.load_all()
        for backend in backends:
            if backend.id != backend_id:
                continue
            for name, value in changes.items():
                if name in ("id", "created_at") or not hasattr(backend, name):
                    raise ValueError(f"Cannot update field '{name}' of backend '{backend_id}'")
                setattr(backend, name, value)
            backend.touch()
            self.save_all(backends)
            return backend
        return None

    def upsert(self, backend: BackendDescriptor) -> None:
        """Replace the stored entry with the same id, or append it."""
        backends = self.load_all()
        for position, existing in enumerate(backends):
            if existing.id == backend.id:
                backends[position] = backend
                break
        else:
            backends.append(backend)
        self.save_all(backends)

    def delete(self, backend_id: str) -> bool:
        backends = self.load_all()
        remaining = [b for b in backends if b.id != backend_id]
        if len(remaining) == len(backends):
            return False
        self.save_all(remaining)
        return True

    def enable(self, backend_id: str) -> bool:
        return self.update(backend_id, enabled=True) is not None

    def disable(self, backend_id: str) -> bool:
        return self.update(backend_id, enabled=False) is not None

    def by_weight(self) -> List[BackendDescriptor]:
        """All backends, heaviest first."""
        return sorted(self.load_all(), key=lambda b: b.weight, reverse=True)

    def export_to(self, path: PathLike) -> int:
        backends = self.load_all()
        _atomic_write(Path(path), {"backends": [b.to_dict() for b in backends]})
        return len(backends)

    def import_from(self, path: PathLike) -> int:
        """Replace the store with the backends in ``path``.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
            ValueError: If the file is not a ``{"backends": [...]}`` document.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        backends = _parse_document(data, path)
        for backend in backends:
            backend.updated_at = utc_now()
        self.save_all(backends)
        logger.info(f"Imported {len(backends)} backends from {path}")
        return len(backends)
