"""Backend descriptor and performance statistics types.

One BackendDescriptor per configured backend, persisted as a JSON object in
the backend store. Timestamps are ISO 8601 strings in UTC.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Wire protocol families a backend may speak
PROTOCOLS = ("chat", "structured", "responses")

DEFAULT_WEIGHT = 1.0


def utc_now() -> str:
    """Current time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PerformanceStats:
    """Rolling performance statistics for one backend.

    Attributes:
        success_count: Number of successful attempts
        failure_count: Number of failed attempts
        total_requests: success_count + failure_count
        avg_latency_ms: Exponential moving average of attempt latency
        avg_tokens_per_second: Exponential moving average of throughput
        error_rate: failure_count / total_requests
        last_used: Timestamp of the most recent attempt
        last_success: Timestamp of the most recent success
        last_failure: Timestamp of the most recent failure
    """

    success_count: int = 0
    failure_count: int = 0
    total_requests: int = 0
    avg_latency_ms: float = 0.0
    avg_tokens_per_second: float = 0.0
    error_rate: float = 0.0
    last_used: Optional[str] = None
    last_success: Optional[str] = None
    last_failure: Optional[str] = None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.success_count / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PerformanceStats":
        data = data or {}
        return cls(
            success_count=int(data.get("success_count", 0)),
            failure_count=int(data.get("failure_count", 0)),
            total_requests=int(data.get("total_requests", 0)),
            avg_latency_ms=float(data.get("avg_latency_ms", 0.0)),
            avg_tokens_per_second=float(data.get("avg_tokens_per_second", 0.0)),
            error_rate=float(data.get("error_rate", 0.0)),
            last_used=data.get("last_used"),
            last_success=data.get("last_success"),
            last_failure=data.get("last_failure"),
        )


@dataclass
class BackendDescriptor:
    """A configured backend plus its performance record.

    ``api_key_ref`` names a credential (an environment variable or a
    provider name resolved through the keychain); the key itself is never
    stored.
    """

    id: str
    base_url: str
    api_key_ref: str = ""
    protocol: str = "chat"
    model: str = ""
    enabled: bool = True
    weight: float = DEFAULT_WEIGHT
    stats: PerformanceStats = field(default_factory=PerformanceStats)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def __post_init__(self):
        if self.protocol not in PROTOCOLS:
            raise ValueError(
                f"Unknown protocol '{self.protocol}' for backend '{self.id}'. "
                f"Expected one of {PROTOCOLS}"
            )

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["stats"] = self.stats.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackendDescriptor":
        now = utc_now()
        return cls(
            id=data["id"],
            base_url=data.get("base_url", ""),
            api_key_ref=data.get("api_key_ref", ""),
            protocol=data.get("protocol", "chat"),
            model=data.get("model", ""),
            enabled=bool(data.get("enabled", True)),
            weight=float(data.get("weight", DEFAULT_WEIGHT)),
            stats=PerformanceStats.from_dict(data.get("stats")),
            created_at=data.get("created_at") or now,
            updated_at=data.get("updated_at") or now,
        )
