"""Error taxonomy for content generation.

    GenerationError
    +-- NetworkError          transport failure (retried)
    +-- BackendError          non-2xx HTTP status (retried)
    |   +-- RateLimitError    429
    |   +-- AuthenticationError 401/403
    +-- ProtocolError         unrecognized response shape
    +-- UnsupportedOperation  operation not offered by the backend (not retried)
    +-- GenerationAborted     caller set the request abort signal (not retried)
    +-- NoBackendAvailable    empty or unusable backend pool
    +-- AllBackendsExhausted  retry budget spent (terminal)
"""

from typing import Optional


class GenerationError(Exception):
    """Base class for all content generation errors."""

    retryable: bool = True

    def __init__(self, message: str, backend_id: Optional[str] = None):
        super().__init__(message)
        self.backend_id = backend_id


class NetworkError(GenerationError):
    """Connection or transport failure."""


class BackendError(GenerationError):
    """The backend answered with a non-2xx HTTP status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        body: str = "",
        backend_id: Optional[str] = None,
    ):
        super().__init__(message, backend_id=backend_id)
        self.status_code = status_code
        self.body = body


class RateLimitError(BackendError):
    """The backend rejected the request with 429."""

    def __init__(
        self,
        message: str,
        body: str = "",
        retry_after: Optional[int] = None,
        backend_id: Optional[str] = None,
    ):
        super().__init__(message, status_code=429, body=body, backend_id=backend_id)
        self.retry_after = retry_after


class AuthenticationError(BackendError):
    """The backend rejected the credentials (401/403)."""


class ProtocolError(GenerationError):
    """The response could not be parsed into the expected shape."""


class UnsupportedOperation(GenerationError):
    """The backend does not offer the requested operation."""

    retryable = False


class GenerationAborted(GenerationError):
    """The request's abort signal fired before the call completed."""

    retryable = False


class NoBackendAvailable(GenerationError):
    """No enabled backend could be selected or built."""


class AllBackendsExhausted(GenerationError):
    """Every attempt in the failover budget failed.

    Wraps the last underlying error as ``last_error`` (also chained as
    ``__cause__`` when raised).
    """

    retryable = False

    def __init__(self, last_error: Optional[BaseException], attempts: int):
        message = f"All backends failed after {attempts} attempt(s)"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts
