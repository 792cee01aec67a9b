"""Shared test configuration and fixtures."""
import pytest

from wren_llm.config import PROVIDER_KEY_ENV_VARS

# =============================================================================
# Environment Reset
# =============================================================================

WREN_ENV_VARS = (
    "WREN_CONFIG",
    "WREN_MAX_ATTEMPTS",
    "WREN_REQUEST_TIMEOUT",
    "WREN_MODEL",
    "WREN_STORE_PATH",
)


@pytest.fixture(autouse=True)
def reset_env(monkeypatch):
    """Clear environment variables before each test."""
    for name in WREN_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in PROVIDER_KEY_ENV_VARS.values():
        monkeypatch.delenv(name, raising=False)
    # Never touch the real keychain from tests
    monkeypatch.setenv("PYTHON_KEYRING_BACKEND", "keyring.backends.fail.Keyring")


# =============================================================================
# SSE helpers
# =============================================================================


def sse_body(*payloads: str) -> bytes:
    """Encode payload strings as ``data:`` lines of an SSE body."""
    return "".join(f"data: {payload}\n\n" for payload in payloads).encode("utf-8")


@pytest.fixture
def sse():
    return sse_body


# =============================================================================
# Custom Pytest Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
