import sys
from pathlib import Path

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from qiniu_client.auth import BaseCredentials  # noqa: E402
from qiniu_client.utils.user_agent import set_app_name  # noqa: E402


def pytest_configure(config):
    # Register the asyncio marker so pytest doesn't warn when it's used.
    config.addinivalue_line(
        "markers", "asyncio: mark test to run in an asyncio event loop"
    )
    # Add custom markers for test organization
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "cancellation: mark test as exercising context cancellation"
    )


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Give every test a predictable configuration.

    Clears QINIU_ variables inherited from the environment and restores
    the default User-Agent afterwards.
    """
    for name in ("QINIU_APP_NAME", "QINIU_FOLLOW_REDIRECTS", "QINIU_READ_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("QINIU_LOG_LEVEL", "INFO")

    yield

    set_app_name("")


class FakeCredentials(BaseCredentials):
    """Credentials returning a fixed token and recording signed requests."""

    def __init__(self, token: str = "ak:signature"):
        self.token = token
        self.signed = []

    def sign_request(self, request: httpx.Request) -> str:
        self.signed.append(request)
        return self.token


@pytest.fixture
def credentials():
    """Credentials signing every request as ``ak:signature``."""
    return FakeCredentials()


@pytest.fixture
def recorded_requests():
    """List collecting the requests seen by ``echo_transport``."""
    return []


@pytest.fixture
def echo_transport(recorded_requests):
    """Mock transport answering 200 with an empty JSON object."""

    def handler(request: httpx.Request) -> httpx.Response:
        recorded_requests.append(request)
        return httpx.Response(200, json={})

    return httpx.MockTransport(handler)
