"""Shared fixtures for all tests."""

import pytest
from fastapi.testclient import TestClient

from qwen_gateway.config import Settings
from qwen_gateway.main import create_app
from qwen_gateway.schemas import GeneratedText


class FakeUpstream:
    """Records every conversation it is asked to complete."""

    def __init__(self, result=None, error=None):
        self.result = result or GeneratedText(text="Hello from Qwen", model="qwen-test")
        self.error = error
        self.calls = []
        self.closed = False

    async def complete(self, conversation):
        self.calls.append(list(conversation))
        if self.error is not None:
            raise self.error
        return self.result

    async def aclose(self):
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        QWEN_API_URL="https://qwen.test",
        QWEN_API_KEY="test-key",
        QWEN_MODEL="qwen-test",
        RATE_LIMIT_MAX=0,
    )


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def client(settings, fake_upstream):
    app = create_app(settings, upstream=fake_upstream)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def upstream_factory():
    """Build a FakeUpstream with a given result or error."""
    return FakeUpstream
