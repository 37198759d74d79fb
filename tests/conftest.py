import json
import os
import sys
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient


# Ensure `import backend.jobdesk...` works regardless of where pytest is run from.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Must be set before backend.jobdesk.config is imported anywhere.
os.environ["DISABLE_DOTENV"] = "1"
# Ensure tests never call a real provider even if the developer machine has keys set.
os.environ["AI_API_KEYS"] = ""
os.environ["AI_API_KEY"] = ""
os.environ["SCORE_CACHE_BACKEND"] = "memory"
os.environ["ADMIN_TOKEN"] = ""


def completion_payload(content: str, **extra) -> dict:
    body = {
        "id": "cmpl-test",
        "model": "deepseek-ai/DeepSeek-V3",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }
    body.update(extra)
    return body


class FakeProvider:
    """
    httpx MockTransport backend for the chat-completions endpoint.

    `script` maps a key secret to a list of responses consumed in order; each item is an
    httpx.Response, an exception instance to raise, or a str (turned into a 200 completion).
    The last item repeats once the list is exhausted.
    """

    def __init__(self, script: dict[str, list] | None = None, default=None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.default = default
        self.calls: list[dict] = []

    def _next(self, key: str):
        items = self.script.get(key)
        if not items:
            return self.default
        return items.pop(0) if len(items) > 1 else items[0]

    def handler(self, request: httpx.Request) -> httpx.Response:
        key = request.headers.get("authorization", "").removeprefix("Bearer ")
        self.calls.append({"key": key, "url": str(request.url), "json": json.loads(request.content or b"{}")})
        item = self._next(key)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        if item is None:
            return httpx.Response(500, text="no scripted response")
        return httpx.Response(200, json=completion_payload(str(item)))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def keys_used(self) -> list[str]:
        return [c["key"] for c in self.calls]


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture()
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def make_gateway():
    from backend.jobdesk.services.key_rotation import Credential, KeyRotationGateway

    def _make(*specs) -> KeyRotationGateway:
        """specs: (name, priority, max_errors) tuples; the secret is 'sk-<name>'."""
        creds = [
            Credential(secret=f"sk-{name}", name=name, priority=priority, max_errors=max_errors)
            for name, priority, max_errors in specs
        ]
        return KeyRotationGateway(creds)

    return _make


@pytest.fixture()
def make_client(sleep_recorder):
    from backend.jobdesk.services.ai_client import RetryingCompletionClient

    def _make(gateway, provider: FakeProvider, **kwargs) -> RetryingCompletionClient:
        return RetryingCompletionClient(
            gateway,
            base_url="https://llm.test/v1",
            transport=provider.transport,
            sleep=sleep_recorder,
            **kwargs,
        )

    return _make


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def app(make_gateway, make_client, provider, clock) -> FastAPI:
    """
    FastAPI app wired to a two-key gateway, the FakeProvider and an in-memory score cache.
    Startup hooks do not run unless the TestClient is used as a context manager.
    """
    from backend.jobdesk.main import Services, create_app
    from backend.jobdesk.services.score_cache import InMemoryCacheStore, ScoreResultCache

    gateway = make_gateway(("primary", 1, 3), ("backup", 2, 3))
    services = Services(
        gateway=gateway,
        completion_client=make_client(gateway, provider),
        score_cache=ScoreResultCache(InMemoryCacheStore(), clock=clock),
    )
    return create_app(services, admin_token="admin-secret")


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def admin_headers() -> dict:
    return {"X-Admin-Token": "admin-secret"}
