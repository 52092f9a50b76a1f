"""Shared fixtures: temporary SQLite store, fake clock and fake Ollama client."""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
import pytest_asyncio

from mise.config import Settings
from mise.errors import BackendError
from mise.models import Fragment
from mise.router import AIRouter
from mise.session_cache import SessionCache
from mise.session_store import SessionStore


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeGenerationClient:
    """Stands in for OllamaClient; records every call it receives."""

    def __init__(
        self,
        response: str = "Sure, here you go",
        fragments: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        fail_after: Optional[int] = None,
    ):
        self.response = response
        self.fragments = fragments if fragments is not None else ["Sure", ", ", "here", " you go"]
        self.error = error
        self.fail_after = fail_after
        self.calls = []
        self.stream_closed = False
        self.closed = False

    async def generate(self, model: str, prompt: str) -> str:
        self.calls.append(("generate", model, prompt))
        if self.error is not None:
            raise self.error
        return self.response

    async def generate_stream(self, model: str, prompt: str):
        self.calls.append(("generate_stream", model, prompt))
        try:
            if self.error is not None and self.fail_after is None:
                raise self.error
            for i, text in enumerate(self.fragments):
                if self.fail_after is not None and i == self.fail_after:
                    raise self.error or BackendError("backend went away")
                yield Fragment(text=text, is_final=i == len(self.fragments) - 1)
        finally:
            self.stream_closed = True

    async def list_models(self) -> List[str]:
        return ["llama3.2:3b", "codellama:7b-instruct"]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(database_path=str(tmp_path / "sessions.db"))


@pytest.fixture
def fake_client():
    return FakeGenerationClient()


@pytest_asyncio.fixture
async def store(tmp_path):
    store = SessionStore(tmp_path / "sessions.db")
    await store.init()
    return store


@pytest_asyncio.fixture
async def cache(store, clock):
    return SessionCache(store, expiry_seconds=30 * 60, interval_seconds=5 * 60, clock=clock)


@pytest_asyncio.fixture
async def router(settings, fake_client, clock):
    router = AIRouter.from_settings(settings, client=fake_client, clock=clock)
    await router.store.init()
    return router
