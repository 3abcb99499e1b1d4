import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("QA_MODE", "true")
    monkeypatch.setenv("SESSION_STORE_BACKEND", "memory")


@pytest.fixture(autouse=True)
def _reset_shared_state():
    from orchestrator.session import repository
    from orchestrator.session.registry import runtime_registry

    runtime_registry.clear()
    repository._shared_memory_records.clear()
    yield
    runtime_registry.clear()
    repository._shared_memory_records.clear()


class FakeClock:
    """Wall clock for the store and monotonic clock for the monitor, moved by hand."""

    def __init__(self):
        self.now = datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
        self.mono = 1000.0

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)
        self.mono += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def records() -> dict:
    return {}


@pytest.fixture
def repo(records):
    from orchestrator.session.repository import InMemorySessionRepository

    return InMemorySessionRepository("interview-session-v2:pytest", records=records)


@pytest.fixture
def store(repo, clock):
    from orchestrator.session.store import SessionStore

    return SessionStore(repo, now_fn=clock)


@pytest.fixture
def runtime(repo, clock):
    from orchestrator.session.runtime import InterviewRuntime

    rt = InterviewRuntime("pytest", repository=repo, now_fn=clock, clock=clock.monotonic)
    yield rt
    rt.close()
