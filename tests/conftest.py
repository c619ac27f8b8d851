"""
Pytest fixtures and test doubles for mindnote tests.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from mindnote.config import ProcessingConfig
from mindnote.orchestrator import ThoughtOrchestrator
from mindnote.storage.memory import InMemoryDocumentStore
from mindnote.storage.repositories import EnrollmentRepository, ThoughtRepository
from mindnote.types import ProviderResult, Thought, TokenUsage

USER_ID = "user-1"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


class FakeProvider:
    """AI provider that returns canned actions."""

    def __init__(self):
        self.actions = []
        self.usage = TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150)
        self.error = None
        self.delay = 0.0
        self.calls = []

    async def propose(self, thought_text, context, tool_guidance):
        self.calls.append(
            {"thought_text": thought_text, "context": context, "tool_guidance": tool_guidance}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProviderResult(
            actions=[dict(a) for a in self.actions],
            usage=self.usage,
            raw_prompt=f"Thought: {thought_text}",
            raw_response=json.dumps({"actions": self.actions}),
        )


class RecordingInteractionLogger:
    def __init__(self, fail: bool = False):
        self.entries = []
        self.fail = fail

    async def log(self, user_id, thought_id, trigger, prompt, raw_response, actions,
                  tool_spec_ids, usage=None, error=None):
        if self.fail:
            raise RuntimeError("log store unavailable")
        self.entries.append(
            {
                "user_id": user_id,
                "thought_id": thought_id,
                "trigger": trigger,
                "actions": actions,
                "tool_spec_ids": tool_spec_ids,
                "usage": usage,
                "error": error,
            }
        )
        return f"log-{len(self.entries)}"


class RecordingUsageTracker:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    async def increment_usage(self, user_id):
        self.calls.append(user_id)
        if self.fail:
            raise RuntimeError("billing unavailable")


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Keep log files inside the test's temp directory."""
    monkeypatch.setenv("MINDNOTE_DATA_DIR", str(tmp_path / "data"))
    return tmp_path / "data"


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def config():
    return ProcessingConfig(max_processing_per_day=5, max_reprocess_count=2)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def interaction_logger():
    return RecordingInteractionLogger()


@pytest.fixture
def usage_tracker():
    return RecordingUsageTracker()


@pytest.fixture
def orchestrator(store, provider, config, clock, interaction_logger, usage_tracker):
    return ThoughtOrchestrator(
        store,
        provider,
        config=config,
        interaction_logger=interaction_logger,
        usage_tracker=usage_tracker,
        now=clock,
        schedule_jobs=False,
    )


@pytest.fixture
def pro_user(store):
    """A registered user on an active pro subscription, enrolled in the base tool."""
    store.set(f"accounts/{USER_ID}", {"isAnonymous": False})
    store.set(
        f"users/{USER_ID}/subscription/status",
        {"tier": "pro", "status": "active", "entitlements": {}},
    )
    EnrollmentRepository(store).enroll(USER_ID, "thoughts")
    return USER_ID


@pytest.fixture
def make_thought(store):
    """Factory that persists a thought for USER_ID and returns it."""
    repo = ThoughtRepository(store)
    counter = {"n": 0}

    def _make(text="had coffee w/ sar", tags=None, user_id=USER_ID, **fields):
        counter["n"] += 1
        thought = Thought(id=fields.pop("id", f"t{counter['n']}"), text=text, tags=list(tags or []), **fields)
        repo.save(user_id, thought)
        return thought

    return _make


@pytest.fixture
def thoughts(store):
    return ThoughtRepository(store)
