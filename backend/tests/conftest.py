"""Pytest configuration and fixtures."""

import json
import os
import secrets
import tempfile

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="mindnote-test-")

os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
os.environ.setdefault("DATABASE_PATH", os.path.join(_TEST_DATA_DIR, "mindnote.db"))
os.environ.setdefault("MINDNOTE_DATA_DIR", _TEST_DATA_DIR)

from app.main import app  # noqa: E402
from app.processing import get_orchestrator  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from mindnote.config import ProcessingConfig  # noqa: E402
from mindnote.orchestrator import ThoughtOrchestrator  # noqa: E402
from mindnote.storage import InMemoryDocumentStore  # noqa: E402
from mindnote.storage.repositories import EnrollmentRepository  # noqa: E402
from mindnote.types import ProviderResult, TokenUsage  # noqa: E402

TEST_USER_ID = "usr_TEST_ONLY_000000"


class ScriptedProvider:
    """AI provider returning whatever actions the test sets."""

    def __init__(self):
        self.actions = []
        self.error = None

    async def propose(self, thought_text, context, tool_guidance):
        if self.error is not None:
            raise self.error
        return ProviderResult(
            actions=[dict(a) for a in self.actions],
            usage=TokenUsage(prompt_tokens=20, completion_tokens=10, total_tokens=30),
            raw_prompt=thought_text,
            raw_response=json.dumps({"actions": self.actions}),
        )


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def orchestrator(store, provider):
    config = ProcessingConfig(max_processing_per_day=3, min_processing_interval_seconds=0)
    return ThoughtOrchestrator(store, provider, config=config, schedule_jobs=False)


@pytest.fixture
def client(orchestrator):
    """Create a test client backed by an in-memory orchestrator."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Create auth headers with a test token."""
    from app.auth import create_access_token
    from app.config import get_settings

    settings = get_settings()
    # Use clearly invalid test ID that cannot collide with production IDs
    token = create_access_token(TEST_USER_ID, settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_id():
    return TEST_USER_ID


@pytest.fixture
def pro_user(store):
    """Give the test user an active pro subscription and the base tool."""
    store.set(
        f"users/{TEST_USER_ID}/subscription/status",
        {"tier": "pro", "status": "active"},
    )
    EnrollmentRepository(store).enroll(TEST_USER_ID, "thoughts")
    return TEST_USER_ID
