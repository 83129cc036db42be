# File: tests/conftest.py

import pytest

from core.project_state_manager import ProjectStateManager
from core.retry_policy import RetryPolicy
from core.state_models import FileEntry, UsageAccount
from services.account_store import InMemoryAccountStore
from tests.fakes import SleepRecorder


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleep_recorder):
    return RetryPolicy(sleep=sleep_recorder, jitter=lambda low, high: 0.5)


@pytest.fixture
def account_store():
    return InMemoryAccountStore([UsageAccount(account_id="alice", coins=100)])


@pytest.fixture
def empty_state():
    return ProjectStateManager.create("Bakery", "A site for a small bakery", project_id="p-1")


@pytest.fixture
def seeded_state():
    """A project whose free prompt is already used and which has two files."""
    state = ProjectStateManager.create("Bakery", "A site for a small bakery", project_id="p-2")
    state.project.files = [
        FileEntry("index.html", "<html><body>v1</body></html>"),
        FileEntry("style.css", "body { color: black; }"),
    ]
    state.project.free_prompt_used = True
    return state
