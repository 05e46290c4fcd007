# tests/conftest.py
import pytest

from scripts.course_analytics.fetcher import PagedFetcher, RetryPolicy
from tests.fakes import FakeSession, InMemorySink


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_fetcher(sleeps):
    def _make(handler, max_attempts=3, base_delay=1.0):
        session = FakeSession(handler)
        fetcher = PagedFetcher(
            session=session,
            retry=RetryPolicy(max_attempts=max_attempts, base_delay=base_delay),
            sleep=sleeps.append,
        )
        return fetcher, session
    return _make


@pytest.fixture
def sink():
    return InMemorySink()
