"""Shared fixtures for testing."""

import os

# Set test environment variables before llm_shield.config is imported
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("LLM_SHIELD_LOG_LEVEL", "DEBUG")
os.environ.setdefault("LLM_SHIELD_LOG_JSON", "false")

import pytest

from llm_shield.counters import InMemoryCounterStore
from llm_shield.observability.instrumentation import EventBus

from tests.fakes import FakeClock, FakeDateClock, RecordingSink


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def date_clock():
    return FakeDateClock()


@pytest.fixture
def store(clock):
    return InMemoryCounterStore(namespace="test", clock=clock)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def sink():
    return RecordingSink()
