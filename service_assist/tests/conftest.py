"""
Shared fixtures for Assist service tests.
"""

import pytest

from service_assist.app.domain.models import CallerIdentity
from service_assist.app.persistence.memory import InMemoryRecordStore
from shared.metrics import MetricsCollector

from .factories import TOKEN, seed_team


@pytest.fixture
def identity():
    return CallerIdentity(user_id="user-1", handle="user1@example.com")


@pytest.fixture
def store(identity):
    """In-memory store with one seated, subscribed caller and a registered token."""
    store = InMemoryRecordStore()
    seed_team(store)
    store.register_token(TOKEN, identity)
    return store


@pytest.fixture
def metrics():
    return MetricsCollector("assist")


@pytest.fixture
def auth_header():
    return f"Bearer {TOKEN}"
