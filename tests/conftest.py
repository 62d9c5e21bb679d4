"""Shared test fixtures for casinohub tests."""

from unittest.mock import MagicMock

import pytest


@pytest.fixture(autouse=True)
def _clear_singleton_caches():
    """Reset the cached Settings between tests.

    Prevents env-var overrides in one test from leaking into the next.
    """
    yield
    from casinohub.config import get_settings

    get_settings.cache_clear()


@pytest.fixture
def fast_settings():
    """Settings with short timers so debounce/backoff tests run in milliseconds."""
    from casinohub.config import Settings

    return Settings(
        REALTIME_DEBOUNCE_MS=50,
        REALTIME_BATCH_SIZE=10,
        REALTIME_MAX_RECONNECT_ATTEMPTS=5,
        REALTIME_RECONNECT_BASE_MS=5,
        REALTIME_RECONNECT_MAX_MS=40,
        CRUD_PAGE_SIZE=10,
    )


@pytest.fixture
def admin_actor():
    from casinohub.store.base import Actor

    return Actor(id="admin-1", role="admin")


@pytest.fixture
def store(admin_actor):
    from casinohub.store.memory import InMemoryDataStore

    return InMemoryDataStore(actor=admin_actor)


@pytest.fixture
def casino_rows():
    """25 casinos with distinct, sortable created_at values."""
    return [
        {
            "id": f"casino-{i:02d}",
            "name": f"Casino {i:02d}",
            "description": "Live dealer tables" if i % 2 else "Slots and poker",
            "rating": 5 + (i % 5),
            "is_active": i % 3 != 0,
            "created_at": f"2024-01-{i:02d}T00:00:00+00:00",
        }
        for i in range(1, 26)
    ]


@pytest.fixture
def notifier():
    from casinohub.admin.notify import Notifier

    return MagicMock(spec=Notifier)


@pytest.fixture
def context(fast_settings, store, notifier):
    from casinohub.context import create_context

    return create_context(fast_settings, store=store, notifier=notifier)
