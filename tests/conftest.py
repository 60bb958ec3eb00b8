"""Test configuration for learning engine tests."""

import pytest

from learning_engine.store import MemoryJsonStore


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def store():
    """Fresh in-memory document store"""
    return MemoryJsonStore()
