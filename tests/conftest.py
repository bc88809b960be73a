"""Shared fixtures for the doratrack test suite."""

import pytest

from tests.fakes import InMemoryStore


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
