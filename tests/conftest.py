"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that
`import relying_party` works consistently in all tests, and provides the
fixtures most test modules build on.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from fakes import FakeClock, FakeVerifier  # noqa: E402
from relying_party.policy import PolicyRegistry  # noqa: E402
from relying_party.sessions import SessionManager  # noqa: E402
from relying_party.storage import MemoryKeyValueStore  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryKeyValueStore:
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture
def registry() -> PolicyRegistry:
    return PolicyRegistry.default()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def sessions(store: MemoryKeyValueStore, clock: FakeClock) -> SessionManager:
    return SessionManager(store, default_duration=3600, max_duration=86400, clock=clock)
