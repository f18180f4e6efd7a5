"""Shared test fixtures for relaybus."""

from __future__ import annotations

from typing import Any

import pytest

from relaybus.config import ErrorPolicy
from relaybus.core.messenger import Messenger, StrongReferenceMessenger, WeakReferenceMessenger
from relaybus.core.recipients import ReferencePolicy


class Recorder:
    """A weak-referenceable recipient that records what it receives."""

    def __init__(self, name: str = "recorder") -> None:
        self.name = name
        self.received: list[Any] = []

    def __repr__(self) -> str:
        return f"Recorder({self.name!r})"


@pytest.fixture
def strong_messenger() -> StrongReferenceMessenger:
    """Provide a fresh fail-fast StrongReferenceMessenger."""
    return StrongReferenceMessenger(error_policy=ErrorPolicy.FAIL_FAST)


@pytest.fixture
def weak_messenger() -> WeakReferenceMessenger:
    """Provide a fresh fail-fast WeakReferenceMessenger."""
    return WeakReferenceMessenger(error_policy=ErrorPolicy.FAIL_FAST)


@pytest.fixture(params=[ReferencePolicy.STRONG, ReferencePolicy.WEAK], ids=["strong", "weak"])
def messenger(request: pytest.FixtureRequest) -> Messenger:
    """Provide a fresh messenger under each lifecycle policy."""
    return Messenger(request.param, error_policy=ErrorPolicy.FAIL_FAST)


@pytest.fixture
def make_recorder():
    """Factory fixture: build named Recorder recipients."""

    def _factory(name: str = "recorder") -> Recorder:
        return Recorder(name)

    return _factory


@pytest.fixture
def recorder(make_recorder) -> Recorder:
    """Convenience: a ready-made Recorder."""
    return make_recorder()


def record(recipient: Recorder, message: Any) -> None:
    """Handler that appends the message to the recipient's log."""
    recipient.received.append(message)


@pytest.fixture
def record_handler():
    """Provide the recording handler."""
    return record
