"""Shared fixtures for Persona Registry tests."""

from typing import List

import pytest

from persona_registry.config import RegistryConfig
from persona_registry.personas import PersonaRegistry, MemoryStorage


class FakeTimerHandle:
    """Stand-in for asyncio.TimerHandle."""

    def __init__(self, when: float, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Manually advanced clock exposing the call_later() subset of an event loop."""

    def __init__(self):
        self.now = 0.0
        self.handles: List[FakeTimerHandle] = []

    def call_later(self, delay, callback, *args):
        handle = FakeTimerHandle(self.now + delay, callback, args)
        self.handles.append(handle)
        return handle

    def advance(self, seconds: float):
        """Move the clock forward, running every callback that comes due."""
        self.now += seconds
        while True:
            due = sorted(
                (
                    h for h in self.handles
                    if not h.cancelled and not h.fired and h.when <= self.now + 1e-9
                ),
                key=lambda h: h.when,
            )
            if not due:
                return
            handle = due[0]
            handle.fired = True
            handle.callback(*handle.args)

    @property
    def pending(self) -> int:
        return sum(1 for h in self.handles if not h.cancelled and not h.fired)


@pytest.fixture
def fake_loop():
    return FakeLoop()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def registry(storage):
    """Registry with auto-save disabled."""
    return PersonaRegistry.create(storage, RegistryConfig(auto_save_enabled=False))


@pytest.fixture
def autosave_registry(storage, fake_loop):
    """Registry auto-saving 100ms after the last change, on a fake loop."""
    return PersonaRegistry.create(
        storage,
        RegistryConfig(debounce_interval_ms=100, auto_save_enabled=True),
        loop=fake_loop,
    )


def persona_doc(persona_id: str, name: str, **fields) -> dict:
    """A persisted persona as it appears in the JSON document."""
    doc = {
        "id": persona_id,
        "name": name,
        "description": "",
        "instructions": "",
        "tags": [],
        "settings": {},
        "createdAt": "2024-01-01T00:00:00+00:00",
        "updatedAt": "2024-01-01T00:00:00+00:00",
    }
    doc.update(fields)
    return doc
