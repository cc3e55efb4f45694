"""Tests for the connection registry."""
from __future__ import annotations

import pytest

from roulette.core.errors import InvalidState
from roulette.schemas.signaling import ParticipantStatus
from roulette.services.registry import ConnectionRegistry, SignalingConnection


class DummyConnection:
    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)


def test_register_assigns_unique_ids() -> None:
    registry = ConnectionRegistry()

    first = registry.register(SignalingConnection(DummyConnection().send))
    second = registry.register(SignalingConnection(DummyConnection().send))

    assert first != second
    assert first in registry and second in registry
    assert registry.get(first).status is ParticipantStatus.UNSET


def test_set_name_once_and_trimmed() -> None:
    registry = ConnectionRegistry()
    participant_id = registry.register(SignalingConnection(DummyConnection().send))

    participant = registry.set_name(participant_id, "  Alice ")

    assert participant.name == "Alice"
    assert participant.status is ParticipantStatus.READY
    with pytest.raises(InvalidState):
        registry.set_name(participant_id, "Mallory")
    assert registry.get(participant_id).name == "Alice"


@pytest.mark.parametrize("name", ["", "   ", "x" * 33])
def test_set_name_rejects_blank_or_long(name: str) -> None:
    registry = ConnectionRegistry(name_max_length=32)
    participant_id = registry.register(SignalingConnection(DummyConnection().send))

    with pytest.raises(InvalidState):
        registry.set_name(participant_id, name)

    assert registry.get(participant_id).status is ParticipantStatus.UNSET


@pytest.mark.asyncio
async def test_unregister_is_idempotent_and_notifies_listeners() -> None:
    registry = ConnectionRegistry()
    departed: list[str] = []

    async def listener(participant_id: str) -> None:
        departed.append(participant_id)

    registry.add_departure_listener(listener)
    connection = SignalingConnection(DummyConnection().send)
    participant_id = registry.register(connection)

    removed = await registry.unregister(participant_id)
    again = await registry.unregister(participant_id)

    assert removed is not None and removed.status is ParticipantStatus.DISCONNECTED
    assert again is None
    assert connection.closed is True
    assert participant_id not in registry
    assert departed == [participant_id]
