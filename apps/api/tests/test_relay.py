"""Tests for partner-only signal and chat relaying."""
from __future__ import annotations

import pytest

from roulette.core.errors import InvalidMessage
from roulette.schemas.signaling import SignalType
from roulette.services.matchmaking import Matchmaker
from roulette.services.registry import ConnectionRegistry, SignalingConnection
from roulette.services.relay import SignalRelay


class DummyConnection:
    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)


@pytest.fixture
def setup():
    registry = ConnectionRegistry()
    matchmaker = Matchmaker(registry)
    relay = SignalRelay(registry, matchmaker, chat_max_length=20)
    inboxes: dict[str, DummyConnection] = {}

    def join(name: str) -> str:
        connection = DummyConnection()
        participant_id = registry.register(SignalingConnection(connection.send))
        registry.set_name(participant_id, name)
        inboxes[participant_id] = connection
        return participant_id

    return matchmaker, relay, inboxes, join


@pytest.mark.asyncio
async def test_relay_forwards_payload_verbatim_to_partner(setup):
    matchmaker, relay, inboxes, join = setup
    alice, bob = join("Alice"), join("Bob")
    await matchmaker.request_pairing(alice)
    await matchmaker.request_pairing(bob)
    payload = {"type": "offer", "sdp": "v=0\r\n", "extra": [1, 2, 3]}

    delivered = await relay.relay(bob, alice, SignalType.OFFER, payload)

    assert delivered is True
    assert inboxes[alice].messages[-1] == {
        "event": "signal",
        "data": {"from": bob, "senderName": "Bob", "type": "offer", "payload": payload},
    }


@pytest.mark.asyncio
async def test_relay_rejects_non_partner_target(setup):
    matchmaker, relay, inboxes, join = setup
    alice, bob, carol = join("Alice"), join("Bob"), join("Carol")
    await matchmaker.request_pairing(alice)
    await matchmaker.request_pairing(bob)
    before = len(inboxes[carol].messages)

    assert await relay.relay(bob, carol, SignalType.CANDIDATE, {"candidate": "x"}) is False
    assert await relay.relay(carol, alice, SignalType.OFFER, {}) is False
    assert len(inboxes[carol].messages) == before
    assert all(message["event"] != "signal" for message in inboxes[alice].messages)


@pytest.mark.asyncio
async def test_relay_drops_signals_after_teardown(setup):
    matchmaker, relay, inboxes, join = setup
    alice, bob = join("Alice"), join("Bob")
    await matchmaker.request_pairing(alice)
    await matchmaker.request_pairing(bob)
    await matchmaker.end_pairing(bob)

    assert await relay.relay(bob, alice, SignalType.ANSWER, {}) is False
    assert all(message["event"] != "signal" for message in inboxes[alice].messages)


@pytest.mark.asyncio
async def test_chat_is_echoed_to_both_members(setup):
    matchmaker, relay, inboxes, join = setup
    alice, bob, carol = join("Alice"), join("Bob"), join("Carol")
    await matchmaker.request_pairing(alice)
    await matchmaker.request_pairing(bob)

    assert await relay.relay_chat_message(alice, "  hi there ") is True

    expected = {"event": "chat-message", "data": {"sender": "Alice", "senderId": alice, "text": "hi there"}}
    assert inboxes[alice].messages[-1] == expected
    assert inboxes[bob].messages[-1] == expected
    assert inboxes[carol].messages == []


@pytest.mark.asyncio
async def test_chat_without_pairing_or_text_is_noop(setup):
    matchmaker, relay, inboxes, join = setup
    alice, bob = join("Alice"), join("Bob")

    assert await relay.relay_chat_message(alice, "anyone?") is False

    await matchmaker.request_pairing(alice)
    await matchmaker.request_pairing(bob)
    assert await relay.relay_chat_message(alice, "   ") is False
    assert all(message["event"] != "chat-message" for message in inboxes[bob].messages)


@pytest.mark.asyncio
async def test_chat_rejects_overlong_text(setup):
    matchmaker, relay, _, join = setup
    alice, bob = join("Alice"), join("Bob")
    await matchmaker.request_pairing(alice)
    await matchmaker.request_pairing(bob)

    with pytest.raises(InvalidMessage):
        await relay.relay_chat_message(alice, "x" * 21)
