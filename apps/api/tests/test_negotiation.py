"""Tests for the handshake state machine."""
from __future__ import annotations

import pytest

from roulette.client.negotiation import (
    ApplyCandidates,
    ClosePeer,
    CreateAnswer,
    CreateOffer,
    LocalCandidate,
    LocalDescriptionCreated,
    NegotiationSession,
    NegotiationState,
    Notify,
    PairingStarted,
    RemoteAnswer,
    RemoteCandidate,
    RemoteOffer,
    SendSignal,
    SetRemoteDescription,
    Teardown,
    TransportStateChanged,
    transition,
)
from roulette.schemas.signaling import Role, SignalType

OFFER = {"type": "offer", "sdp": "v=0 offer"}
ANSWER = {"type": "answer", "sdp": "v=0 answer"}


def run(session: NegotiationSession, *events):
    effects = []
    for event in events:
        session, produced = transition(session, event)
        effects.extend(produced)
    return session, effects


def test_initiator_creates_offer_and_applies_answer():
    session, effects = transition(NegotiationSession(), PairingStarted(Role.INITIATOR, "peer-1", "Bob"))
    assert session.state is NegotiationState.CREATING_OFFER
    assert effects == (CreateOffer(),)

    session, effects = transition(session, LocalDescriptionCreated(OFFER))
    assert session.state is NegotiationState.OFFER_SENT
    assert effects == (SendSignal("peer-1", SignalType.OFFER, OFFER),)

    session, effects = transition(session, RemoteAnswer(ANSWER))
    assert session.state is NegotiationState.ANSWER_RECEIVED
    assert effects == (SetRemoteDescription(ANSWER),)

    session, effects = transition(session, TransportStateChanged("connected"))
    assert session.state is NegotiationState.CONNECTED
    assert effects[0].level == "info"


def test_responder_waits_for_offer_then_answers():
    session, effects = transition(NegotiationSession(), PairingStarted(Role.RESPONDER, "peer-2", "Alice"))
    assert session.state is NegotiationState.IDLE
    assert session.role is Role.RESPONDER
    assert [type(effect) for effect in effects] == [Notify]

    session, effects = transition(session, RemoteOffer(OFFER))
    assert session.state is NegotiationState.AWAITING_ANSWER
    assert effects == (SetRemoteDescription(OFFER), CreateAnswer())

    session, effects = transition(session, LocalDescriptionCreated(ANSWER))
    assert session.state is NegotiationState.ANSWER_RECEIVED
    assert effects == (SendSignal("peer-2", SignalType.ANSWER, ANSWER),)


def test_candidates_are_buffered_until_remote_description():
    session, _ = transition(NegotiationSession(), PairingStarted(Role.RESPONDER, "peer-2"))

    session, effects = run(session, RemoteCandidate({"candidate": "c1"}), RemoteCandidate({"candidate": "c2"}))
    assert effects == []
    assert session.pending_candidates == ({"candidate": "c1"}, {"candidate": "c2"})

    session, effects = transition(session, RemoteOffer(OFFER))
    assert effects == (
        SetRemoteDescription(OFFER),
        ApplyCandidates(({"candidate": "c1"}, {"candidate": "c2"})),
        CreateAnswer(),
    )
    assert session.pending_candidates == ()

    session, effects = transition(session, RemoteCandidate({"candidate": "c3"}))
    assert effects == (ApplyCandidates(({"candidate": "c3"},)),)


def test_initiator_flushes_candidates_after_answer():
    session, _ = run(
        NegotiationSession(),
        PairingStarted(Role.INITIATOR, "peer-1"),
        LocalDescriptionCreated(OFFER),
        RemoteCandidate("early"),
    )

    session, effects = transition(session, RemoteAnswer(ANSWER))

    assert effects == (SetRemoteDescription(ANSWER), ApplyCandidates(("early",)))


@pytest.mark.parametrize(
    "events",
    [
        (PairingStarted(Role.RESPONDER, "peer-2"), RemoteAnswer(ANSWER)),
        (PairingStarted(Role.INITIATOR, "peer-1"), RemoteAnswer(ANSWER)),
        (PairingStarted(Role.INITIATOR, "peer-1"), RemoteOffer(OFFER)),
        (PairingStarted(Role.RESPONDER, "peer-2"), RemoteOffer(OFFER), RemoteOffer(OFFER)),
    ],
)
def test_out_of_sequence_descriptions_are_ignored_with_warning(events):
    before, _ = run(NegotiationSession(), *events[:-1])

    after, effects = transition(before, events[-1])

    assert after == before
    assert len(effects) == 1
    assert effects[0].level == "warning"
    assert effects[0].code == "out_of_sequence"


def test_local_candidates_are_sent_to_peer():
    session, _ = transition(NegotiationSession(), PairingStarted(Role.INITIATOR, "peer-1"))

    _, effects = transition(session, LocalCandidate({"candidate": "c"}))

    assert effects == (SendSignal("peer-1", SignalType.CANDIDATE, {"candidate": "c"}),)


def test_local_candidate_without_peer_is_dropped():
    assert transition(NegotiationSession(), LocalCandidate({"candidate": "c"})) == (NegotiationSession(), ())


def test_teardown_closes_once_and_absorbs_later_events():
    session, _ = run(
        NegotiationSession(),
        PairingStarted(Role.RESPONDER, "peer-2"),
        RemoteCandidate("pending"),
    )

    closed, effects = transition(session, Teardown("next"))
    assert closed.is_closed
    assert closed.pending_candidates == ()
    assert effects == (ClosePeer(),)

    for event in (Teardown(), RemoteOffer(OFFER), RemoteCandidate("late"), TransportStateChanged("connected")):
        assert transition(closed, event) == (closed, ())


@pytest.mark.parametrize("state", ["disconnected", "failed"])
def test_transport_failure_surfaces_warning(state: str):
    session, _ = transition(NegotiationSession(), PairingStarted(Role.INITIATOR, "peer-1"))

    session, effects = transition(session, TransportStateChanged(state))

    assert session.transport_state == state
    assert session.state is NegotiationState.CREATING_OFFER
    assert effects == (Notify("warning", f"Peer-to-peer connection {state}.", code="transport_failure"),)


def test_unknown_event_is_a_programming_error():
    with pytest.raises(TypeError):
        transition(NegotiationSession(), object())
