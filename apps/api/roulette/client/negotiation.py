"""Per-pairing handshake state machine.

``transition(session, event)`` is pure: it returns the next session value and
the effects the caller must carry out (create descriptions, send signals,
close the transport). Nothing here touches the network, which keeps every
transition testable without a peer connection.

Initiator: ``idle -> creating-offer -> offer-sent -> answer-received -> connected``.
Responder: ``idle -> awaiting-answer -> answer-received -> connected``.
Any state moves to ``closed`` on ``Teardown``; ``closed`` absorbs everything.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Tuple, Union

from ..core.errors import OutOfSequence, TransportFailure
from ..schemas.signaling import Role, SignalType


class NegotiationState(str, enum.Enum):
    IDLE = "idle"
    CREATING_OFFER = "creating-offer"
    OFFER_SENT = "offer-sent"
    AWAITING_ANSWER = "awaiting-answer"
    ANSWER_RECEIVED = "answer-received"
    CONNECTED = "connected"
    CLOSED = "closed"


# --- events ---


@dataclass(frozen=True)
class PairingStarted:
    role: Role
    peer_id: str
    peer_name: str = ""


@dataclass(frozen=True)
class LocalDescriptionCreated:
    description: dict


@dataclass(frozen=True)
class RemoteOffer:
    description: Any


@dataclass(frozen=True)
class RemoteAnswer:
    description: Any


@dataclass(frozen=True)
class RemoteCandidate:
    candidate: Any


@dataclass(frozen=True)
class LocalCandidate:
    candidate: Any


@dataclass(frozen=True)
class TransportStateChanged:
    state: str


@dataclass(frozen=True)
class Teardown:
    reason: str = "hang-up"


Event = Union[
    PairingStarted,
    LocalDescriptionCreated,
    RemoteOffer,
    RemoteAnswer,
    RemoteCandidate,
    LocalCandidate,
    TransportStateChanged,
    Teardown,
]


# --- effects ---


@dataclass(frozen=True)
class CreateOffer:
    pass


@dataclass(frozen=True)
class CreateAnswer:
    pass


@dataclass(frozen=True)
class SetRemoteDescription:
    description: Any


@dataclass(frozen=True)
class ApplyCandidates:
    candidates: Tuple[Any, ...]


@dataclass(frozen=True)
class SendSignal:
    to: str
    type: SignalType
    payload: Any


@dataclass(frozen=True)
class ClosePeer:
    pass


@dataclass(frozen=True)
class Notify:
    level: str
    message: str
    code: Optional[str] = None


Effect = Union[CreateOffer, CreateAnswer, SetRemoteDescription, ApplyCandidates, SendSignal, ClosePeer, Notify]


@dataclass(frozen=True)
class NegotiationSession:
    """Immutable snapshot of one handshake with one partner."""

    state: NegotiationState = NegotiationState.IDLE
    role: Optional[Role] = None
    peer_id: Optional[str] = None
    peer_name: str = ""
    local_description_type: Optional[str] = None
    has_remote_description: bool = False
    pending_candidates: Tuple[Any, ...] = field(default_factory=tuple)
    transport_state: str = "new"

    @property
    def is_closed(self) -> bool:
        return self.state is NegotiationState.CLOSED


TransitionResult = Tuple[NegotiationSession, Tuple[Effect, ...]]

_TRANSPORT_FAILURES = {"disconnected", "failed"}


def transition(session: NegotiationSession, event: Event) -> TransitionResult:
    """Apply ``event`` and return the new session with the effects to run."""

    if session.is_closed:
        return session, ()

    if isinstance(event, Teardown):
        closed = replace(session, state=NegotiationState.CLOSED, pending_candidates=(), transport_state="closed")
        return closed, (ClosePeer(),)
    if isinstance(event, PairingStarted):
        return _on_pairing_started(session, event)
    if isinstance(event, LocalDescriptionCreated):
        return _on_local_description(session, event)
    if isinstance(event, RemoteOffer):
        return _on_remote_offer(session, event)
    if isinstance(event, RemoteAnswer):
        return _on_remote_answer(session, event)
    if isinstance(event, RemoteCandidate):
        return _on_remote_candidate(session, event)
    if isinstance(event, LocalCandidate):
        if session.peer_id is None:
            return session, ()
        return session, (SendSignal(session.peer_id, SignalType.CANDIDATE, event.candidate),)
    if isinstance(event, TransportStateChanged):
        return _on_transport_state(session, event)
    raise TypeError(f"Unhandled negotiation event: {event!r}")


def _on_pairing_started(session: NegotiationSession, event: PairingStarted) -> TransitionResult:
    if session.state is not NegotiationState.IDLE or session.role is not None:
        return session, (_out_of_sequence("Pairing already started for this session."),)

    started = replace(session, role=event.role, peer_id=event.peer_id, peer_name=event.peer_name)
    if event.role is Role.INITIATOR:
        return replace(started, state=NegotiationState.CREATING_OFFER), (CreateOffer(),)
    return started, (Notify("info", f"Waiting for an offer from {event.peer_name or 'peer'}."),)


def _on_local_description(session: NegotiationSession, event: LocalDescriptionCreated) -> TransitionResult:
    kind = event.description.get("type")
    if session.state is NegotiationState.CREATING_OFFER and kind == "offer":
        sent = replace(session, state=NegotiationState.OFFER_SENT, local_description_type="offer")
        return sent, (SendSignal(session.peer_id, SignalType.OFFER, event.description),)
    if session.state is NegotiationState.AWAITING_ANSWER and kind == "answer":
        answered = replace(session, state=NegotiationState.ANSWER_RECEIVED, local_description_type="answer")
        return answered, (SendSignal(session.peer_id, SignalType.ANSWER, event.description),)
    return session, (_out_of_sequence(f"Local {kind} description produced in state {session.state.value}."),)


def _on_remote_offer(session: NegotiationSession, event: RemoteOffer) -> TransitionResult:
    if session.role is not Role.RESPONDER or session.state is not NegotiationState.IDLE:
        return session, (_out_of_sequence("Unexpected offer; ignoring it."),)

    applied, flush = _set_remote(session)
    return replace(applied, state=NegotiationState.AWAITING_ANSWER), (
        SetRemoteDescription(event.description),
        *flush,
        CreateAnswer(),
    )


def _on_remote_answer(session: NegotiationSession, event: RemoteAnswer) -> TransitionResult:
    if session.state is not NegotiationState.OFFER_SENT or session.local_description_type != "offer":
        return session, (_out_of_sequence("Answer received without a local offer; ignoring it."),)

    applied, flush = _set_remote(session)
    return replace(applied, state=NegotiationState.ANSWER_RECEIVED), (
        SetRemoteDescription(event.description),
        *flush,
    )


def _on_remote_candidate(session: NegotiationSession, event: RemoteCandidate) -> TransitionResult:
    if session.has_remote_description:
        return session, (ApplyCandidates((event.candidate,)),)
    # Held until a remote description exists, then applied in arrival order.
    return replace(session, pending_candidates=session.pending_candidates + (event.candidate,)), ()


def _on_transport_state(session: NegotiationSession, event: TransportStateChanged) -> TransitionResult:
    updated = replace(session, transport_state=event.state)
    if event.state == "connected":
        return replace(updated, state=NegotiationState.CONNECTED), (Notify("info", "Peer-to-peer connection established."),)
    if event.state in _TRANSPORT_FAILURES:
        return updated, (
            Notify("warning", f"Peer-to-peer connection {event.state}.", code=TransportFailure.code),
        )
    if event.state == "closed":
        return updated, (Notify("info", "Peer-to-peer connection closed."),)
    return updated, ()


def _set_remote(session: NegotiationSession) -> Tuple[NegotiationSession, Tuple[Effect, ...]]:
    flush: Tuple[Effect, ...] = ()
    if session.pending_candidates:
        flush = (ApplyCandidates(session.pending_candidates),)
    return replace(session, has_remote_description=True, pending_candidates=()), flush


def _out_of_sequence(message: str) -> Notify:
    return Notify("warning", message, code=OutOfSequence.code)
