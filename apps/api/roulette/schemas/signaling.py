"""Data contracts for the signaling message channel."""
from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ClientEvent(str, enum.Enum):
    SET_IDENTITY = "set-identity"
    FIND_PEER = "find-peer"
    SIGNAL = "signal"
    CHAT_MESSAGE = "chat-message"
    HANG_UP = "hang-up"


class ServerEvent(str, enum.Enum):
    CONNECTED = "connected"
    WAITING = "waiting"
    CALL_STARTED = "call-started"
    SIGNAL = "signal"
    CHAT_MESSAGE = "chat-message"
    PEER_GONE = "peer-gone"
    ERROR = "error"


class SignalType(str, enum.Enum):
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"


class Role(str, enum.Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class ParticipantStatus(str, enum.Enum):
    UNSET = "unset"
    READY = "ready"
    WAITING = "waiting"
    PAIRED = "paired"
    DISCONNECTED = "disconnected"


class EndReason(str, enum.Enum):
    HANG_UP = "hang-up"
    NEXT = "next"
    DISCONNECTED = "disconnected"


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Envelope(BaseModel):
    """Every frame is ``{"event": ..., "data": {...}}``."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)


# --- participant -> server ---


class SetIdentityRequest(WireModel):
    name: str


class SignalRequest(WireModel):
    to: str = Field(..., min_length=1)
    type: SignalType
    payload: Any = None


class ChatMessageRequest(WireModel):
    text: str


# --- server -> participant ---


class ConnectedNotice(WireModel):
    participant_id: str


class CallStartedNotice(WireModel):
    peer_id: str
    peer_name: str
    role: Role
    room: str


class RelayedSignal(WireModel):
    from_: str = Field(..., alias="from")
    sender_name: str | None = None
    type: SignalType
    payload: Any = None


class ChatBroadcast(WireModel):
    sender: str | None = None
    sender_id: str
    text: str


class PeerGoneNotice(WireModel):
    reason: EndReason


class ErrorNotice(WireModel):
    message: str
    code: str


def envelope(event: ServerEvent, body: WireModel | None = None) -> dict[str, Any]:
    """Build an outbound frame."""

    return {"event": event.value, "data": body.dump() if body is not None else {}}
