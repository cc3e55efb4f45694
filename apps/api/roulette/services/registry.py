"""In-memory registry of connected participants."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional
from uuid import uuid4

from ..core.errors import InvalidState
from ..schemas.signaling import ParticipantStatus

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]
DepartureListener = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class SignalingConnection:
    """Outbound side of one participant's message channel."""

    send: SendCallable
    closed: bool = False


@dataclass(slots=True)
class Participant:
    participant_id: str
    connection: SignalingConnection
    name: Optional[str] = None
    status: ParticipantStatus = ParticipantStatus.UNSET

    @property
    def is_live(self) -> bool:
        return not self.connection.closed and self.status is not ParticipantStatus.DISCONNECTED

    async def send(self, message: dict) -> None:
        if not self.is_live:
            return
        await self.connection.send(message)


class ConnectionRegistry:
    """Track participant identity for the lifetime of its channel."""

    def __init__(self, name_max_length: int = 32) -> None:
        self._participants: Dict[str, Participant] = {}
        self._listeners: list[DepartureListener] = []
        self._name_max_length = name_max_length

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._participants

    def __len__(self) -> int:
        return len(self._participants)

    def add_departure_listener(self, listener: DepartureListener) -> None:
        """Call ``listener(participant_id)`` whenever a participant is unregistered."""

        self._listeners.append(listener)

    def register(self, connection: SignalingConnection) -> str:
        participant_id = uuid4().hex
        self._participants[participant_id] = Participant(participant_id=participant_id, connection=connection)
        logger.info("Participant %s connected", participant_id)
        return participant_id

    def get(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(participant_id)

    def set_name(self, participant_id: str, name: str) -> Participant:
        """Assign the display name once; blank, over-long or repeated assignments fail."""

        participant = self._participants.get(participant_id)
        if participant is None:
            raise InvalidState("Unknown participant.")
        if participant.name is not None:
            raise InvalidState("Display name is already set.")

        cleaned = (name or "").strip()
        if not cleaned:
            raise InvalidState("Display name must not be empty.")
        if len(cleaned) > self._name_max_length:
            raise InvalidState(f"Display name must be at most {self._name_max_length} characters.")

        participant.name = cleaned
        participant.status = ParticipantStatus.READY
        logger.info("Participant %s is now known as %s", participant_id, cleaned)
        return participant

    async def unregister(self, participant_id: str) -> Optional[Participant]:
        """Remove every trace of the participant. Safe to call repeatedly."""

        participant = self._participants.pop(participant_id, None)
        if participant is None:
            return None

        participant.status = ParticipantStatus.DISCONNECTED
        participant.connection.closed = True
        for listener in list(self._listeners):
            await listener(participant_id)
        logger.info("Participant %s removed", participant_id)
        return participant
