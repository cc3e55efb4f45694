"""FIFO matchmaking with pairing teardown and re-pairing."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterator, Optional

from ..core.errors import NotReady
from ..schemas.signaling import (
    CallStartedNotice,
    EndReason,
    ParticipantStatus,
    PeerGoneNotice,
    Role,
    ServerEvent,
    envelope,
)
from .registry import ConnectionRegistry, Participant

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Pairing:
    """An active 1:1 match. ``initiator`` creates the first offer."""

    initiator: str
    responder: str
    room: str

    def partner_of(self, participant_id: str) -> str:
        if participant_id == self.initiator:
            return self.responder
        if participant_id == self.responder:
            return self.initiator
        raise KeyError(participant_id)

    def role_of(self, participant_id: str) -> Role:
        return Role.INITIATOR if participant_id == self.initiator else Role.RESPONDER


class MatchmakingStore:
    """Waiting pool and pairing map.

    Invariants: an id is queued at most once, a paired id is never queued, and
    both members of a pairing map to the same ``Pairing`` object.
    """

    def __init__(self) -> None:
        self._waiting: Deque[str] = deque()
        self._pairings: Dict[str, Pairing] = {}

    # waiting pool

    def waiting(self) -> list[str]:
        return list(self._waiting)

    def is_waiting(self, participant_id: str) -> bool:
        return participant_id in self._waiting

    def enqueue(self, participant_id: str) -> None:
        if participant_id in self._pairings:
            raise ValueError(f"{participant_id} is paired and cannot wait")
        if participant_id not in self._waiting:
            self._waiting.append(participant_id)

    def pop_head(self) -> Optional[str]:
        return self._waiting.popleft() if self._waiting else None

    def remove_waiting(self, participant_id: str) -> bool:
        try:
            self._waiting.remove(participant_id)
        except ValueError:
            return False
        return True

    # pairing map

    def pairing_of(self, participant_id: str) -> Optional[Pairing]:
        return self._pairings.get(participant_id)

    def partner_of(self, participant_id: str) -> Optional[str]:
        pairing = self._pairings.get(participant_id)
        return pairing.partner_of(participant_id) if pairing else None

    def link(self, initiator: str, responder: str) -> Pairing:
        if initiator == responder:
            raise ValueError("A participant cannot be paired with itself")
        if initiator in self._pairings or responder in self._pairings:
            raise ValueError("Participant already paired")
        self.remove_waiting(initiator)
        self.remove_waiting(responder)
        pairing = Pairing(initiator=initiator, responder=responder, room=f"{initiator}_{responder}")
        self._pairings[initiator] = pairing
        self._pairings[responder] = pairing
        return pairing

    def unlink(self, participant_id: str) -> Optional[Pairing]:
        """Remove both directions of the participant's pairing."""

        pairing = self._pairings.pop(participant_id, None)
        if pairing is None:
            return None
        self._pairings.pop(pairing.partner_of(participant_id), None)
        return pairing

    def pairings(self) -> Iterator[Pairing]:
        seen: set[str] = set()
        for pairing in self._pairings.values():
            if pairing.room not in seen:
                seen.add(pairing.room)
                yield pairing


class Matchmaker:
    """Pair participants exactly once and tear pairings down consistently."""

    def __init__(self, registry: ConnectionRegistry, store: MatchmakingStore | None = None) -> None:
        self._registry = registry
        self._store = store or MatchmakingStore()
        self._lock = asyncio.Lock()
        registry.add_departure_listener(self._on_departure)

    @property
    def store(self) -> MatchmakingStore:
        return self._store

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def partner_of(self, participant_id: str) -> Optional[str]:
        return self._store.partner_of(participant_id)

    async def request_pairing(self, participant_id: str) -> Optional[Pairing]:
        """Pair with the oldest live waiter, or join the pool.

        An existing pairing is torn down first, so "next" is one atomic step.
        Returns the new pairing, or ``None`` when the participant is now waiting.
        """

        participant = self._registry.get(participant_id)
        if participant is None or participant.name is None:
            raise NotReady("Please set a display name before looking for a peer.")

        async with self._lock:
            await self._teardown(participant_id, EndReason.NEXT)
            self._store.remove_waiting(participant_id)

            candidate = self._pop_live_candidate(participant_id)
            if candidate is None:
                self._store.enqueue(participant_id)
                participant.status = ParticipantStatus.WAITING
                await participant.send(envelope(ServerEvent.WAITING))
                logger.info("Participant %s (%s) is waiting for a peer", participant.name, participant_id)
                return None

            pairing = self._store.link(participant_id, candidate.participant_id)
            participant.status = ParticipantStatus.PAIRED
            candidate.status = ParticipantStatus.PAIRED

            await participant.send(
                envelope(
                    ServerEvent.CALL_STARTED,
                    CallStartedNotice(
                        peer_id=candidate.participant_id,
                        peer_name=candidate.name or "",
                        role=Role.INITIATOR,
                        room=pairing.room,
                    ),
                )
            )
            await candidate.send(
                envelope(
                    ServerEvent.CALL_STARTED,
                    CallStartedNotice(
                        peer_id=participant_id,
                        peer_name=participant.name,
                        role=Role.RESPONDER,
                        room=pairing.room,
                    ),
                )
            )
            logger.info(
                "Call started in %s: %s (%s) and %s (%s)",
                pairing.room,
                participant.name,
                participant_id,
                candidate.name,
                candidate.participant_id,
            )
            return pairing

    async def end_pairing(self, participant_id: str, reason: EndReason = EndReason.HANG_UP) -> Optional[Pairing]:
        """Leave the current pairing or the waiting pool. No-op when in neither."""

        async with self._lock:
            pairing = await self._teardown(participant_id, reason)
            if pairing is None and self._store.remove_waiting(participant_id):
                self._mark_ready(participant_id)
                logger.info("Participant %s left the waiting pool", participant_id)
            return pairing

    async def on_participant_gone(self, participant_id: str) -> None:
        """Channel lost: end any pairing, then drop the participant entirely."""

        await self.end_pairing(participant_id, EndReason.DISCONNECTED)
        await self._registry.unregister(participant_id)

    async def _on_departure(self, participant_id: str) -> None:
        # Registry removals that bypass on_participant_gone still leave state consistent.
        await self.end_pairing(participant_id, EndReason.DISCONNECTED)

    async def _teardown(self, participant_id: str, reason: EndReason) -> Optional[Pairing]:
        pairing = self._store.unlink(participant_id)
        if pairing is None:
            return None

        partner_id = pairing.partner_of(participant_id)
        self._mark_ready(participant_id)
        partner = self._mark_ready(partner_id)
        if partner is not None:
            await partner.send(envelope(ServerEvent.PEER_GONE, PeerGoneNotice(reason=reason)))
        logger.info("Pairing %s ended by %s (%s)", pairing.room, participant_id, reason.value)
        return pairing

    def _pop_live_candidate(self, requester_id: str) -> Optional[Participant]:
        while True:
            candidate_id = self._store.pop_head()
            if candidate_id is None:
                return None
            candidate = self._registry.get(candidate_id)
            if candidate is None or not candidate.is_live or candidate_id == requester_id:
                logger.info("Discarding stale waiting entry %s", candidate_id)
                continue
            return candidate

    def _mark_ready(self, participant_id: str) -> Optional[Participant]:
        participant = self._registry.get(participant_id)
        if participant is not None and participant.status is not ParticipantStatus.DISCONNECTED:
            participant.status = ParticipantStatus.READY
        return participant
