"""Participant-side driver: server events in, negotiation effects out."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from ..core.config import settings
from ..core.errors import NotReady, OutOfSequence
from ..schemas.signaling import ClientEvent, Role, ServerEvent, SignalType
from .negotiation import (
    ApplyCandidates,
    ClosePeer,
    CreateAnswer,
    CreateOffer,
    Effect,
    Event,
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
from .peer import PeerTransport

logger = logging.getLogger(__name__)

Emitter = Callable[[str, dict], Awaitable[None]]
StatusHandler = Callable[[Notify], None]
ChatLineHandler = Callable[["ChatLine"], None]

_LOG_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


class Transport(Protocol):
    on_candidate: Optional[Callable[[dict], Awaitable[None]]]

    async def create_offer(self) -> dict: ...

    async def create_answer(self) -> dict: ...

    async def set_remote_description(self, description: Any) -> None: ...

    async def add_candidate(self, payload: Any) -> None: ...

    def send_chat(self, text: str) -> bool: ...

    async def close(self) -> None: ...


TransportFactory = Callable[..., Transport]


def default_transport_factory(
    *,
    initiator: bool,
    on_state_change: Callable[[str], Awaitable[None]],
    on_chat: Callable[[str], Awaitable[None]],
) -> Transport:
    """Data-channel-only peer; no local media tracks are captured."""

    return PeerTransport(
        settings.ice_servers,
        initiator=initiator,
        on_state_change=on_state_change,
        on_chat=on_chat,
    )


@dataclass(frozen=True)
class ChatLine:
    sender: str
    text: str
    own: bool = False


class RouletteClient:
    """Drive one negotiation session at a time from server events.

    A new pairing always closes the previous transport before the next one is
    built; effects issued for a replaced session are dropped.
    """

    def __init__(
        self,
        *,
        transport_factory: TransportFactory = default_transport_factory,
        on_status: StatusHandler | None = None,
        on_chat: ChatLineHandler | None = None,
    ) -> None:
        self._emit: Optional[Emitter] = None
        self._transport_factory = transport_factory
        self._on_status = on_status
        self._on_chat = on_chat
        self._transport: Optional[Transport] = None
        self._generation = 0
        self._lock = asyncio.Lock()

        self.participant_id: Optional[str] = None
        self.name: Optional[str] = None
        self.session: Optional[NegotiationSession] = None
        self.waiting = False
        self.status_log: list[Notify] = []
        self.chat_log: list[ChatLine] = []

    @property
    def state(self) -> Optional[NegotiationState]:
        return self.session.state if self.session else None

    def bind(self, emit: Emitter) -> None:
        """Attach the outbound side of the signaling channel."""

        self._emit = emit

    # --- user actions ---

    async def join(self, name: str) -> None:
        await self._send(ClientEvent.SET_IDENTITY, {"name": name})
        self.name = name.strip()
        await self._send(ClientEvent.FIND_PEER)

    async def next(self) -> None:
        """Leave the current partner and look for another one.

        Only ``find-peer`` is sent; the server ends the old pairing and
        re-enqueues in the same step.
        """

        async with self._lock:
            await self._end_session("next")
        await self._send(ClientEvent.FIND_PEER)

    async def hang_up(self) -> None:
        await self._send(ClientEvent.HANG_UP)
        async with self._lock:
            await self._end_session("hang-up")
        self.waiting = False

    async def send_chat(self, text: str) -> None:
        cleaned = text.strip()
        if not cleaned:
            return
        if self._transport is None or not self._transport.send_chat(cleaned):
            await self._send(ClientEvent.CHAT_MESSAGE, {"text": cleaned})
        self._record_chat(ChatLine(sender=self.name or "", text=cleaned, own=True))

    async def close(self) -> None:
        async with self._lock:
            await self._end_session("closed")

    # --- server events ---

    async def handle_event(self, event: str, data: dict) -> None:
        """Callback for ``SignalingClient``."""

        try:
            server_event = ServerEvent(event)
        except ValueError:
            logger.warning("Ignoring unknown server event %s", event)
            return

        if server_event is ServerEvent.CONNECTED:
            self.participant_id = data.get("participantId")
        elif server_event is ServerEvent.WAITING:
            self.waiting = True
            self._notify(Notify("info", "No peer available yet. Waiting for someone to join..."))
        elif server_event is ServerEvent.CALL_STARTED:
            await self._start_session(data)
        elif server_event is ServerEvent.SIGNAL:
            await self._on_signal(data)
        elif server_event is ServerEvent.CHAT_MESSAGE:
            self._on_chat_message(data)
        elif server_event is ServerEvent.PEER_GONE:
            self._notify(Notify("warning", "Your peer disconnected."))
            async with self._lock:
                await self._end_session(data.get("reason", "peer-gone"))
        elif server_event is ServerEvent.ERROR:
            self._notify(Notify("error", data.get("message", "Server error."), code=data.get("code")))

    async def _start_session(self, data: dict) -> None:
        role = Role(data["role"])
        async with self._lock:
            await self._end_session("next")

            self.waiting = False
            self._generation += 1
            generation = self._generation
            self._transport = self._transport_factory(
                initiator=role is Role.INITIATOR,
                on_state_change=lambda state: self._on_transport_state(generation, state),
                on_chat=lambda text: self._on_peer_chat(generation, text),
            )
            self._transport.on_candidate = lambda candidate: self._on_local_candidate(generation, candidate)
            self.session = NegotiationSession()
            self.chat_log.clear()
            self._notify(Notify("info", f"Connected with {data.get('peerName') or 'a stranger'}."))
            await self._apply(PairingStarted(role=role, peer_id=data["peerId"], peer_name=data.get("peerName", "")))

    async def _on_signal(self, data: dict) -> None:
        async with self._lock:
            if self.session is None or data.get("from") != self.session.peer_id:
                logger.warning("Ignoring signal from %s: not the current peer", data.get("from"))
                return
            try:
                kind = SignalType(data.get("type"))
            except ValueError:
                logger.warning("Ignoring signal of unknown type %s", data.get("type"))
                return

            payload = data.get("payload")
            if kind is SignalType.OFFER:
                await self._apply(RemoteOffer(payload))
            elif kind is SignalType.ANSWER:
                await self._apply(RemoteAnswer(payload))
            else:
                await self._apply(RemoteCandidate(payload))

    def _on_chat_message(self, data: dict) -> None:
        if data.get("senderId") == self.participant_id:
            # Server echoes our own messages; they were recorded on send.
            return
        self._record_chat(ChatLine(sender=data.get("sender") or "", text=data.get("text", "")))

    # --- transport callbacks ---

    async def _on_transport_state(self, generation: int, state: str) -> None:
        async with self._lock:
            if generation == self._generation:
                await self._apply(TransportStateChanged(state))

    async def _on_local_candidate(self, generation: int, candidate: dict) -> None:
        async with self._lock:
            if generation == self._generation:
                await self._apply(LocalCandidate(candidate))

    async def _on_peer_chat(self, generation: int, text: str) -> None:
        if generation == self._generation and self.session is not None:
            self._record_chat(ChatLine(sender=self.session.peer_name, text=text))

    # --- state machine plumbing (caller holds the lock) ---

    async def _apply(self, event: Event) -> None:
        if self.session is None:
            return
        generation = self._generation
        previous = self.session
        self.session, effects = transition(self.session, event)
        for effect in effects:
            if generation != self._generation:
                return
            if not await self._run(effect):
                # Remote description rejected: the step is not committed.
                self.session = previous
                return

    async def _run(self, effect: Effect) -> bool:
        """Carry out one effect. ``False`` aborts the rest of the transition."""

        transport = self._transport
        if isinstance(effect, Notify):
            self._notify(effect)
        elif isinstance(effect, ClosePeer):
            self._transport = None
            if transport is not None:
                await transport.close()
        elif transport is None:
            return True
        elif isinstance(effect, CreateOffer):
            await self._create_description(transport.create_offer, "offer")
        elif isinstance(effect, CreateAnswer):
            await self._create_description(transport.create_answer, "answer")
        elif isinstance(effect, SetRemoteDescription):
            try:
                await transport.set_remote_description(effect.description)
            except Exception as exc:  # noqa: BLE001 - malformed peer payload must not end the receive loop
                logger.warning("Rejected remote description: %s", exc)
                self._notify(
                    Notify("warning", "Received an invalid session description from the peer.", code=OutOfSequence.code)
                )
                return False
        elif isinstance(effect, ApplyCandidates):
            for candidate in effect.candidates:
                try:
                    await transport.add_candidate(candidate)
                except Exception as exc:  # noqa: BLE001 - a bad candidate must not end the call
                    logger.warning("Failed to add ICE candidate: %s", exc)
        elif isinstance(effect, SendSignal):
            await self._send(ClientEvent.SIGNAL, {"to": effect.to, "type": effect.type.value, "payload": effect.payload})
        return True

    async def _create_description(self, factory: Callable[[], Awaitable[dict]], kind: str) -> None:
        try:
            description = await factory()
        except Exception as exc:  # noqa: BLE001 - surfaced to the user instead of crashing the loop
            logger.exception("Failed to create %s: %s", kind, exc)
            self._notify(Notify("error", f"Could not create the connection {kind}. Try the next peer."))
            return
        await self._apply(LocalDescriptionCreated(description))

    async def _end_session(self, reason: str) -> None:
        if self.session is not None:
            await self._apply(Teardown(reason))
        if self._transport is not None:
            transport, self._transport = self._transport, None
            await transport.close()
        self.session = None
        self._generation += 1

    async def _send(self, event: ClientEvent, data: dict | None = None) -> None:
        if self._emit is None:
            raise NotReady("Signaling channel is not connected.")
        await self._emit(event.value, data or {})

    def _notify(self, notice: Notify) -> None:
        self.status_log.append(notice)
        logger.log(_LOG_LEVELS.get(notice.level, logging.INFO), notice.message)
        if self._on_status:
            self._on_status(notice)

    def _record_chat(self, line: ChatLine) -> None:
        self.chat_log.append(line)
        if self._on_chat:
            self._on_chat(line)
