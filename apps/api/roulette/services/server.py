"""Wire registry, matchmaker and relay together and dispatch participant events."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

from pydantic import ValidationError

from ..core.config import Settings, settings as default_settings
from ..core.errors import InvalidMessage, RouletteError
from ..schemas.signaling import (
    ChatMessageRequest,
    ClientEvent,
    ConnectedNotice,
    Envelope,
    ErrorNotice,
    ServerEvent,
    SetIdentityRequest,
    SignalRequest,
    envelope,
)
from .matchmaking import Matchmaker, MatchmakingStore
from .registry import ConnectionRegistry, SignalingConnection
from .relay import SignalRelay

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RouletteServer:
    """Process-wide matchmaking state, passed by reference to every handler."""

    registry: ConnectionRegistry
    matchmaker: Matchmaker
    relay: SignalRelay

    @classmethod
    def create(cls, config: Settings | None = None, store: MatchmakingStore | None = None) -> "RouletteServer":
        config = config or default_settings
        registry = ConnectionRegistry(name_max_length=config.name_max_length)
        matchmaker = Matchmaker(registry, store=store)
        relay = SignalRelay(registry, matchmaker, chat_max_length=config.chat_max_length)
        return cls(registry=registry, matchmaker=matchmaker, relay=relay)

    async def connect(self, connection: SignalingConnection) -> str:
        """Register a new channel and tell it its identity."""

        participant_id = self.registry.register(connection)
        await connection.send(envelope(ServerEvent.CONNECTED, ConnectedNotice(participant_id=participant_id)))
        return participant_id

    async def disconnect(self, participant_id: str) -> None:
        participant = self.registry.get(participant_id)
        if participant is not None:
            participant.connection.closed = True
        await self.matchmaker.on_participant_gone(participant_id)

    async def handle_raw(self, participant_id: str, raw: str | bytes | None) -> None:
        """Parse one inbound frame and dispatch it; errors only reach the sender."""

        if not isinstance(raw, str):
            await self._reject(participant_id, InvalidMessage("Frames must be JSON text, not binary."))
            return
        try:
            frame = Envelope.model_validate_json(raw)
        except ValidationError:
            await self._reject(participant_id, InvalidMessage("Frames must be JSON objects with an 'event' field."))
            return
        await self.handle_event(participant_id, frame.event, frame.data)

    async def handle_event(self, participant_id: str, event: str, data: Dict[str, Any]) -> None:
        try:
            client_event = ClientEvent(event)
        except ValueError:
            await self._reject(participant_id, InvalidMessage(f"Unknown event '{event}'."))
            return

        handler = _HANDLERS[client_event]
        try:
            await handler(self, participant_id, data)
        except ValidationError as exc:
            logger.info("Rejected %s from %s: %s", event, participant_id, exc.errors()[0].get("msg"))
            await self._reject(participant_id, InvalidMessage(f"Invalid payload for '{event}'."))
        except RouletteError as exc:
            logger.info("Rejected %s from %s: %s", event, participant_id, exc)
            await self._reject(participant_id, exc)

    async def _reject(self, participant_id: str, error: RouletteError) -> None:
        participant = self.registry.get(participant_id)
        if participant is None:
            return
        await participant.send(envelope(ServerEvent.ERROR, ErrorNotice(message=str(error), code=error.code)))


async def _set_identity(server: RouletteServer, participant_id: str, data: Dict[str, Any]) -> None:
    request = SetIdentityRequest.model_validate(data)
    server.registry.set_name(participant_id, request.name)


async def _find_peer(server: RouletteServer, participant_id: str, data: Dict[str, Any]) -> None:
    await server.matchmaker.request_pairing(participant_id)


async def _signal(server: RouletteServer, participant_id: str, data: Dict[str, Any]) -> None:
    request = SignalRequest.model_validate(data)
    await server.relay.relay(participant_id, request.to, request.type, request.payload)


async def _chat_message(server: RouletteServer, participant_id: str, data: Dict[str, Any]) -> None:
    request = ChatMessageRequest.model_validate(data)
    await server.relay.relay_chat_message(participant_id, request.text)


async def _hang_up(server: RouletteServer, participant_id: str, data: Dict[str, Any]) -> None:
    await server.matchmaker.end_pairing(participant_id)


_HANDLERS: Dict[ClientEvent, Callable[[RouletteServer, str, Dict[str, Any]], Awaitable[None]]] = {
    ClientEvent.SET_IDENTITY: _set_identity,
    ClientEvent.FIND_PEER: _find_peer,
    ClientEvent.SIGNAL: _signal,
    ClientEvent.CHAT_MESSAGE: _chat_message,
    ClientEvent.HANG_UP: _hang_up,
}
