"""Forward handshake and chat messages between the members of a pairing."""
from __future__ import annotations

import logging
from typing import Any

from ..core.errors import InvalidMessage, StaleTarget
from ..schemas.signaling import ChatBroadcast, RelayedSignal, ServerEvent, SignalType, envelope
from .matchmaking import Matchmaker
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class SignalRelay:
    """Deliver opaque signals only to the sender's current partner."""

    def __init__(self, registry: ConnectionRegistry, matchmaker: Matchmaker, chat_max_length: int = 1000) -> None:
        self._registry = registry
        self._matchmaker = matchmaker
        self._chat_max_length = chat_max_length

    async def relay(self, sender_id: str, target_id: str, message_type: SignalType, payload: Any) -> bool:
        """Forward ``payload`` verbatim. Returns ``False`` when the target is not the current partner."""

        async with self._matchmaker.lock:
            try:
                self._check_target(sender_id, target_id)
            except StaleTarget as exc:
                logger.warning("Dropping %s signal %s -> %s: %s", message_type.value, sender_id, target_id, exc)
                return False

            sender = self._registry.get(sender_id)
            target = self._registry.get(target_id)
            if sender is None or target is None:
                logger.warning("Dropping %s signal %s -> %s: participant gone", message_type.value, sender_id, target_id)
                return False

            await target.send(
                envelope(
                    ServerEvent.SIGNAL,
                    RelayedSignal(from_=sender_id, sender_name=sender.name, type=message_type, payload=payload),
                )
            )
            return True

    async def relay_chat_message(self, sender_id: str, text: str) -> bool:
        """Echo chat to both members of the sender's pairing."""

        cleaned = (text or "").strip()
        if not cleaned:
            return False
        if len(cleaned) > self._chat_max_length:
            raise InvalidMessage(f"Chat messages are limited to {self._chat_max_length} characters.")

        async with self._matchmaker.lock:
            pairing = self._matchmaker.store.pairing_of(sender_id)
            sender = self._registry.get(sender_id)
            if pairing is None or sender is None:
                return False

            message = envelope(
                ServerEvent.CHAT_MESSAGE,
                ChatBroadcast(sender=sender.name, sender_id=sender_id, text=cleaned),
            )
            for member_id in (pairing.initiator, pairing.responder):
                member = self._registry.get(member_id)
                if member is not None:
                    await member.send(message)
            logger.debug("Chat message relayed in %s", pairing.room)
            return True

    def _check_target(self, sender_id: str, target_id: str) -> None:
        partner_id = self._matchmaker.partner_of(sender_id)
        if partner_id is None:
            raise StaleTarget("sender has no active pairing")
        if partner_id != target_id:
            raise StaleTarget("target is not the current partner")
