"""Participant-side negotiation client."""

from .negotiation import NegotiationSession, NegotiationState, transition
from .session import ChatLine, RouletteClient
from .signaling import SignalingClient, connect_signaling

__all__ = [
    "ChatLine",
    "NegotiationSession",
    "NegotiationState",
    "RouletteClient",
    "SignalingClient",
    "connect_signaling",
    "transition",
]
