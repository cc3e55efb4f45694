"""Error taxonomy shared by the server and the client."""
from __future__ import annotations


class RouletteError(RuntimeError):
    """Base class for recoverable matchmaking and signaling errors."""

    code = "error"


class NotReady(RouletteError):
    """Raised when an operation runs before its prerequisite state exists."""

    code = "not_ready"


class InvalidState(RouletteError):
    """Raised when a request conflicts with the participant's current state."""

    code = "invalid_state"


class InvalidMessage(RouletteError):
    """Raised for frames that do not parse or fail validation."""

    code = "invalid_message"


class StaleTarget(RouletteError):
    """A signal was addressed to someone who is not the sender's current partner."""

    code = "stale_target"


class OutOfSequence(RouletteError):
    """A handshake message arrived before the state it depends on."""

    code = "out_of_sequence"


class TransportFailure(RouletteError):
    """Peer-to-peer connectivity failed or dropped."""

    code = "transport_failure"
