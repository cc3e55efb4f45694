"""Peer-to-peer transport built on aiortc."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

logger = logging.getLogger(__name__)

StateHandler = Callable[[str], Awaitable[None]]
ChatHandler = Callable[[str], Awaitable[None]]
CandidateHandler = Callable[[dict], Awaitable[None]]

CHAT_CHANNEL_LABEL = "chat"


def parse_candidate(payload: Any) -> Optional[Any]:
    """Turn a browser-style ``{candidate, sdpMid, sdpMLineIndex}`` into an aiortc candidate."""

    if not isinstance(payload, dict):
        return None
    line = (payload.get("candidate") or "").strip()
    if not line:
        # End-of-candidates marker.
        return None
    if line.startswith("candidate:"):
        line = line[len("candidate:"):]
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate


class PeerTransport:
    """One RTCPeerConnection plus the ``chat`` data channel.

    aiortc gathers all local candidates before ``setLocalDescription`` returns
    and embeds them in the SDP, so ``on_candidate`` never fires here; it exists
    for transports that trickle.
    """

    def __init__(
        self,
        ice_servers: Iterable[str],
        *,
        initiator: bool,
        on_state_change: StateHandler,
        on_chat: ChatHandler,
        on_candidate: CandidateHandler | None = None,
        tracks: Iterable[MediaStreamTrack] = (),
    ) -> None:
        config = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])
        self._pc = RTCPeerConnection(configuration=config)
        self._on_state_change = on_state_change
        self._on_chat = on_chat
        self.on_candidate = on_candidate
        self._channel: Optional[RTCDataChannel] = None
        self._closed = False

        for track in tracks:
            self._pc.addTrack(track)

        if initiator:
            self._attach_channel(self._pc.createDataChannel(CHAT_CHANNEL_LABEL, ordered=True))

        @self._pc.on("datachannel")
        def on_datachannel(channel: RTCDataChannel) -> None:
            if channel.label == CHAT_CHANNEL_LABEL:
                self._attach_channel(channel)

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            logger.info("Peer connection state: %s", self._pc.connectionState)
            await self._on_state_change(self._pc.connectionState)

    @property
    def chat_open(self) -> bool:
        return self._channel is not None and self._channel.readyState == "open"

    async def create_offer(self) -> dict:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return self._describe(self._pc.localDescription)

    async def create_answer(self) -> dict:
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._describe(self._pc.localDescription)

    async def set_remote_description(self, description: Any) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_candidate(self, payload: Any) -> None:
        candidate = parse_candidate(payload)
        if candidate is None:
            return
        await self._pc.addIceCandidate(candidate)

    def send_chat(self, text: str) -> bool:
        """Send over the data channel; ``False`` means the caller should fall back."""

        if not self.chat_open:
            return False
        self._channel.send(text)
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._channel is not None:
            self._channel.close()
            self._channel = None
        await self._pc.close()

    def _attach_channel(self, channel: RTCDataChannel) -> None:
        self._channel = channel

        @channel.on("message")
        async def on_message(message: str | bytes) -> None:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            await self._on_chat(message)

    @staticmethod
    def _describe(description: RTCSessionDescription) -> dict:
        return {"sdp": description.sdp, "type": description.type}
