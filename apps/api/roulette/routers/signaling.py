"""Websocket message channel for matchmaking and signaling."""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..services.registry import SignalingConnection
from ..services.server import RouletteServer

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketOutbox:
    """Queue outbound frames so handlers never wait on a slow socket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._queue: asyncio.Queue[dict] = asyncio.Queue()
        self.connection = SignalingConnection(send=self.send)

    async def send(self, message: dict) -> None:
        if self.connection.closed:
            return
        await self._queue.put(message)

    async def drain(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.debug("Dropping outbound frame, socket closed: %s", exc)
                self.connection.closed = True
                return


@router.websocket("/signaling")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """One participant's bidirectional channel."""

    server: RouletteServer = websocket.app.state.roulette
    await websocket.accept()

    outbox = WebSocketOutbox(websocket)
    writer = asyncio.create_task(outbox.drain())
    participant_id = await server.connect(outbox.connection)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # Binary frames carry no "text" key and are rejected as malformed.
            await server.handle_raw(participant_id, message.get("text"))
    except WebSocketDisconnect:
        pass
    finally:
        await server.disconnect(participant_id)
        writer.cancel()
        with suppress(asyncio.CancelledError):
            await writer
