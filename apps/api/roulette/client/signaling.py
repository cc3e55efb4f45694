"""Websocket client for the signaling message channel."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncIterator, Awaitable, Callable

import websockets
from websockets.asyncio.client import ClientConnection

from ..core.config import settings

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, dict], Awaitable[None]]


class SignalingClient:
    """Handle lifespan of one participant's signaling channel."""

    def __init__(self, ws: ClientConnection, on_event: EventHandler | None = None) -> None:
        self._ws = ws
        self._on_event = on_event
        self._receive_task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> "SignalingClient":
        if self._on_event:
            self._receive_task = asyncio.create_task(self._receive_loop())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._receive_task:
            self._receive_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._receive_task
        await self._ws.close()

    async def emit(self, event: str, data: dict[str, Any] | None = None) -> None:
        await self._ws.send(json.dumps({"event": event, "data": data or {}}))

    async def wait_closed(self) -> None:
        if self._receive_task:
            await self._receive_task

    async def _receive_loop(self) -> None:
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    continue
                try:
                    frame = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON frame from server")
                    continue
                if not isinstance(frame, dict) or "event" not in frame:
                    continue
                if self._on_event:
                    try:
                        await self._on_event(frame["event"], frame.get("data") or {})
                    except Exception:  # noqa: BLE001 - one bad frame must not stop the channel
                        logger.exception("Handler failed for %s frame", frame["event"])
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as exc:
            logger.info("Signaling channel closed: %s", exc)


@asynccontextmanager
async def connect_signaling(
    on_event: EventHandler | None = None,
    *,
    url: str | None = None,
) -> AsyncIterator[SignalingClient]:
    """Open the signaling channel."""

    async with websockets.connect(url or settings.signaling_url) as ws:
        client = SignalingClient(ws, on_event=on_event)
        async with client:
            yield client
