"""
Transport — the bidirectional socket the session runs over.

Transport is the abstract interface (connect, send, receive, close) the
Session Manager drives. WebSocketTransport implements it on the
``websockets`` asyncio client, reporting each message's fragments as
separate frames and a connection close as a close frame.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from eventsub_bridge.core.errors import TransportFault
from eventsub_bridge.eventsub.frames import Frame, FrameKind

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class Transport(ABC):
    """Abstract text-frame socket."""

    @abstractmethod
    async def connect(self, url: str, headers: dict[str, str]) -> None:
        """Open the connection. Raises TransportFault on failure."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """Send one text message."""

    @abstractmethod
    async def receive(self) -> Frame:
        """Wait for the next frame. A close is reported as a CLOSE frame."""

    @abstractmethod
    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the connection. Safe to call more than once."""

    async def frames(self) -> AsyncIterator[Frame]:
        """Yield frames up to and including the close frame."""
        while True:
            frame = await self.receive()
            yield frame
            if frame.kind is FrameKind.CLOSE:
                return


class WebSocketTransport(Transport):
    """Transport over a ``websockets`` client connection."""

    def __init__(self, open_timeout: float = 10.0, max_size: int | None = 2**20):
        self._open_timeout = open_timeout
        self._max_size = max_size
        self._ws: ClientConnection | None = None
        self._stream: AsyncIterator[Frame] | None = None
        self.url: str | None = None

    async def connect(self, url: str, headers: dict[str, str]) -> None:
        try:
            self._ws = await connect(
                url,
                additional_headers=headers,
                open_timeout=self._open_timeout,
                max_size=self._max_size,
            )
        except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as e:
            raise TransportFault(f"Could not connect to {url}: {e}") from e
        self.url = url
        self._stream = self._read_frames(self._ws)
        logger.debug("WebSocket connected: %s", url)

    async def send(self, text: str) -> None:
        if self._ws is None:
            raise TransportFault("Transport is not connected")
        try:
            await self._ws.send(text)
        except ConnectionClosed as e:
            raise TransportFault(f"Send failed, connection closed: {e}") from e

    async def receive(self) -> Frame:
        if self._stream is None:
            raise TransportFault("Transport is not connected")
        try:
            return await anext(self._stream)
        except StopAsyncIteration:
            raise TransportFault("Transport already closed") from None

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._ws is None:
            return
        await self._ws.close(code=code, reason=reason)
        logger.debug("WebSocket closed (code=%d, reason=%r)", code, reason)

    @staticmethod
    async def _read_frames(ws: ClientConnection) -> AsyncIterator[Frame]:
        # One fragment of lookahead lets the last fragment carry final=True.
        while True:
            try:
                previous = None
                async for fragment in ws.recv_streaming():
                    if previous is not None:
                        yield _data_frame(previous, final=False)
                    previous = fragment
                if previous is not None:
                    yield _data_frame(previous, final=True)
            except ConnectionClosed as e:
                rcvd = e.rcvd
                code = rcvd.code if rcvd is not None else ABNORMAL_CLOSURE
                reason = rcvd.reason if rcvd is not None else str(e)
                yield Frame.close(code, reason)
                return


def _data_frame(fragment: str | bytes, final: bool) -> Frame:
    if isinstance(fragment, str):
        return Frame.text(fragment, final=final)
    return Frame.binary(fragment, final=final)
