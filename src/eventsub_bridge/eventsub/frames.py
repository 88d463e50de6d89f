"""
Message Framer — turns raw transport frames into complete JSON documents.

Text fragments are accumulated as bytes and decoded only once the
end-of-message fragment arrives, so a split inside a multi-byte UTF-8
sequence is harmless. A close frame discards whatever was accumulated and
raises TransportFault; a partial document is never parsed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator

from eventsub_bridge.core.errors import ProtocolError, TransportFault

logger = logging.getLogger(__name__)


class FrameKind(str, Enum):
    TEXT = "text"
    BINARY = "binary"
    CLOSE = "close"


@dataclass(frozen=True)
class Frame:
    """One transport frame. ``final`` marks the end of a message."""

    kind: FrameKind
    data: bytes = b""
    final: bool = True
    close_code: int | None = None
    close_reason: str = ""

    @classmethod
    def text(cls, data: str | bytes, final: bool = True) -> Frame:
        if isinstance(data, str):
            data = data.encode("utf-8")
        return cls(FrameKind.TEXT, data, final)

    @classmethod
    def binary(cls, data: bytes, final: bool = True) -> Frame:
        return cls(FrameKind.BINARY, data, final)

    @classmethod
    def close(cls, code: int | None, reason: str = "") -> Frame:
        return cls(FrameKind.CLOSE, close_code=code, close_reason=reason)


class MessageFramer:
    """Reassembles fragmented messages. One instance per connection."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._kind: FrameKind | None = None

    @property
    def pending(self) -> int:
        """Bytes accumulated for the message in progress."""
        return len(self._buffer)

    def feed(self, frame: Frame) -> str | None:
        """Consume one frame. Returns a document when a text message completes.

        Raises TransportFault on a close frame and ProtocolError when a
        completed text message is not valid UTF-8.
        """
        if frame.kind is FrameKind.CLOSE:
            dropped = len(self._buffer)
            self._reset()
            if dropped:
                logger.warning("Connection closed mid-message, discarded %d bytes", dropped)
            raise TransportFault(
                f"Connection closed (code={frame.close_code}, reason={frame.close_reason!r})",
                code=frame.close_code,
                reason=frame.close_reason,
            )

        if self._kind is None:
            self._kind = frame.kind
        self._buffer.extend(frame.data)
        if not frame.final:
            return None

        kind, raw = self._kind, bytes(self._buffer)
        self._reset()
        if kind is FrameKind.BINARY:
            logger.debug("Ignoring binary message (%d bytes)", len(raw))
            return None
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Message is not valid UTF-8: {e}") from e

    async def documents(self, frames: AsyncIterator[Frame]) -> AsyncIterator[str]:
        """Lazily yield complete documents until the connection closes."""
        async for frame in frames:
            try:
                document = self.feed(frame)
            except ProtocolError as e:
                logger.warning("Dropping undecodable message: %s", e)
                continue
            if document is not None:
                yield document
        dropped = len(self._buffer)
        self._reset()
        raise TransportFault(f"Frame stream ended without a close frame ({dropped} bytes pending)")

    def _reset(self) -> None:
        self._buffer.clear()
        self._kind = None
