"""
Shared fakes for eventsub-bridge tests.

An in-memory Transport for driving the session state machine, a recording
AutomationSink, and builders for EventSub message documents. No network
access is needed anywhere.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

from eventsub_bridge.automation.base import AutomationSink
from eventsub_bridge.eventsub.frames import Frame
from eventsub_bridge.eventsub.messages import REDEMPTION_ADD
from eventsub_bridge.eventsub.transport import NORMAL_CLOSURE, Transport


# ── Fake transport ─────────────────────────────────────────


class FakeTransport(Transport):
    """Queue-backed Transport. close() pushes a CLOSE frame like a real socket."""

    def __init__(self, documents: list[Any] | None = None, fail: Exception | None = None):
        self.fail = fail
        self.url: str | None = None
        self.headers: dict[str, str] | None = None
        self.sent: list[str] = []
        self.closed_with: tuple[int, str] | None = None
        self._queue: asyncio.Queue[Frame] = asyncio.Queue()
        for document in documents or []:
            self.push(document)

    def push(self, document: Any) -> None:
        if isinstance(document, Frame):
            self._queue.put_nowait(document)
        elif isinstance(document, str):
            self._queue.put_nowait(Frame.text(document))
        else:
            self._queue.put_nowait(Frame.text(json.dumps(document)))

    async def connect(self, url: str, headers: dict[str, str]) -> None:
        if self.fail is not None:
            raise self.fail
        self.url = url
        self.headers = headers

    async def send(self, text: str) -> None:
        self.sent.append(text)

    async def receive(self) -> Frame:
        return await self._queue.get()

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self.closed_with is None:
            self.closed_with = (code, reason)
            self._queue.put_nowait(Frame.close(code, reason))


class TransportFactory:
    """Hands out prepared transports in order and remembers each one."""

    def __init__(self, *transports: FakeTransport, default: Callable[[], FakeTransport] | None = None):
        self._prepared = list(transports)
        self._default = default
        self.created: list[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        if self._prepared:
            transport = self._prepared.pop(0)
        elif self._default is not None:
            transport = self._default()
        else:
            raise AssertionError("No more transports prepared")
        self.created.append(transport)
        return transport


# ── Recording sink ─────────────────────────────────────────


class RecordingSink(AutomationSink):
    """Records every call. Operations listed in ``failing`` report failure."""

    def __init__(self, failing: set[str] | None = None):
        self.calls: list[tuple] = []
        self.failing = failing or set()

    async def set_microphone_muted(self, muted: bool) -> bool:
        self.calls.append(("mute", muted))
        return "mute" not in self.failing

    async def set_source_visible(self, name: str, visible: bool) -> bool:
        self.calls.append(("visible", name, visible))
        return "visible" not in self.failing


# ── Message builders ───────────────────────────────────────


def welcome_message(session_id: str = "session-1", keepalive: Any = 10) -> dict:
    return {
        "metadata": {
            "message_id": f"welcome-{session_id}",
            "message_type": "session_welcome",
            "message_timestamp": "2024-01-01T00:00:00Z",
        },
        "payload": {
            "session": {
                "id": session_id,
                "status": "connected",
                "keepalive_timeout_seconds": keepalive,
                "reconnect_url": None,
            }
        },
    }


def keepalive_message() -> dict:
    return {
        "metadata": {"message_id": "ka-1", "message_type": "session_keepalive"},
        "payload": {},
    }


def reconnect_message(url: str, session_id: str = "session-1") -> dict:
    return {
        "metadata": {"message_id": "rc-1", "message_type": "session_reconnect"},
        "payload": {
            "session": {"id": session_id, "status": "reconnecting", "reconnect_url": url}
        },
    }


def redemption_message(title: str = "IRL voice ban", user_name: str = "alice") -> dict:
    return {
        "metadata": {
            "message_id": "n-1",
            "message_type": "notification",
            "subscription_type": REDEMPTION_ADD,
        },
        "payload": {
            "subscription": {"type": REDEMPTION_ADD, "version": "1"},
            "event": {
                "id": "redemption-1",
                "user_name": user_name,
                "user_input": "",
                "reward": {"title": title},
            },
        },
    }


def chat_message(login: str, text: str) -> dict:
    return {
        "metadata": {"message_id": "c-1", "message_type": "notification"},
        "payload": {
            "subscription": {"type": "channel.chat.message", "version": "1"},
            "event": {"chatter_user_login": login, "message": {"text": text}},
        },
    }


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)
