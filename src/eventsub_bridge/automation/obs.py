"""
OBS Automation Sink — obs-websocket v5 client.

Speaks the obs-websocket JSON protocol directly over ``websockets``:
Hello (op 0) -> Identify (op 1, SHA-256 challenge auth) -> Identified (op 2),
then Request (op 6) / RequestResponse (op 7) matched by request id.

All sink operations are best effort. A failure is logged and reported as
False; nothing is raised to the notification handler.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import uuid
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from eventsub_bridge.automation.base import AutomationSink
from eventsub_bridge.core.errors import AutomationSinkError

logger = logging.getLogger(__name__)

RPC_VERSION = 1

OP_HELLO = 0
OP_IDENTIFY = 1
OP_IDENTIFIED = 2
OP_REQUEST = 6
OP_REQUEST_RESPONSE = 7


def auth_string(password: str, salt: str, challenge: str) -> str:
    """obs-websocket authentication response for a Hello challenge."""
    secret = base64.b64encode(hashlib.sha256((password + salt).encode()).digest())
    return base64.b64encode(
        hashlib.sha256(secret + challenge.encode()).digest()
    ).decode()


class OBSClient(AutomationSink):
    def __init__(
        self,
        host: str,
        port: int | str,
        password: str = "",
        scene: str = "",
        mic_name: str = "",
        request_timeout: float = 5.0,
    ):
        self.url = f"ws://{host}:{port}"
        self._password = password
        self._scene = scene
        self._mic_name = mic_name
        self._request_timeout = request_timeout
        self._ws: ClientConnection | None = None
        self._reader_task: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    # ─── Connection ──────────────────────────────────────────────

    async def connect(self) -> None:
        """Open and identify a session. Raises AutomationSinkError on failure."""
        try:
            ws = await connect(self.url, subprotocols=["obswebsocket.json"])
        except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as e:
            raise AutomationSinkError(f"Could not reach OBS at {self.url}: {e}") from e

        try:
            hello = json.loads(await asyncio.wait_for(ws.recv(), self._request_timeout))
            if hello.get("op") != OP_HELLO:
                raise AutomationSinkError(f"Expected Hello from OBS, got op {hello.get('op')}")

            identify: dict[str, Any] = {"rpcVersion": RPC_VERSION, "eventSubscriptions": 0}
            challenge = hello.get("d", {}).get("authentication")
            if challenge:
                identify["authentication"] = auth_string(
                    self._password, challenge["salt"], challenge["challenge"]
                )
            await ws.send(json.dumps({"op": OP_IDENTIFY, "d": identify}))

            identified = json.loads(await asyncio.wait_for(ws.recv(), self._request_timeout))
            if identified.get("op") != OP_IDENTIFIED:
                raise AutomationSinkError("OBS did not accept the Identify request")
        except ConnectionClosed as e:
            rcvd = e.rcvd
            code = rcvd.code if rcvd is not None else None
            raise AutomationSinkError(
                f"OBS closed the connection during identify: {e}", code=code
            ) from e
        except (TimeoutError, asyncio.TimeoutError) as e:
            await ws.close()
            raise AutomationSinkError("Timed out identifying with OBS") from e
        except AutomationSinkError:
            await ws.close()
            raise

        self._ws = ws
        self._reader_task = asyncio.create_task(self._read_loop(ws), name="obs-reader")
        logger.info("Connected to OBS WebSocket at %s", self.url)

    async def connect_with_retry(self, attempts: int = 10, delay: float = 5.0) -> bool:
        """Bounded startup loop. Returns False if OBS never came up."""
        for attempt in range(1, attempts + 1):
            logger.info("Waiting for OBS to connect... attempt %d/%d", attempt, attempts)
            try:
                await self.connect()
                return True
            except AutomationSinkError as e:
                logger.warning("OBS connect attempt %d failed: %s", attempt, e)
            if attempt < attempts:
                await asyncio.sleep(delay)
        logger.error(
            "Could not connect to OBS. Make sure OBS is open and WebSocket is enabled "
            "in OBS > Tools > WebSocket Server Settings"
        )
        return False

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        logger.info("OBS WebSocket disconnected")

    async def _read_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from OBS")
                    continue
                if msg.get("op") != OP_REQUEST_RESPONSE:
                    continue
                data = msg.get("d", {})
                future = self._pending.pop(data.get("requestId", ""), None)
                if future is not None and not future.done():
                    future.set_result(data)
        except ConnectionClosed as e:
            logger.warning("OBS WebSocket closed: %s", e)
        finally:
            if self._ws is ws:
                self._ws = None
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(AutomationSinkError("OBS connection lost"))
            self._pending.clear()

    # ─── Requests ────────────────────────────────────────────────

    async def request(self, request_type: str, data: dict[str, Any] | None = None) -> dict:
        """Send one request and return its responseData."""
        if self._ws is None:
            raise AutomationSinkError("OBS is not connected")
        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        message = {
            "op": OP_REQUEST,
            "d": {
                "requestType": request_type,
                "requestId": request_id,
                "requestData": data or {},
            },
        }
        try:
            await self._ws.send(json.dumps(message))
            response = await asyncio.wait_for(future, self._request_timeout)
        except ConnectionClosed as e:
            raise AutomationSinkError(f"OBS connection lost sending {request_type}") from e
        except (TimeoutError, asyncio.TimeoutError) as e:
            raise AutomationSinkError(f"OBS did not answer {request_type} in time") from e
        finally:
            self._pending.pop(request_id, None)

        status = response.get("requestStatus", {})
        if not status.get("result", False):
            raise AutomationSinkError(
                f"{request_type} failed: {status.get('comment', 'no comment')}",
                code=status.get("code"),
            )
        return response.get("responseData") or {}

    # ─── AutomationSink ──────────────────────────────────────────

    async def set_microphone_muted(self, muted: bool) -> bool:
        action = "muting" if muted else "unmuting"
        return await self._best_effort(
            f"{action} microphone",
            lambda: self.request(
                "SetInputMute", {"inputName": self._mic_name, "inputMuted": muted}
            ),
        )

    async def set_source_visible(self, name: str, visible: bool) -> bool:
        action = "showing" if visible else "hiding"
        return await self._best_effort(
            f"{action} source {name!r}", lambda: self._set_visible(name, visible)
        )

    async def _set_visible(self, name: str, visible: bool) -> None:
        found = await self.request(
            "GetSceneItemId", {"sceneName": self._scene, "sourceName": name}
        )
        await self.request(
            "SetSceneItemEnabled",
            {
                "sceneName": self._scene,
                "sceneItemId": found["sceneItemId"],
                "sceneItemEnabled": visible,
            },
        )

    async def _best_effort(self, what: str, call: Callable[[], Awaitable[Any]]) -> bool:
        if self._ws is None:
            try:
                await self.connect()
            except AutomationSinkError as e:
                logger.error("Error %s: %s", what, e)
                return False
        try:
            await call()
        except (AutomationSinkError, KeyError) as e:
            logger.error("Error %s: %s", what, e)
            return False
        logger.debug("OBS: done %s", what)
        return True
