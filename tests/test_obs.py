"""Tests for the obs-websocket automation sink."""

import asyncio
import base64
import hashlib
import json
from unittest.mock import AsyncMock, patch

import pytest

from eventsub_bridge.automation.obs import OBSClient, auth_string
from eventsub_bridge.core.errors import AutomationSinkError


class FakeOBSSocket:
    """Scripted obs-websocket server side. Answers requests from ``responses``."""

    def __init__(self, hello: dict, responses: dict | None = None):
        self._handshake = [json.dumps(hello), json.dumps({"op": 2, "d": {"negotiatedRpcVersion": 1}})]
        self.responses = responses or {}
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def recv(self):
        return self._handshake.pop(0)

    async def send(self, raw: str):
        msg = json.loads(raw)
        self.sent.append(msg)
        if msg["op"] != 6:
            return
        data = msg["d"]
        result, payload = self.responses.get(data["requestType"], (True, {}))
        self._inbox.put_nowait(
            json.dumps(
                {
                    "op": 7,
                    "d": {
                        "requestType": data["requestType"],
                        "requestId": data["requestId"],
                        "requestStatus": {"result": result, "code": 100 if result else 600, "comment": "nope"},
                        "responseData": payload,
                    },
                }
            )
        )

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self._inbox.get()
        if raw is None:
            raise StopAsyncIteration
        return raw


def _client(**kwargs):
    return OBSClient("localhost", 4455, password="hunter2", scene="Main", mic_name="Mic/Aux", **kwargs)


class TestAuth:
    def test_auth_string_matches_protocol_recipe(self):
        secret = base64.b64encode(hashlib.sha256(b"hunter2" + b"salt").digest())
        expected = base64.b64encode(hashlib.sha256(secret + b"challenge").digest()).decode()
        assert auth_string("hunter2", "salt", "challenge") == expected

    def test_auth_string_depends_on_challenge(self):
        assert auth_string("pw", "salt", "a") != auth_string("pw", "salt", "b")


class TestConnect:
    @pytest.mark.asyncio
    async def test_identify_with_authentication(self):
        socket = FakeOBSSocket(
            {"op": 0, "d": {"rpcVersion": 1, "authentication": {"salt": "s", "challenge": "c"}}}
        )
        client = _client()
        with patch("eventsub_bridge.automation.obs.connect", AsyncMock(return_value=socket)):
            await client.connect()

        identify = socket.sent[0]
        assert identify["op"] == 1
        assert identify["d"]["rpcVersion"] == 1
        assert identify["d"]["authentication"] == auth_string("hunter2", "s", "c")
        assert client.is_connected
        await client.close()
        assert socket.closed
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_unexpected_hello(self):
        socket = FakeOBSSocket({"op": 5, "d": {}})
        with patch("eventsub_bridge.automation.obs.connect", AsyncMock(return_value=socket)):
            with pytest.raises(AutomationSinkError):
                await _client().connect()
        assert socket.closed

    @pytest.mark.asyncio
    async def test_unreachable(self):
        refused = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        with patch("eventsub_bridge.automation.obs.connect", refused):
            with pytest.raises(AutomationSinkError):
                await _client().connect()

    @pytest.mark.asyncio
    async def test_connect_with_retry_succeeds_eventually(self):
        client = _client()
        client.connect = AsyncMock(side_effect=[AutomationSinkError("not yet"), None])
        with patch("eventsub_bridge.automation.obs.asyncio.sleep", AsyncMock()) as sleep:
            assert await client.connect_with_retry(attempts=3, delay=5.0) is True
        assert client.connect.await_count == 2
        sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_connect_with_retry_gives_up(self):
        client = _client()
        client.connect = AsyncMock(side_effect=AutomationSinkError("closed"))
        with patch("eventsub_bridge.automation.obs.asyncio.sleep", AsyncMock()) as sleep:
            assert await client.connect_with_retry(attempts=3, delay=5.0) is False
        assert client.connect.await_count == 3
        assert sleep.await_count == 2


class TestRequests:
    async def _connected(self, responses=None, **kwargs):
        socket = FakeOBSSocket({"op": 0, "d": {"rpcVersion": 1}}, responses)
        client = _client(**kwargs)
        with patch("eventsub_bridge.automation.obs.connect", AsyncMock(return_value=socket)):
            await client.connect()
        return client, socket

    @pytest.mark.asyncio
    async def test_mute_sends_set_input_mute(self):
        client, socket = await self._connected()

        assert await client.set_microphone_muted(True) is True

        request = socket.sent[-1]["d"]
        assert request["requestType"] == "SetInputMute"
        assert request["requestData"] == {"inputName": "Mic/Aux", "inputMuted": True}
        await client.close()

    @pytest.mark.asyncio
    async def test_show_source_looks_up_scene_item(self):
        client, socket = await self._connected({"GetSceneItemId": (True, {"sceneItemId": 7})})

        assert await client.set_source_visible("Overlay", True) is True

        lookup, enable = socket.sent[-2]["d"], socket.sent[-1]["d"]
        assert lookup["requestType"] == "GetSceneItemId"
        assert lookup["requestData"] == {"sceneName": "Main", "sourceName": "Overlay"}
        assert enable["requestType"] == "SetSceneItemEnabled"
        assert enable["requestData"] == {
            "sceneName": "Main",
            "sceneItemId": 7,
            "sceneItemEnabled": True,
        }
        await client.close()

    @pytest.mark.asyncio
    async def test_failed_request_raises_with_code(self):
        client, _ = await self._connected({"SetInputMute": (False, {})})

        with pytest.raises(AutomationSinkError) as exc_info:
            await client.request("SetInputMute", {"inputName": "x", "inputMuted": True})
        assert exc_info.value.code == 600
        await client.close()

    @pytest.mark.asyncio
    async def test_failures_are_soft(self):
        client, _ = await self._connected({"SetInputMute": (False, {})})

        assert await client.set_microphone_muted(True) is False
        # missing sceneItemId in the lookup response
        assert await client.set_source_visible("Overlay", False) is False
        await client.close()

    @pytest.mark.asyncio
    async def test_unreachable_obs_is_soft(self):
        client = _client()
        client.connect = AsyncMock(side_effect=AutomationSinkError("refused"))

        assert await client.set_microphone_muted(False) is False
        assert await client.set_source_visible("Overlay", True) is False

    @pytest.mark.asyncio
    async def test_request_when_not_connected(self):
        with pytest.raises(AutomationSinkError):
            await _client().request("GetVersion")
