"""Tests for the endpoint allow-list and RestGateway retry policy."""

import asyncio
import json

import httpx
import pytest

from eventsub_bridge.api.endpoints import EndpointKind, build_endpoints, resolve
from eventsub_bridge.api.gateway import RestGateway
from eventsub_bridge.auth.credentials import CredentialStore
from eventsub_bridge.core.config import ApiConfig
from eventsub_bridge.core.errors import AuthError, NetworkError, RequestError


class FakeTwitch:
    """Routes OAuth and Helix requests; Helix accepts only ``valid_token``."""

    def __init__(self, valid_token="new-token", helix_data=None, refreshed_token="new-token"):
        self.valid_token = valid_token
        self.refreshed_token = refreshed_token
        self.helix_data = helix_data if helix_data is not None else [{"id": "1234"}]
        self.refresh_calls = 0
        self.helix_requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2/token":
            self.refresh_calls += 1
            return httpx.Response(200, json={"access_token": self.refreshed_token})
        self.helix_requests.append(request)
        if request.headers["Authorization"] != f"Bearer {self.valid_token}":
            return httpx.Response(401, json={"message": "Invalid OAuth token"})
        return httpx.Response(200, json={"data": self.helix_data})


def _gateway(settings, handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    credentials = CredentialStore(settings, client=client)
    return RestGateway(credentials, client=client)


class TestEndpoints:
    def test_build_endpoints_strips_trailing_slash(self):
        endpoints = build_endpoints(ApiConfig(helix_base="https://helix.test/", oauth_base="https://id.test/"))
        assert endpoints[EndpointKind.USER_LOOKUP].url == "https://helix.test/users"
        assert endpoints[EndpointKind.TOKEN_REFRESH].url == "https://id.test/token"

    def test_resolve_accepts_string_kind(self):
        endpoints = build_endpoints(ApiConfig())
        endpoint = resolve(endpoints, "subscription-create", "post")
        assert endpoint.kind is EndpointKind.SUBSCRIPTION_CREATE

    def test_resolve_unknown_kind(self):
        with pytest.raises(RequestError):
            resolve(build_endpoints(ApiConfig()), "delete-channel", "GET")

    def test_resolve_wrong_method(self):
        with pytest.raises(RequestError):
            resolve(build_endpoints(ApiConfig()), EndpointKind.STREAM_STATUS, "DELETE")


class TestSend:
    @pytest.mark.asyncio
    async def test_attaches_client_id_and_bearer(self, settings):
        twitch = FakeTwitch(valid_token="old-token")
        gateway = _gateway(settings, twitch)

        resp = await gateway.send(EndpointKind.USER_LOOKUP)

        assert resp.status_code == 200
        request = twitch.helix_requests[0]
        assert request.url == "https://api.twitch.tv/helix/users"
        assert request.headers["Client-Id"] == "client-abc"
        assert request.headers["Authorization"] == "Bearer old-token"
        assert twitch.refresh_calls == 0

    @pytest.mark.asyncio
    async def test_one_401_means_one_refresh_and_one_retry(self, settings):
        twitch = FakeTwitch(valid_token="new-token")
        gateway = _gateway(settings, twitch)

        resp = await gateway.send(EndpointKind.USER_LOOKUP)

        assert resp.status_code == 200
        assert twitch.refresh_calls == 1
        assert len(twitch.helix_requests) == 2
        assert twitch.helix_requests[1].headers["Authorization"] == "Bearer new-token"

    @pytest.mark.asyncio
    async def test_second_401_is_auth_error_without_another_refresh(self, settings):
        twitch = FakeTwitch(valid_token="never-matches")
        gateway = _gateway(settings, twitch)

        with pytest.raises(AuthError):
            await gateway.send(EndpointKind.USER_LOOKUP)

        assert twitch.refresh_calls == 1
        assert len(twitch.helix_requests) == 2

    @pytest.mark.asyncio
    async def test_concurrent_401s_share_one_refresh(self, settings):
        twitch = FakeTwitch(valid_token="new-token")
        gateway = _gateway(settings, twitch)

        results = await asyncio.gather(
            gateway.send(EndpointKind.USER_LOOKUP),
            gateway.send(EndpointKind.STREAM_STATUS, params={"user_id": "1234"}),
        )

        assert [r.status_code for r in results] == [200, 200]
        assert twitch.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_unknown_kind_fails_before_io(self, settings):
        twitch = FakeTwitch()
        gateway = _gateway(settings, twitch)

        with pytest.raises(RequestError):
            await gateway.send("ban-user", "POST", body={})

        assert twitch.helix_requests == []
        assert twitch.refresh_calls == 0

    @pytest.mark.asyncio
    async def test_malformed_body(self, settings):
        twitch = FakeTwitch()
        gateway = _gateway(settings, twitch)

        with pytest.raises(RequestError):
            await gateway.send(EndpointKind.SUBSCRIPTION_CREATE, "POST", body=["not", "a", "dict"])

        assert twitch.helix_requests == []

    @pytest.mark.asyncio
    async def test_network_failure(self, settings):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        gateway = _gateway(settings, handler)
        with pytest.raises(NetworkError):
            await gateway.send(EndpointKind.USER_LOOKUP)


class TestConveniences:
    @pytest.mark.asyncio
    async def test_create_subscription_posts_json(self, settings):
        twitch = FakeTwitch(valid_token="old-token")
        gateway = _gateway(settings, twitch)
        body = {
            "type": "channel.channel_points_custom_reward_redemption.add",
            "version": "1",
            "condition": {"broadcaster_user_id": "1234"},
            "transport": {"method": "websocket", "session_id": "s1"},
        }

        await gateway.create_subscription(body)

        request = twitch.helix_requests[0]
        assert request.method == "POST"
        assert request.url.path == "/helix/eventsub/subscriptions"
        assert json.loads(request.content) == body

    @pytest.mark.asyncio
    async def test_lookup_user(self, settings):
        twitch = FakeTwitch(valid_token="old-token", helix_data=[{"id": "42", "login": "bob"}])
        gateway = _gateway(settings, twitch)

        user = await gateway.lookup_user("bob")

        assert user == {"id": "42", "login": "bob"}
        assert twitch.helix_requests[0].url.params["login"] == "bob"

    @pytest.mark.asyncio
    async def test_stream_status_offline(self, settings):
        twitch = FakeTwitch(valid_token="old-token", helix_data=[])
        gateway = _gateway(settings, twitch)

        assert await gateway.stream_status("1234") is None
        assert twitch.helix_requests[0].url.params["user_id"] == "1234"

    @pytest.mark.asyncio
    async def test_error_status_raises_network_error(self, settings):
        gateway = _gateway(settings, lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(NetworkError):
            await gateway.lookup_user()
