"""
REST Gateway — stateless request executor against the Twitch API.

Attaches Client-Id and the current bearer token to every call. On HTTP 401
it asks the Credential Store for a refresh and retries exactly once; a
second 401 on the same call is a terminal AuthError.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from eventsub_bridge.api.endpoints import (
    Endpoint,
    EndpointKind,
    build_endpoints,
    resolve,
)
from eventsub_bridge.auth.credentials import CredentialStore
from eventsub_bridge.core.config import ApiConfig
from eventsub_bridge.core.errors import AuthError, NetworkError, RequestError

logger = logging.getLogger(__name__)


class RestGateway:
    def __init__(
        self,
        credentials: CredentialStore,
        api: ApiConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        api = api or ApiConfig()
        self._credentials = credentials
        self._endpoints = build_endpoints(api)
        self._client = client or httpx.AsyncClient(timeout=api.timeout)
        self._owns_client = client is None

    async def send(
        self,
        kind: EndpointKind | str,
        method: str = "GET",
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Execute one request, refreshing the token once on 401."""
        endpoint = resolve(self._endpoints, kind, method)
        if body is not None and not isinstance(body, dict):
            raise RequestError(f"Request body must be a JSON object, got {type(body).__name__}")

        token = self._credentials.get_access_token()
        resp = await self._request(endpoint, method, token, body, params)
        if resp.status_code != 401:
            return resp

        logger.warning(
            "OAuth token is invalid or expired (%s). Attempting to refresh...",
            endpoint.kind.value,
        )
        token = await self._credentials.refresh(stale_token=token)
        resp = await self._request(endpoint, method, token, body, params)
        if resp.status_code == 401:
            raise AuthError(
                f"{endpoint.kind.value} still unauthorized after token refresh"
            )
        return resp

    async def _request(
        self,
        endpoint: Endpoint,
        method: str,
        token: str,
        body: dict[str, Any] | None,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        headers = {
            "Client-Id": self._credentials.client_id,
            "Authorization": f"Bearer {token}",
        }
        try:
            return await self._client.request(
                method.upper(), endpoint.url, json=body, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error("HTTP request to %s failed: %s", endpoint.kind.value, e)
            raise NetworkError(f"{endpoint.kind.value} request failed: {e}") from e

    # ─── Convenience calls ───────────────────────────────────────

    async def create_subscription(self, body: dict[str, Any]) -> httpx.Response:
        return await self.send(EndpointKind.SUBSCRIPTION_CREATE, "POST", body=body)

    async def lookup_user(self, login: str | None = None) -> dict[str, Any] | None:
        """Return the user record for ``login``, or the token's owner."""
        params = {"login": login} if login else None
        resp = await self.send(EndpointKind.USER_LOOKUP, "GET", params=params)
        users = _data(resp)
        return users[0] if users else None

    async def stream_status(self, user_id: str) -> dict[str, Any] | None:
        """Return the live stream record for ``user_id``, or None when offline."""
        resp = await self.send(
            EndpointKind.STREAM_STATUS, "GET", params={"user_id": user_id}
        )
        streams = _data(resp)
        return streams[0] if streams else None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _data(resp: httpx.Response) -> list[dict[str, Any]]:
    if resp.status_code >= 400:
        raise NetworkError(f"Twitch API returned HTTP {resp.status_code}: {resp.text[:200]}")
    return resp.json().get("data", [])
