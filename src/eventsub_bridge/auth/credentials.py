"""
Credential Store — the one owner of the OAuth token pair.

Every caller reads the access token just in time through
get_access_token(); nobody keeps a copy across calls. Refreshes are
single-flight: callers that observed the same expired token wait on one
network refresh and all receive its result.

Refreshed tokens are written back to the settings file.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from eventsub_bridge.api.endpoints import Endpoint, EndpointKind, build_endpoints
from eventsub_bridge.core.config import ApiConfig
from eventsub_bridge.core.errors import AuthError, NetworkError
from eventsub_bridge.core.settings import SettingsStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: str
    client_id: str
    client_secret: str


class CredentialStore:
    """Holds the current token pair and shares one in-flight refresh."""

    def __init__(
        self,
        settings: SettingsStore,
        api: ApiConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        api = api or ApiConfig()
        self._settings = settings
        endpoints = build_endpoints(api)
        self._validate_endpoint: Endpoint = endpoints[EndpointKind.TOKEN_VALIDATE]
        self._refresh_endpoint: Endpoint = endpoints[EndpointKind.TOKEN_REFRESH]
        self._client = client or httpx.AsyncClient(timeout=api.timeout)
        self._owns_client = client is None
        self._credential = Credential(
            access_token=settings.get_value("access_token") or "",
            refresh_token=settings.get_value("refresh_token") or "",
            client_id=settings.get_value("client_id") or "",
            client_secret=settings.get_value("client_secret") or "",
        )
        self._inflight: asyncio.Future | None = None
        self._generation = 0

    @property
    def client_id(self) -> str:
        return self._credential.client_id

    @property
    def generation(self) -> int:
        """Number of successful refreshes so far."""
        return self._generation

    def get_access_token(self) -> str:
        return self._credential.access_token

    async def validate(self) -> bool:
        """Ask the OAuth server whether the current access token is still live."""
        token = self._credential.access_token
        if not token:
            return False
        try:
            resp = await self._client.get(
                self._validate_endpoint.url,
                headers={"Authorization": f"OAuth {token}"},
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Token validation request failed: {e}") from e
        if resp.status_code == 200:
            data = resp.json()
            logger.debug(
                "Access token valid (login=%s, expires_in=%s)",
                data.get("login"),
                data.get("expires_in"),
            )
            return True
        logger.info("Access token rejected by validate endpoint (HTTP %d)", resp.status_code)
        return False

    async def ensure_valid(self) -> str:
        """Return a validated access token, refreshing first if needed."""
        token = self._credential.access_token
        if await self.validate():
            return token
        logger.warning("Access token is invalid, refreshing for a new token...")
        return await self.refresh(stale_token=token)

    async def refresh(self, stale_token: str | None = None) -> str:
        """Replace the access token using the refresh token.

        Concurrent callers collapse onto one network call and all get its
        outcome, failure included. Pass the token you saw fail as
        ``stale_token``: if somebody already replaced it, the new token is
        returned without another refresh.
        """
        if stale_token is not None and stale_token != self._credential.access_token:
            logger.debug("Token already replaced, skipping refresh")
            return self._credential.access_token
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._do_refresh())
            self._inflight.add_done_callback(self._refresh_done)
        else:
            logger.debug("Refresh already in flight, waiting for it")
        # One cancelled waiter must not cancel the refresh for the others
        return await asyncio.shield(self._inflight)

    def _refresh_done(self, task: asyncio.Future) -> None:
        self._inflight = None
        if not task.cancelled():
            # Marks the exception retrieved even if every waiter went away
            task.exception()

    async def _do_refresh(self) -> str:
        current = self._credential
        if not current.refresh_token:
            raise AuthError("No refresh token stored. Re-authorize the application.")

        try:
            resp = await self._client.post(
                self._refresh_endpoint.url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": current.refresh_token,
                    "client_id": current.client_id,
                    "client_secret": current.client_secret,
                },
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Token refresh request failed: {e}") from e

        if resp.status_code in (400, 401, 403):
            logger.error("Refresh token rejected (HTTP %d)", resp.status_code)
            raise AuthError(
                f"Refresh token rejected (HTTP {resp.status_code}). "
                "Re-authorize the application."
            )
        if resp.status_code >= 400:
            raise NetworkError(f"Token refresh failed (HTTP {resp.status_code})")

        tokens = resp.json()
        access_token = tokens.get("access_token", "")
        if not access_token:
            raise AuthError("Token refresh response did not include an access token")
        refresh_token = tokens.get("refresh_token") or current.refresh_token

        self._credential = Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            client_id=current.client_id,
            client_secret=current.client_secret,
        )
        self._generation += 1

        self._settings.set_value("access_token", access_token)
        if refresh_token != current.refresh_token:
            self._settings.set_value("refresh_token", refresh_token)

        logger.info("Access token refreshed")
        return access_token

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
