"""Fixed allow-list of the Twitch endpoints the bridge talks to."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from eventsub_bridge.core.config import ApiConfig
from eventsub_bridge.core.errors import RequestError


class EndpointKind(str, Enum):
    SUBSCRIPTION_CREATE = "subscription-create"
    STREAM_STATUS = "stream-status"
    USER_LOOKUP = "user-lookup"
    TOKEN_REFRESH = "token-refresh"
    TOKEN_VALIDATE = "token-validate"


@dataclass(frozen=True)
class Endpoint:
    kind: EndpointKind
    url: str
    methods: frozenset[str]


def build_endpoints(api: ApiConfig) -> dict[EndpointKind, Endpoint]:
    helix = api.helix_base.rstrip("/")
    oauth = api.oauth_base.rstrip("/")
    return {
        EndpointKind.SUBSCRIPTION_CREATE: Endpoint(
            EndpointKind.SUBSCRIPTION_CREATE,
            f"{helix}/eventsub/subscriptions",
            frozenset({"POST"}),
        ),
        EndpointKind.STREAM_STATUS: Endpoint(
            EndpointKind.STREAM_STATUS, f"{helix}/streams", frozenset({"GET"})
        ),
        EndpointKind.USER_LOOKUP: Endpoint(
            EndpointKind.USER_LOOKUP, f"{helix}/users", frozenset({"GET"})
        ),
        EndpointKind.TOKEN_REFRESH: Endpoint(
            EndpointKind.TOKEN_REFRESH, f"{oauth}/token", frozenset({"POST"})
        ),
        EndpointKind.TOKEN_VALIDATE: Endpoint(
            EndpointKind.TOKEN_VALIDATE, f"{oauth}/validate", frozenset({"GET"})
        ),
    }


def resolve(
    endpoints: dict[EndpointKind, Endpoint], kind: EndpointKind | str, method: str
) -> Endpoint:
    """Look up an endpoint, failing before any I/O on unknown kinds or methods."""
    try:
        key = EndpointKind(kind)
    except ValueError:
        raise RequestError(f"Unknown endpoint kind: {kind!r}") from None
    endpoint = endpoints.get(key)
    if endpoint is None:
        raise RequestError(f"Endpoint not configured: {key.value}")
    if method.upper() not in endpoint.methods:
        raise RequestError(
            f"Method {method.upper()} not supported for {key.value} "
            f"(allowed: {', '.join(sorted(endpoint.methods))})"
        )
    return endpoint
