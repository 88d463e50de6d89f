"""
Bridge Configuration — runtime tuning from environment variables.

Reads from environment variables (and a local .env) with sensible defaults.
User state such as tokens and OBS names lives in the JSON settings file
(see eventsub_bridge.core.settings), not here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _split_csv(raw: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class EventSubConfig:
    """EventSub WebSocket session settings."""

    url: str = "wss://eventsub.wss.twitch.tv/ws"
    # Reconnection: fixed delay, bounded attempts
    reconnect_attempts: int = 5
    reconnect_delay: float = 2.5  # seconds
    welcome_timeout: float = 10.0
    keepalive_grace: float = 5.0  # added to the server's keepalive timeout

    @classmethod
    def from_env(cls) -> EventSubConfig:
        return cls(
            url=os.getenv("EVENTSUB_URL", "wss://eventsub.wss.twitch.tv/ws"),
            reconnect_attempts=int(os.getenv("EVENTSUB_RECONNECT_ATTEMPTS", "5")),
            reconnect_delay=float(os.getenv("EVENTSUB_RECONNECT_DELAY", "2.5")),
            welcome_timeout=float(os.getenv("EVENTSUB_WELCOME_TIMEOUT", "10.0")),
            keepalive_grace=float(os.getenv("EVENTSUB_KEEPALIVE_GRACE", "5.0")),
        )


@dataclass(frozen=True)
class ApiConfig:
    """Twitch REST and OAuth endpoints."""

    helix_base: str = "https://api.twitch.tv/helix"
    oauth_base: str = "https://id.twitch.tv/oauth2"
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> ApiConfig:
        return cls(
            helix_base=os.getenv("EVENTSUB_HELIX_BASE", "https://api.twitch.tv/helix"),
            oauth_base=os.getenv("EVENTSUB_OAUTH_BASE", "https://id.twitch.tv/oauth2"),
            timeout=float(os.getenv("EVENTSUB_API_TIMEOUT", "10.0")),
        )


@dataclass(frozen=True)
class RedeemConfig:
    """Channel point redemption behaviour."""

    voice_ban_title: str = "IRL voice ban"
    voice_ban_seconds: float = 120.0
    tick_seconds: float = 1.0
    report_every: float = 30.0  # seconds between remaining-time log lines
    dev_chatters: tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> RedeemConfig:
        return cls(
            voice_ban_title=os.getenv("EVENTSUB_VOICE_BAN_TITLE", "IRL voice ban"),
            voice_ban_seconds=float(os.getenv("EVENTSUB_VOICE_BAN_SECONDS", "120")),
            tick_seconds=float(os.getenv("EVENTSUB_TICK_SECONDS", "1.0")),
            report_every=float(os.getenv("EVENTSUB_REPORT_EVERY", "30")),
            dev_chatters=_split_csv(os.getenv("EVENTSUB_DEV_CHATTERS", "")),
        )


@dataclass(frozen=True)
class ObsConfig:
    """OBS WebSocket connection behaviour."""

    connect_attempts: int = 10
    connect_delay: float = 5.0
    request_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> ObsConfig:
        return cls(
            connect_attempts=int(os.getenv("EVENTSUB_OBS_CONNECT_ATTEMPTS", "10")),
            connect_delay=float(os.getenv("EVENTSUB_OBS_CONNECT_DELAY", "5.0")),
            request_timeout=float(os.getenv("EVENTSUB_OBS_REQUEST_TIMEOUT", "5.0")),
        )


@dataclass(frozen=True)
class BridgeConfig:
    """Root configuration."""

    eventsub: EventSubConfig = field(default_factory=EventSubConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    redeem: RedeemConfig = field(default_factory=RedeemConfig)
    obs: ObsConfig = field(default_factory=ObsConfig)
    settings_path: str = "appsettings.json"
    dev_mode: bool = False

    @classmethod
    def from_env(cls, dev_mode: bool | None = None) -> BridgeConfig:
        if dev_mode is None:
            dev_mode = os.getenv("EVENTSUB_DEV_MODE", "false").lower() == "true"
        default_path = "devmodesettings.json" if dev_mode else "appsettings.json"
        return cls(
            eventsub=EventSubConfig.from_env(),
            api=ApiConfig.from_env(),
            redeem=RedeemConfig.from_env(),
            obs=ObsConfig.from_env(),
            settings_path=os.getenv("EVENTSUB_SETTINGS_PATH", default_path),
            dev_mode=dev_mode,
        )


# Built at import time; reload_config() rebuilds it after env changes
config = BridgeConfig.from_env()


def reload_config(dev_mode: bool | None = None) -> BridgeConfig:
    """Rebuild the singleton from the current environment."""
    global config
    config = BridgeConfig.from_env(dev_mode=dev_mode)
    return config
