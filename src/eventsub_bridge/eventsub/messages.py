"""
EventSub message types — typed envelopes decoded from JSON documents.

Control messages (welcome, keepalive, reconnect, revocation) and
notifications each get their own dataclass. Notification events are
decoded further into a closed set of event variants; anything else becomes
UnknownMessage / UnknownEvent so callers can log and move on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union
from urllib.parse import urlparse

from eventsub_bridge.core.errors import ProtocolError

REDEMPTION_ADD = "channel.channel_points_custom_reward_redemption.add"
CHAT_MESSAGE = "channel.chat.message"


class MessageType(str, Enum):
    WELCOME = "session_welcome"
    KEEPALIVE = "session_keepalive"
    RECONNECT = "session_reconnect"
    NOTIFICATION = "notification"
    REVOCATION = "revocation"


@dataclass(frozen=True)
class Metadata:
    message_id: str
    message_type: str
    message_timestamp: str = ""
    subscription_type: str | None = None


# ─── Notification events ─────────────────────────────────────


@dataclass(frozen=True)
class RedemptionAdded:
    user_name: str
    reward_title: str
    user_input: str = ""
    redemption_id: str = ""


@dataclass(frozen=True)
class ChatMessage:
    chatter_login: str
    text: str


@dataclass(frozen=True)
class UnknownEvent:
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)


NotificationEvent = Union[RedemptionAdded, ChatMessage, UnknownEvent]


# ─── Envelopes ───────────────────────────────────────────────


@dataclass(frozen=True)
class SessionWelcome:
    metadata: Metadata
    session_id: str
    keepalive_timeout_seconds: float | None = None


@dataclass(frozen=True)
class SessionKeepalive:
    metadata: Metadata


@dataclass(frozen=True)
class SessionReconnect:
    metadata: Metadata
    session_id: str
    reconnect_url: str


@dataclass(frozen=True)
class Notification:
    metadata: Metadata
    event_type: str
    event: NotificationEvent


@dataclass(frozen=True)
class Revocation:
    metadata: Metadata
    subscription_type: str
    status: str


@dataclass(frozen=True)
class UnknownMessage:
    metadata: Metadata


Envelope = Union[
    SessionWelcome,
    SessionKeepalive,
    SessionReconnect,
    Notification,
    Revocation,
    UnknownMessage,
]


def parse_envelope(document: str) -> Envelope:
    """Decode one complete JSON document. Raises ProtocolError on bad shapes."""
    try:
        data = json.loads(document)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("Message is not a JSON object")

    raw_meta = data.get("metadata")
    if not isinstance(raw_meta, dict) or not raw_meta.get("message_type"):
        raise ProtocolError("Message has no metadata.message_type")
    metadata = Metadata(
        message_id=str(raw_meta.get("message_id", "")),
        message_type=str(raw_meta["message_type"]),
        message_timestamp=str(raw_meta.get("message_timestamp", "")),
        subscription_type=raw_meta.get("subscription_type"),
    )
    payload = data.get("payload")
    if not isinstance(payload, dict):
        payload = {}

    try:
        kind = MessageType(metadata.message_type)
    except ValueError:
        return UnknownMessage(metadata)

    if kind is MessageType.WELCOME:
        session = _session(payload)
        return SessionWelcome(
            metadata,
            session_id=_require(session, "id"),
            keepalive_timeout_seconds=_keepalive_timeout(session),
        )
    if kind is MessageType.KEEPALIVE:
        return SessionKeepalive(metadata)
    if kind is MessageType.RECONNECT:
        session = _session(payload)
        url = _require(session, "reconnect_url")
        parsed = urlparse(url)
        if parsed.scheme not in ("ws", "wss") or not parsed.netloc:
            raise ProtocolError(f"Invalid reconnect_url: {url!r}")
        return SessionReconnect(metadata, session_id=str(session.get("id", "")), reconnect_url=url)
    if kind is MessageType.REVOCATION:
        subscription = payload.get("subscription") or {}
        return Revocation(
            metadata,
            subscription_type=str(subscription.get("type", "")),
            status=str(subscription.get("status", "")),
        )

    subscription = payload.get("subscription")
    if not isinstance(subscription, dict) or not subscription.get("type"):
        raise ProtocolError("Notification has no payload.subscription.type")
    event_type = str(subscription["type"])
    event = payload.get("event")
    if not isinstance(event, dict):
        raise ProtocolError(f"Notification {event_type} has no payload.event")
    return Notification(metadata, event_type=event_type, event=parse_event(event_type, event))


def parse_event(event_type: str, event: dict[str, Any]) -> NotificationEvent:
    if event_type == REDEMPTION_ADD:
        reward = event.get("reward") or {}
        return RedemptionAdded(
            user_name=str(event.get("user_name", "")),
            reward_title=str(reward.get("title", "")),
            user_input=str(event.get("user_input") or ""),
            redemption_id=str(event.get("id", "")),
        )
    if event_type == CHAT_MESSAGE:
        message = event.get("message") or {}
        return ChatMessage(
            chatter_login=str(event.get("chatter_user_login", "")),
            text=str(message.get("text", "")),
        )
    return UnknownEvent(event_type, event)


def _session(payload: dict[str, Any]) -> dict[str, Any]:
    session = payload.get("session")
    if not isinstance(session, dict):
        raise ProtocolError("Control message has no payload.session")
    return session


def _require(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if not value:
        raise ProtocolError(f"Missing required field: {key}")
    return str(value)


def _keepalive_timeout(session: dict[str, Any]) -> float | None:
    value = session.get("keepalive_timeout_seconds")
    if value is None:
        return None
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ProtocolError(f"Invalid keepalive_timeout_seconds: {value!r}")
    return float(value)
