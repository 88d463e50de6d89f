"""Subscriptions the bridge registers on every new session."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from eventsub_bridge.eventsub.messages import CHAT_MESSAGE, REDEMPTION_ADD


@dataclass(frozen=True)
class Subscription:
    """One registration, bound to the session that created it."""

    event_type: str
    version: str
    condition: dict[str, str]
    session_id: str
    method: str = "websocket"

    def to_body(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "version": self.version,
            "condition": dict(self.condition),
            "transport": {"method": self.method, "session_id": self.session_id},
        }


@dataclass(frozen=True)
class SubscriptionSpec:
    """What to subscribe to, independent of any session."""

    event_type: str
    version: str = "1"
    include_user_id: bool = False
    extra_condition: dict[str, str] = field(default_factory=dict)

    def bind(self, session_id: str, broadcaster_id: str) -> Subscription:
        condition = {"broadcaster_user_id": broadcaster_id}
        if self.include_user_id:
            condition["user_id"] = broadcaster_id
        condition.update(self.extra_condition)
        return Subscription(
            event_type=self.event_type,
            version=self.version,
            condition=condition,
            session_id=session_id,
        )


def default_subscriptions(dev_mode: bool = False) -> list[SubscriptionSpec]:
    specs = [SubscriptionSpec(REDEMPTION_ADD)]
    if dev_mode:
        specs.append(SubscriptionSpec(CHAT_MESSAGE, include_user_id=True))
    return specs
