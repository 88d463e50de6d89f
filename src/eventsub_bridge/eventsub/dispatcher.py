"""
Notification Dispatcher — routes each decoded envelope to one handler.

Control messages go back to the session controller (welcome re-registers
subscriptions, reconnect asks for a transport switch). Notifications are
routed by event variant; unknown message and event kinds are logged and
dropped. Handlers run sequentially on the caller's flow of control, so a
slow handler delays the next message on purpose: ordering within a session
is preserved.
"""

from __future__ import annotations

import logging
from typing import Protocol

from eventsub_bridge.core.errors import ProtocolError
from eventsub_bridge.eventsub.messages import (
    ChatMessage,
    Envelope,
    Notification,
    RedemptionAdded,
    Revocation,
    SessionKeepalive,
    SessionReconnect,
    SessionWelcome,
    UnknownEvent,
    parse_envelope,
)
from eventsub_bridge.handlers.chat import ChatCommandHandler
from eventsub_bridge.handlers.redemption import RedemptionHandler

logger = logging.getLogger(__name__)


class SessionController(Protocol):
    async def on_welcome(self, message: SessionWelcome) -> None: ...

    def request_reconnect(self, reconnect_url: str) -> None: ...


class NotificationDispatcher:
    def __init__(
        self,
        controller: SessionController,
        redemptions: RedemptionHandler | None = None,
        chat: ChatCommandHandler | None = None,
    ):
        self._controller = controller
        self._redemptions = redemptions
        self._chat = chat

    async def dispatch(self, document: str) -> Envelope | None:
        """Parse and route one document. Malformed messages are dropped."""
        try:
            envelope = parse_envelope(document)
        except ProtocolError as e:
            logger.warning("Dropping malformed message: %s", e)
            return None
        await self.route(envelope)
        return envelope

    async def route(self, envelope: Envelope) -> None:
        if isinstance(envelope, SessionWelcome):
            await self._controller.on_welcome(envelope)
        elif isinstance(envelope, SessionKeepalive):
            pass
        elif isinstance(envelope, SessionReconnect):
            logger.info("Server requested reconnect to %s", envelope.reconnect_url)
            self._controller.request_reconnect(envelope.reconnect_url)
        elif isinstance(envelope, Notification):
            await self._notify(envelope)
        elif isinstance(envelope, Revocation):
            logger.warning(
                "Subscription %s revoked (status=%s)",
                envelope.subscription_type,
                envelope.status,
                extra={"subscription_type": envelope.subscription_type, "status": envelope.status},
            )
        else:
            logger.warning("Unhandled message type: %s", envelope.metadata.message_type)

    async def _notify(self, notification: Notification) -> None:
        event = notification.event
        try:
            if isinstance(event, RedemptionAdded) and self._redemptions is not None:
                await self._redemptions.handle(event)
            elif isinstance(event, ChatMessage) and self._chat is not None:
                await self._chat.handle(event)
            elif isinstance(event, UnknownEvent):
                logger.info("Unhandled event type: %s", event.event_type)
            else:
                logger.debug("No handler configured for %s", notification.event_type)
        except Exception as e:
            logger.error(
                "Error handling notification %s: %s",
                notification.event_type,
                e,
                exc_info=True,
                extra={"event_type": notification.event_type},
            )
