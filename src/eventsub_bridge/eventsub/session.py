"""
Session Manager — owns the EventSub socket, the session id and the
subscription set, and drives the reconnect state machine.

    Disconnected -> Connecting -> AwaitingWelcome -> Active -> Closing -> Disconnected
                         ^                              |
                         +-------- Reconnecting <-------+  (fault or server directive)

The receive loop in run() is the only writer of session state. Other
components talk to it through on_welcome(), request_reconnect() and
shutdown(). Subscriptions are scoped to a session id upstream, so every
new session re-registers all of them before it counts as active.

Recovery from transport faults is a bounded loop with a fixed delay;
running out of attempts raises ReconnectExhausted to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Sequence

from eventsub_bridge.api.gateway import RestGateway
from eventsub_bridge.auth.credentials import CredentialStore
from eventsub_bridge.core.config import EventSubConfig
from eventsub_bridge.core.errors import (
    NetworkError,
    ProtocolError,
    ReconnectExhausted,
    TransportFault,
)
from eventsub_bridge.eventsub.dispatcher import NotificationDispatcher
from eventsub_bridge.eventsub.frames import MessageFramer
from eventsub_bridge.eventsub.messages import SessionWelcome, parse_envelope
from eventsub_bridge.eventsub.subscriptions import Subscription, SubscriptionSpec
from eventsub_bridge.eventsub.transport import (
    NORMAL_CLOSURE,
    Transport,
    WebSocketTransport,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_WELCOME = "awaiting_welcome"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    CLOSING = "closing"


@dataclass(frozen=True)
class Session:
    """One welcomed connection. Replaced, never mutated, on reconnect."""

    session_id: str
    transport: Transport
    url: str
    subscriptions: tuple[Subscription, ...] = ()


class SessionManager:
    def __init__(
        self,
        credentials: CredentialStore,
        gateway: RestGateway,
        broadcaster_id: str,
        subscriptions: Sequence[SubscriptionSpec],
        config: EventSubConfig | None = None,
        transport_factory: Callable[[], Transport] = WebSocketTransport,
        stop: asyncio.Event | None = None,
    ):
        self._credentials = credentials
        self._gateway = gateway
        self._broadcaster_id = broadcaster_id
        self._wanted = tuple(subscriptions)
        self._config = config or EventSubConfig()
        self._transport_factory = transport_factory
        self._stop = stop or asyncio.Event()

        self.state = SessionState.DISCONNECTED
        self._session: Session | None = None
        self._transport: Transport | None = None
        self._url: str = self._config.url
        self._documents: AsyncIterator[str] | None = None
        self._keepalive: float | None = None
        self._reconnect_url: str | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def stop_event(self) -> asyncio.Event:
        return self._stop

    # ─── Entry points ────────────────────────────────────────────

    async def run(self, dispatcher: NotificationDispatcher) -> None:
        """Connect and process messages until shutdown.

        Raises ReconnectExhausted when recovery gives up and AuthError when
        the credentials can no longer be refreshed.
        """
        if self.state is not SessionState.DISCONNECTED:
            raise RuntimeError("Session manager is already running")
        try:
            try:
                await self._establish(self._config.url)
            except (TransportFault, NetworkError) as e:
                if self._stop.is_set():
                    return
                logger.warning("Initial connection failed: %s", e)
                if not await self._recover(e):
                    return

            while not self._stop.is_set():
                try:
                    await self._pump(dispatcher)
                except (TransportFault, NetworkError) as e:
                    if self._stop.is_set():
                        break
                    logger.warning("Connection to EventSub lost: %s", e)
                    if not await self._recover(e):
                        break
        finally:
            await self._teardown()

    async def on_welcome(self, message: SessionWelcome) -> None:
        """Bind a new session and register every subscription on it."""
        transport = self._transport
        if transport is None:
            logger.warning("Welcome received without a live transport, ignoring")
            return
        if message.keepalive_timeout_seconds is not None:
            self._keepalive = message.keepalive_timeout_seconds

        log_extra = {"session_id": message.session_id}
        logger.info("Session welcome received", extra=log_extra)

        registered: list[Subscription] = []
        for wanted in self._wanted:
            subscription = wanted.bind(message.session_id, self._broadcaster_id)
            resp = await self._gateway.create_subscription(subscription.to_body())
            if resp.is_success:
                logger.info(
                    "Subscribed to %s",
                    subscription.event_type,
                    extra={**log_extra, "subscription_type": subscription.event_type},
                )
                registered.append(subscription)
            else:
                logger.error(
                    "Failed to subscribe to %s (HTTP %d): %s",
                    subscription.event_type,
                    resp.status_code,
                    resp.text[:200],
                    extra={**log_extra, "status": resp.status_code},
                )

        self._session = Session(
            session_id=message.session_id,
            transport=transport,
            url=self._url,
            subscriptions=tuple(registered),
        )
        self.state = SessionState.ACTIVE

    def request_reconnect(self, reconnect_url: str) -> None:
        """Ask the receive loop to move to ``reconnect_url`` after the current message."""
        self._reconnect_url = reconnect_url

    async def shutdown(self) -> None:
        """Signal shutdown and close the socket with a normal closure."""
        self._stop.set()
        transport = self._transport
        if transport is not None:
            await transport.close(NORMAL_CLOSURE, "Shutting down")

    # ─── Internals ───────────────────────────────────────────────

    async def _establish(self, url: str) -> None:
        """connect -> welcome -> subscribe. Raises TransportFault on any handshake problem."""
        self.state = SessionState.CONNECTING
        token = await self._credentials.ensure_valid()
        headers = {
            "Client-Id": self._credentials.client_id,
            "Authorization": f"Bearer {token}",
        }
        transport = self._transport_factory()
        await transport.connect(url, headers)
        logger.info("Connected to EventSub at %s", url)

        self._transport = transport
        self._url = url
        self._keepalive = None
        self._documents = MessageFramer().documents(transport.frames())
        self.state = SessionState.AWAITING_WELCOME

        document = await self._next_document(self._config.welcome_timeout)
        try:
            envelope = parse_envelope(document)
        except ProtocolError as e:
            raise TransportFault(f"Unreadable handshake message: {e}") from e
        if not isinstance(envelope, SessionWelcome):
            raise TransportFault(
                f"Expected session_welcome, got {envelope.metadata.message_type}"
            )
        await self.on_welcome(envelope)

    async def _pump(self, dispatcher: NotificationDispatcher) -> None:
        while not self._stop.is_set():
            timeout = None
            if self._keepalive is not None:
                timeout = self._keepalive + self._config.keepalive_grace
            document = await self._next_document(timeout)
            await dispatcher.dispatch(document)

            if self._reconnect_url is not None and not self._stop.is_set():
                url, self._reconnect_url = self._reconnect_url, None
                await self._follow_reconnect(url)

    async def _next_document(self, timeout: float | None) -> str:
        if self._documents is None:
            raise TransportFault("No open connection")
        if timeout is None:
            return await anext(self._documents)
        try:
            return await asyncio.wait_for(anext(self._documents), timeout)
        except asyncio.TimeoutError:
            raise TransportFault(f"No message received within {timeout:.0f}s") from None

    async def _follow_reconnect(self, url: str) -> None:
        self.state = SessionState.RECONNECTING
        logger.info("Disconnecting from EventSub for server-requested reconnect")
        await self._discard("Reconnecting")
        await self._establish(url)
        logger.info("Reconnected to EventSub via %s", url)

    async def _recover(self, cause: BaseException) -> bool:
        """Bounded retry loop. True once reconnected, False on shutdown."""
        self.state = SessionState.RECONNECTING
        await self._discard("Reconnecting")

        attempts = self._config.reconnect_attempts
        last_error: BaseException = cause
        for attempt in range(1, attempts + 1):
            logger.warning(
                "Attempting to reconnect... (attempt %d/%d)",
                attempt,
                attempts,
                extra={"attempt": attempt},
            )
            if await self._pause(self._config.reconnect_delay):
                return False
            try:
                await self._establish(self._config.url)
            except (TransportFault, NetworkError) as e:
                last_error = e
                logger.warning(
                    "Reconnection attempt %d failed: %s", attempt, e, extra={"attempt": attempt}
                )
                self.state = SessionState.RECONNECTING
                await self._discard("Reconnecting")
                continue
            logger.info("Reconnected successfully!", extra={"attempt": attempt})
            return True

        self.state = SessionState.DISCONNECTED
        logger.error("Max reconnection attempts reached. Could not reconnect to EventSub.")
        raise ReconnectExhausted(attempts, last_error) from last_error

    async def _pause(self, delay: float) -> bool:
        """Wait ``delay`` seconds. True if shutdown was signalled meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _discard(self, reason: str) -> None:
        transport, self._transport = self._transport, None
        self._session = None
        self._documents = None
        self._keepalive = None
        if transport is None:
            return
        try:
            await transport.close(NORMAL_CLOSURE, reason)
        except (TransportFault, OSError) as e:
            logger.debug("Ignoring error while closing transport: %s", e)

    async def _teardown(self) -> None:
        if self._transport is not None:
            self.state = SessionState.CLOSING
            await self._discard("Shutting down")
        self._reconnect_url = None
        self.state = SessionState.DISCONNECTED
        logger.info("EventSub session closed")
