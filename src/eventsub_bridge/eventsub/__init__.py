"""EventSub WebSocket session: framing, decoding, dispatch and reconnects."""

from eventsub_bridge.eventsub.dispatcher import NotificationDispatcher
from eventsub_bridge.eventsub.session import Session, SessionManager, SessionState

__all__ = ["NotificationDispatcher", "Session", "SessionManager", "SessionState"]
