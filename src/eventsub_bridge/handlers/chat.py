"""Dev mode chat commands for exercising the automations without redeeming."""

from __future__ import annotations

import logging

from eventsub_bridge.automation.base import AutomationSink
from eventsub_bridge.eventsub.messages import ChatMessage
from eventsub_bridge.handlers.redemption import RedemptionHandler

logger = logging.getLogger(__name__)


class ChatCommandHandler:
    """Runs ``test``, ``mute``, ``unmute``, ``show`` and ``hide`` for allowed chatters."""

    def __init__(
        self,
        sink: AutomationSink,
        redemptions: RedemptionHandler,
        source_name: str,
        allowed_chatters: tuple[str, ...] | list[str],
    ):
        self._sink = sink
        self._redemptions = redemptions
        self._source_name = source_name
        self._allowed = {login.lower() for login in allowed_chatters}

    async def handle(self, event: ChatMessage) -> None:
        login = event.chatter_login.lower()
        if login not in self._allowed:
            return
        command = event.text.strip().lower()
        if command == "test":
            await self._redemptions.voice_ban(event.chatter_login)
        elif command == "mute":
            await self._sink.set_microphone_muted(True)
        elif command == "unmute":
            await self._sink.set_microphone_muted(False)
        elif command == "show":
            await self._sink.set_source_visible(self._source_name, True)
        elif command == "hide":
            await self._sink.set_source_visible(self._source_name, False)
        else:
            return
        logger.info("Chat command %r from %s handled", command, login)
