"""
Channel point redemption handler.

The voice ban redemption mutes the microphone and reveals the overlay
source, counts down a fixed interval, then reverts both. The handler runs
inline on the receive loop so events stay in order; a lock keeps one
redemption's apply/revert pair from interleaving with another's (the dev
chat "test" command also reaches voice_ban()). The revert lives in a
finally block and the countdown stops early on shutdown, so neither
shutdown nor cancellation leaves the microphone muted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from eventsub_bridge.automation.base import AutomationSink
from eventsub_bridge.core.config import RedeemConfig
from eventsub_bridge.eventsub.messages import RedemptionAdded

logger = logging.getLogger(__name__)

TickCallback = Callable[[float], None]


def format_remaining(seconds: float) -> str:
    whole = max(0, int(round(seconds)))
    return f"{whole // 60:02d}:{whole % 60:02d}"


class RedemptionHandler:
    def __init__(
        self,
        sink: AutomationSink,
        source_name: str,
        config: RedeemConfig | None = None,
        stop: asyncio.Event | None = None,
        on_tick: TickCallback | None = None,
    ):
        self._sink = sink
        self._source_name = source_name
        self._config = config or RedeemConfig()
        self._stop = stop
        self._on_tick = on_tick
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def handle(self, event: RedemptionAdded) -> None:
        if event.reward_title == self._config.voice_ban_title:
            await self.voice_ban(event.user_name)
        else:
            logger.info("Unknown reward redeemed: %s (by %s)", event.reward_title, event.user_name)

    async def voice_ban(self, user_name: str) -> None:
        if self._lock.locked():
            logger.info("Voice ban already running, %s's request is queued", user_name)
        async with self._lock:
            logger.info("%s requested the Voice Ban Redeem", user_name)
            await self._apply()
            try:
                await self._countdown(self._config.voice_ban_seconds)
            finally:
                await self._revert()
            logger.info("Voice Ban Redeem request completed!")

    async def _apply(self) -> None:
        muted = await self._sink.set_microphone_muted(True)
        shown = await self._sink.set_source_visible(self._source_name, True)
        if not (muted or shown):
            logger.warning("Voice ban could not be applied, reverting after the countdown anyway")
        elif muted != shown:
            failed = "overlay source" if muted else "microphone mute"
            logger.warning("Voice ban only partly applied: %s failed", failed)

    async def _revert(self) -> None:
        # Both calls always run, whatever the apply outcome was.
        unmuted = await self._sink.set_microphone_muted(False)
        hidden = await self._sink.set_source_visible(self._source_name, False)
        if not (unmuted and hidden):
            logger.warning(
                "Voice ban revert incomplete (unmuted=%s, source hidden=%s)", unmuted, hidden
            )

    async def _countdown(self, seconds: float) -> None:
        logger.info("Voice ban active. Countdown: %s", format_remaining(seconds))
        tick = self._config.tick_seconds
        remaining = seconds
        since_report = 0.0
        while remaining > 0:
            self._report(remaining)
            step = min(tick, remaining)
            if await self._wait(step):
                logger.warning("Shutdown requested, ending voice ban early")
                return
            remaining -= step
            since_report += step
            if remaining > 0 and since_report >= self._config.report_every:
                logger.info("Remaining time: %s", format_remaining(remaining))
                since_report = 0.0
        self._report(0)

    async def _wait(self, delay: float) -> bool:
        """Sleep for ``delay``. True if shutdown was signalled meanwhile."""
        if self._stop is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _report(self, remaining: float) -> None:
        if self._on_tick is not None:
            self._on_tick(remaining)
