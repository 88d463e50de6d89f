"""
AutomationSink — the side-effect interface notification handlers call.

Every call is best effort: implementations log failures and return False
instead of raising, so one unreachable backend never aborts event
processing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AutomationSink(ABC):
    @abstractmethod
    async def set_microphone_muted(self, muted: bool) -> bool:
        """Mute or unmute the configured microphone input. True on success."""

    @abstractmethod
    async def set_source_visible(self, name: str, visible: bool) -> bool:
        """Show or hide a source in the configured scene. True on success."""
