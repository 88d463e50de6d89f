"""Twitch EventSub listener that drives OBS automations from channel point redemptions."""

__version__ = "0.1.0"
