"""
Settings Store — the on-disk JSON key/value file.

Holds user state that survives restarts: client credentials, the OAuth
token pair, the broadcaster id and the OBS names. Tokens refreshed at
runtime are written back here.

Usage:
    store = SettingsStore(Path("appsettings.json"))
    client_id = store.get_value("client_id")
    store.set_value("access_token", "abc")
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

TWITCH_KEYS = ("client_id", "client_secret", "refresh_token", "channel_id")
OBS_KEYS = (
    "obs_host",
    "obs_port",
    "obs_password",
    "obs_scene",
    "obs_mic_name",
    "obs_source_name",
)


class SettingsStore:
    """JSON file backed settings. A missing file reads as empty."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            logger.info("Settings file %s not found, starting empty", self.path)
            return {}
        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
        if not isinstance(raw, dict):
            raise ValueError(f"Settings file {self.path} must hold a JSON object")
        return {str(k): "" if v is None else str(v) for k, v in raw.items()}

    def get_value(self, key: str) -> str | None:
        value = self._data.get(key)
        return value if value else None

    def set_value(self, key: str, value: str) -> None:
        """Update one key and persist the whole file atomically."""
        with self._lock:
            self._data[key] = value
            self._write()
        logger.debug("Settings updated: %s", key)

    def missing(self, keys: Iterable[str]) -> list[str]:
        """Keys that are absent or blank."""
        return [key for key in keys if not (self._data.get(key) or "").strip()]

    def as_dict(self) -> dict[str, str]:
        return dict(self._data)

    def _write(self) -> None:
        directory = self.path.parent if str(self.path.parent) else Path(".")
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".settings-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
