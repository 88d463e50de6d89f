"""Shared fixtures: a settings file in tmp_path and a recording sink."""

from __future__ import annotations

import json

import pytest

from eventsub_bridge.core.settings import SettingsStore
from tests.helpers import RecordingSink

SETTINGS = {
    "client_id": "client-abc",
    "client_secret": "secret-xyz",
    "access_token": "old-token",
    "refresh_token": "refresh-1",
    "channel_id": "1234",
}


@pytest.fixture
def settings_path(tmp_path):
    path = tmp_path / "appsettings.json"
    path.write_text(json.dumps(SETTINGS), encoding="utf-8")
    return path


@pytest.fixture
def settings(settings_path):
    return SettingsStore(settings_path)


@pytest.fixture
def sink():
    return RecordingSink()
