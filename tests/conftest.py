"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import pytest

_CHAINFEED_ENV_VARS = (
    "CHAINFEED_WSS_URL",
    "CHAINFEED_LOG_LEVEL",
    "CHAINFEED_BUS_CAPACITY",
    "CHAINFEED_MAX_IN_FLIGHT",
    "CHAINFEED_CONNECT_TIMEOUT_S",
)


@pytest.fixture
def clean_chainfeed_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every ``CHAINFEED_*`` variable so tests start from defaults."""
    for name in _CHAINFEED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
