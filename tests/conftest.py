from __future__ import annotations

import pytest

import toolrelay.config as config_module
from toolrelay.config import ToolRelayConfig


@pytest.fixture(autouse=True)
def relay_config(monkeypatch) -> ToolRelayConfig:
    """Start every test from the built-in defaults instead of a local toolrelay.json."""
    cfg = ToolRelayConfig()
    monkeypatch.setattr(config_module, "_config", cfg)
    return cfg
