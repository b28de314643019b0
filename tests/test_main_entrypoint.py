"""Tests for the ``python -m escape_hub`` entry point."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

import escape_hub.__main__ as entrypoint
from escape_hub.settings import HubSettings


class _FakeApp:
    def __init__(self) -> None:
        self.run_kwargs: dict[str, Any] = {}

    def run(self, **kwargs: Any) -> None:
        self.run_kwargs = kwargs


def test_main_loads_settings_and_runs_app(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """The entry point wires settings into the app and starts the server."""
    cfg = tmp_path / "hub.yaml"
    cfg.write_text("log_level: WARNING\n", encoding="utf-8")
    fake = _FakeApp()
    received: list[HubSettings] = []

    def fake_create_app(settings: HubSettings) -> _FakeApp:
        received.append(settings)
        return fake

    monkeypatch.setattr(entrypoint, "create_app", fake_create_app)
    monkeypatch.delenv("ESCAPE_HUB_LOG_LEVEL", raising=False)

    entrypoint.main(["--settings", str(cfg), "--port", "8123"])

    assert received[0].log_level == "WARNING"
    assert fake.run_kwargs == {"host": "127.0.0.1", "port": 8123, "debug": False}
