"""Tests for the ``python -m tracekit`` server entry point."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

import tracekit.__main__ as entrypoint
from tracekit.config import Settings
from tracekit.main import app


def test_serves_app_on_configured_host_and_port(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = Settings(_env_file=None, api_host="0.0.0.0", api_port=9031)
    run = MagicMock()
    monkeypatch.setattr(entrypoint, "get_settings", lambda: settings)
    monkeypatch.setattr(entrypoint.uvicorn, "run", run)

    entrypoint.main()

    run.assert_called_once_with(app, host="0.0.0.0", port=9031)


def test_default_binds_to_localhost() -> None:
    settings = Settings(_env_file=None)
    assert settings.api_host == "127.0.0.1"
    assert settings.api_port == 8000
