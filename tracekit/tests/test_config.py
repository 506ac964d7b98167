"""Tests for tracking_config.yaml loading and validation, and env settings."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from tracekit.config import Settings
from tracekit.tracking.base import MotionType
from tracekit.tracking.config_loader import (
    ConfigValidationError,
    TrackingConfig,
    _validate_and_build,
    load_tracking_config,
    reload_tracking_config,
)


class TestConfigLoading:
    """Tests for loading tracking_config.yaml."""

    def test_load_default_config(self, tracking_config: TrackingConfig) -> None:
        """The bundled tracking_config.yaml loads without errors."""
        assert tracking_config.version == "1.0"
        assert tracking_config.moving

    def test_default_values(self, tracking_config: TrackingConfig) -> None:
        assert tracking_config.duty_cycle.required_motion_seconds == 3.0
        assert tracking_config.filter.max_horizontal_accuracy_m == 150.0
        assert tracking_config.buckets.window_seconds == 60
        assert tracking_config.upload.speed_accuracy == pytest.approx(0.07)
        assert tracking_config.schedule.heartbeat_interval_seconds == 30.0
        assert tracking_config.history.lookback_days == 1.0
        assert tracking_config.history.max_distance_m == 100

    def test_moving_set(self, tracking_config: TrackingConfig) -> None:
        for motion in ("walking", "running", "cycling", "automotive", "unknown"):
            assert tracking_config.is_moving(motion), motion
        assert not tracking_config.is_moving("stationary")

    def test_unrecognised_classification_counts_as_unknown(
        self, tracking_config: TrackingConfig
    ) -> None:
        assert MotionType.parse("hovering") is MotionType.UNKNOWN
        assert tracking_config.is_moving("hovering")

    def test_missing_sections_fall_back_to_defaults(self) -> None:
        config = _validate_and_build({})
        assert config.duty_cycle.required_motion_seconds == 3.0
        assert config.buckets.window_seconds == 60
        assert MotionType.UNKNOWN in config.moving


class TestConfigValidation:
    def test_negative_required_seconds_rejected(self) -> None:
        with pytest.raises(ConfigValidationError, match="required_motion_seconds"):
            _validate_and_build({"duty_cycle": {"required_motion_seconds": -1}})

    def test_zero_required_seconds_allowed(self) -> None:
        config = _validate_and_build({"duty_cycle": {"required_motion_seconds": 0}})
        assert config.duty_cycle.required_motion_seconds == 0.0

    def test_stationary_in_moving_set_rejected(self) -> None:
        with pytest.raises(ConfigValidationError, match="stationary"):
            _validate_and_build({"motion": {"moving": ["walking", "stationary"]}})

    def test_unknown_classification_rejected(self) -> None:
        with pytest.raises(ConfigValidationError, match="teleporting"):
            _validate_and_build({"motion": {"moving": ["teleporting"]}})

    def test_non_numeric_value_rejected(self) -> None:
        with pytest.raises(ConfigValidationError, match="must be a number"):
            _validate_and_build({"filter": {"max_horizontal_accuracy_m": "far"}})

    def test_errors_are_collected(self) -> None:
        raw = {
            "filter": {"max_horizontal_accuracy_m": 0},
            "buckets": {"window_seconds": 0},
            "schedule": {"heartbeat_interval_seconds": -5},
        }
        with pytest.raises(ConfigValidationError) as excinfo:
            _validate_and_build(raw)
        assert "3 validation error(s)" in str(excinfo.value)

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ConfigValidationError, match="'history' must be a mapping"):
            _validate_and_build({"history": [1, 2]})


class TestConfigFiles:
    def test_load_from_custom_path(self, tmp_path: Path) -> None:
        path = tmp_path / "tracking.yaml"
        path.write_text(
            textwrap.dedent(
                """
                version: "2.0"
                motion:
                  moving: [walking, automotive]
                duty_cycle:
                  required_motion_seconds: 5
                """
            )
        )
        config = load_tracking_config(path)
        assert config.version == "2.0"
        assert config.duty_cycle.required_motion_seconds == 5.0
        assert not config.is_moving("cycling")

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_tracking_config(tmp_path / "absent.yaml")

    def test_malformed_yaml_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("motion: [walking\n")
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_tracking_config(path)

    def test_reload_keeps_old_config_on_error(self, tmp_path: Path) -> None:
        good = reload_tracking_config()
        bad = tmp_path / "bad.yaml"
        bad.write_text("buckets:\n  window_seconds: -1\n")
        with pytest.raises(ConfigValidationError):
            reload_tracking_config(bad)

        from tracekit.tracking.config_loader import get_tracking_config

        assert get_tracking_config() is good


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TRACE_SERVER_BASE_URL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.server_base_url == "https://trace.mnalavadi.org"
        assert settings.request_timeout_seconds == 30.0
        assert settings.auto_upload_enabled is False
        assert settings.database_path == ""

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRACE_SERVER_BASE_URL", "http://localhost:9000")
        monkeypatch.setenv("TRACE_AUTO_UPLOAD_ENABLED", "true")
        settings = Settings(_env_file=None)
        assert settings.server_base_url == "http://localhost:9000"
        assert settings.auto_upload_enabled is True
