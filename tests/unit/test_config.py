"""Tests for configuration module."""

import logging
from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from display_watchdog.config import (
    MAX_PORT,
    MIN_PORT,
    Config,
    _parse_bool,
    _parse_non_negative_float,
    _parse_port,
    _parse_positive_float,
    _parse_positive_int,
    _validate_log_level,
    _validate_recovery_action,
    clamp_probe_timeout,
    load_config,
)
from display_watchdog.types import RecoveryAction


def write_env(tmp_path: Path, content: str = "") -> Path:
    env_file = tmp_path / ".env"
    env_file.write_text(content)
    return env_file


class TestConfig:
    """Tests for Config dataclass."""

    def test_defaults(self) -> None:
        config = Config()
        assert config.check_interval == 30.0
        assert config.probe_timeout_ms == 5000
        assert config.max_concurrent_probes == 8
        assert config.summary_interval == 300.0
        assert config.recovery_enabled is True
        assert config.recovery_threshold == 3
        assert config.recovery_cooldown == 600.0
        assert config.recovery_action == RecoveryAction.SOFT_RESET
        assert config.devices_file == Path("./devices.yaml")
        assert config.status_enabled is False
        assert config.fallback_scene == ""

    def test_probe_timeout_seconds(self) -> None:
        assert Config(probe_timeout_ms=2500).probe_timeout_seconds == 2.5

    def test_frozen_immutable(self) -> None:
        """Config should be immutable after creation."""
        config = Config()
        with pytest.raises(FrozenInstanceError):
            config.check_interval = 5.0  # type: ignore[misc]


class TestParsePositiveInt:
    """Tests for _parse_positive_int."""

    def test_valid_positive_integer(self) -> None:
        assert _parse_positive_int("42", "TEST", 10) == 42

    def test_invalid_non_numeric(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert _parse_positive_int("abc", "TEST", 10) == 10
        assert "not a valid integer" in caplog.text

    def test_invalid_zero(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert _parse_positive_int("0", "TEST", 10) == 10
        assert "not positive" in caplog.text


class TestParseFloats:
    """Tests for the float parsers."""

    def test_positive_float(self) -> None:
        assert _parse_positive_float("2.5", "TEST", 1.0) == 2.5

    def test_positive_float_rejects_zero(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert _parse_positive_float("0", "TEST", 1.0) == 1.0
        assert "not positive" in caplog.text

    def test_positive_float_rejects_text(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert _parse_positive_float("soon", "TEST", 1.0) == 1.0
        assert "not a valid number" in caplog.text

    def test_non_negative_float_accepts_zero(self) -> None:
        assert _parse_non_negative_float("0", "TEST", 1.0) == 0.0

    def test_non_negative_float_rejects_negative(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert _parse_non_negative_float("-1", "TEST", 1.0) == 1.0
        assert "negative" in caplog.text


class TestParsePort:
    """Tests for _parse_port."""

    def test_bounds(self) -> None:
        assert _parse_port(str(MIN_PORT), "TEST", 8090) == MIN_PORT
        assert _parse_port(str(MAX_PORT), "TEST", 8090) == MAX_PORT

    def test_out_of_range(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert _parse_port("70000", "TEST", 8090) == 8090
        assert "not a valid port" in caplog.text


class TestParseBool:
    """Tests for _parse_bool."""

    @pytest.mark.parametrize("value", ["true", "TRUE", "1", "yes"])
    def test_truthy(self, value: str) -> None:
        assert _parse_bool(value) is True

    @pytest.mark.parametrize("value", ["false", "0", "no", ""])
    def test_falsy(self, value: str) -> None:
        assert _parse_bool(value) is False


class TestValidators:
    """Tests for log level and recovery action validation."""

    def test_log_level_case_insensitive(self) -> None:
        assert _validate_log_level("debug") == "DEBUG"

    def test_invalid_log_level(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert _validate_log_level("TRACE") == "INFO"
        assert "Invalid WATCHDOG_LOG_LEVEL" in caplog.text

    def test_recovery_action(self) -> None:
        assert _validate_recovery_action(" Reboot ") == RecoveryAction.REBOOT

    def test_invalid_recovery_action(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert _validate_recovery_action("explode") == RecoveryAction.SOFT_RESET
        assert "Invalid WATCHDOG_RECOVERY_ACTION" in caplog.text


class TestClampProbeTimeout:
    """Tests for clamp_probe_timeout."""

    def test_shorter_timeout_is_kept(self) -> None:
        assert clamp_probe_timeout(5000, 30.0) == 5000

    def test_equal_timeout_is_clamped(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert clamp_probe_timeout(10000, 10.0) == 8000
        assert "not shorter than" in caplog.text

    def test_tiny_interval_keeps_a_positive_timeout(self) -> None:
        assert clamp_probe_timeout(5000, 0.001) == 1


@pytest.mark.usefixtures("clean_env")
class TestLoadConfig:
    """Tests for load_config function."""

    def test_loads_defaults_without_env(self, tmp_path: Path) -> None:
        config = load_config(write_env(tmp_path))
        assert config == Config()

    def test_loads_from_env_vars(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WATCHDOG_CHECK_INTERVAL", "60")
        monkeypatch.setenv("WATCHDOG_PROBE_TIMEOUT_MS", "2000")
        monkeypatch.setenv("WATCHDOG_RECOVERY_ACTION", "notify")
        monkeypatch.setenv("WATCHDOG_RECOVERY_ENABLED", "false")
        monkeypatch.setenv("WATCHDOG_DEVICES_FILE", "/etc/pixoo/devices.yaml")
        monkeypatch.setenv("WATCHDOG_STATUS_ENABLED", "yes")
        monkeypatch.setenv("WATCHDOG_STATUS_PORT", "9000")

        config = load_config(write_env(tmp_path))

        assert config.check_interval == 60.0
        assert config.probe_timeout_ms == 2000
        assert config.recovery_action == RecoveryAction.NOTIFY
        assert config.recovery_enabled is False
        assert config.devices_file == Path("/etc/pixoo/devices.yaml")
        assert config.status_enabled is True
        assert config.status_port == 9000

    def test_fallback_scene(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WATCHDOG_RECOVERY_ACTION", "fallback_scene")
        monkeypatch.setenv("WATCHDOG_FALLBACK_SCENE", " clock ")

        config = load_config(write_env(tmp_path))

        assert config.recovery_action == RecoveryAction.FALLBACK_SCENE
        assert config.fallback_scene == "clock"

    def test_loads_from_env_file(self, tmp_path: Path) -> None:
        env_file = write_env(
            tmp_path, "WATCHDOG_SUMMARY_INTERVAL=120\nWATCHDOG_LOG_LEVEL=WARNING\n"
        )

        config = load_config(env_file)

        assert config.summary_interval == 120.0
        assert config.log_level == "WARNING"

    def test_probe_timeout_is_clamped_below_interval(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        monkeypatch.setenv("WATCHDOG_CHECK_INTERVAL", "5")
        monkeypatch.setenv("WATCHDOG_PROBE_TIMEOUT_MS", "5000")

        with caplog.at_level(logging.WARNING):
            config = load_config(write_env(tmp_path))

        assert config.probe_timeout_ms == 4000
        assert config.probe_timeout_ms < config.check_interval * 1000

    def test_invalid_values_use_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        monkeypatch.setenv("WATCHDOG_RECOVERY_THRESHOLD", "0")
        monkeypatch.setenv("WATCHDOG_MAX_CONCURRENT_PROBES", "many")
        monkeypatch.setenv("WATCHDOG_RECOVERY_COOLDOWN", "-5")

        with caplog.at_level(logging.WARNING):
            config = load_config(write_env(tmp_path))

        assert config.recovery_threshold == 3
        assert config.max_concurrent_probes == 8
        assert config.recovery_cooldown == 600.0
        assert "WATCHDOG_RECOVERY_THRESHOLD" in caplog.text
