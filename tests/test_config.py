"""
Policy loading/validation, runtime settings and log setup.
"""

import logging
import os

import pytest

from pulse_autonomy import config
from pulse_autonomy.config import (
    DEFAULT_POLICY,
    AutonomyPolicy,
    Settings,
    load_policy,
    policy_from_dict,
    validate_policy,
)
from pulse_autonomy.errors import PolicyError
from pulse_autonomy.log_setup import LOG_FILENAME, PACKAGE_LOGGER, configure_logging, reset_logging


class TestValidatePolicy:
    def test_defaults(self):
        assert DEFAULT_POLICY.min_successes_for_eligible == 5
        assert DEFAULT_POLICY.auto_write_threshold == 0.85
        assert DEFAULT_POLICY.decay_max == 0.5

    def test_valid_override(self):
        assert validate_policy({"min_successes_for_eligible": 8, "decay_per_day": 0.03}) == []

    def test_unknown_key(self):
        assert validate_policy({"auto_threshold": 0.9}) == ["Unknown policy key: auto_threshold"]

    @pytest.mark.parametrize("data", [
        {"auto_write_threshold": "high"},
        {"auto_write_threshold": True},
        {"auto_write_threshold": 1.5},
        {"min_successes_for_eligible": 2.5},
        {"max_recovery_attempts": -1},
    ])
    def test_bad_values(self, data):
        assert validate_policy(data)

    def test_cross_field(self):
        errors = validate_policy({"confirm_threshold": 0.9, "auto_write_threshold": 0.8})
        assert errors == ["confirm_threshold must not exceed auto_write_threshold"]

    def test_not_a_mapping(self):
        assert validate_policy(["a"]) == ["Policy must be a mapping"]


class TestPolicyFromDict:
    def test_empty_is_default(self):
        assert policy_from_dict(None) is DEFAULT_POLICY
        assert policy_from_dict({}) is DEFAULT_POLICY

    def test_override(self):
        policy = policy_from_dict({"reverts_for_degrade": 3})
        assert policy.reverts_for_degrade == 3
        assert policy.confusion_lock_threshold == DEFAULT_POLICY.confusion_lock_threshold

    def test_invalid_raises(self):
        with pytest.raises(PolicyError) as exc_info:
            policy_from_dict({"decay_max": 2})
        assert exc_info.value.errors == ["decay_max: must be within [0, 1]"]

    def test_policy_error_is_value_error(self):
        with pytest.raises(ValueError):
            policy_from_dict({"nope": 1})


class TestLoadPolicy:
    def test_no_file_configured(self, monkeypatch):
        monkeypatch.delenv(config.POLICY_ENV, raising=False)
        assert load_policy() is DEFAULT_POLICY

    def test_missing_file(self, tmp_path):
        assert load_policy(str(tmp_path / "absent.yaml")) is DEFAULT_POLICY

    def test_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "policy.yaml"
        path.write_text("min_successes_for_eligible: 8\nauto_write_threshold: 0.9\n")
        monkeypatch.setenv(config.POLICY_ENV, str(path))

        policy = load_policy()
        assert isinstance(policy, AutonomyPolicy)
        assert policy.min_successes_for_eligible == 8
        assert policy.auto_write_threshold == 0.9

    def test_cached_until_modified(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("decay_per_day: 0.03\n")
        first = load_policy(str(path))
        assert load_policy(str(path)) is first

        path.write_text("decay_per_day: 0.04\n")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))
        assert load_policy(str(path)).decay_per_day == 0.04

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("confirm_threshold: 3\n")
        with pytest.raises(PolicyError):
            load_policy(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("")
        assert load_policy(str(path)) is DEFAULT_POLICY


class TestSettings:
    def test_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv(config.DB_ENV, str(tmp_path / "a.db"))
        monkeypatch.setenv(config.API_KEYS_ENV, "k1, k2,,")
        monkeypatch.setenv(config.DEV_MODE_ENV, "true")
        monkeypatch.setenv(config.QUIET_HOURS_ENV, "22:00-07:00")

        settings = Settings.from_env()
        assert settings.db_path == tmp_path / "a.db"
        assert settings.api_keys == {"k1", "k2"}
        assert settings.dev_mode is True
        assert settings.quiet_hours == "22:00-07:00"

    def test_defaults(self, monkeypatch):
        for name in (config.DB_ENV, config.API_KEYS_ENV, config.DEV_MODE_ENV, config.QUIET_HOURS_ENV):
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env()
        assert settings.db_path == config.DEFAULT_DB_PATH
        assert settings.api_keys == set()
        assert settings.dev_mode is False
        assert settings.quiet_hours is None


class TestLogSetup:
    @pytest.fixture(autouse=True)
    def fresh_logging(self):
        reset_logging()
        yield
        reset_logging()

    def test_writes_to_file(self, tmp_path):
        logger = configure_logging(tmp_path)
        logging.getLogger("pulse_autonomy.gate").info("hello from the gate")
        for handler in logger.handlers:
            handler.flush()

        content = (tmp_path / LOG_FILENAME).read_text()
        assert "INFO - pulse_autonomy.gate - hello from the gate" in content

    def test_idempotent(self, tmp_path):
        configure_logging(tmp_path)
        configure_logging(tmp_path / "elsewhere")
        assert len(logging.getLogger(PACKAGE_LOGGER).handlers) == 1
        assert not (tmp_path / "elsewhere").exists()
