# tests/unit/config/test_unit_settings.py — v1
"""Tests for config/settings.py — typed Settings and validation rules."""

from __future__ import annotations

import pytest

from callbatch.config.settings import ConfigurationError, Settings, load_settings
from callbatch.core.models import MIB, ProcessingConfig, RetryPolicy


class TestSettingsDefaults:
    def test_default_store(self):
        s = Settings(_env_file=None)
        assert s.store_backend == "sqlite"
        assert str(s.store_path).endswith("callbatch.db")

    def test_default_processing_limits(self):
        s = Settings(_env_file=None)
        assert s.default_max_concurrent_files == 5
        assert s.default_max_file_size == 500 * MIB
        assert s.default_require_uuid_filename is True

    def test_default_retry(self):
        s = Settings(_env_file=None)
        assert s.default_max_retries == 3
        assert s.default_retry_delay_seconds == 60
        assert s.default_exponential_backoff is True

    def test_default_monitoring(self):
        s = Settings(_env_file=None)
        assert s.default_scan_interval_seconds == 300
        assert s.default_debounce_ms == 2000

    def test_default_extensions(self):
        s = Settings(_env_file=None)
        assert s.allowed_extensions_list == [".mp3", ".wav", ".m4a", ".aac", ".ogg"]


class TestSettingsValidation:
    def test_concurrency_out_of_range(self):
        with pytest.raises(ConfigurationError, match="DEFAULT_MAX_CONCURRENT_FILES"):
            Settings(_env_file=None, default_max_concurrent_files=21)

    def test_file_size_out_of_range(self):
        with pytest.raises(ConfigurationError, match="DEFAULT_MAX_FILE_SIZE"):
            Settings(_env_file=None, default_max_file_size=3 * 1024 * MIB)

    def test_retries_out_of_range(self):
        with pytest.raises(ConfigurationError, match="DEFAULT_MAX_RETRIES"):
            Settings(_env_file=None, default_max_retries=11)

    def test_retry_delay_out_of_range(self):
        with pytest.raises(ConfigurationError, match="DEFAULT_RETRY_DELAY_SECONDS"):
            Settings(_env_file=None, default_retry_delay_seconds=5)

    def test_scan_interval_out_of_range(self):
        with pytest.raises(ConfigurationError, match="DEFAULT_SCAN_INTERVAL_SECONDS"):
            Settings(_env_file=None, default_scan_interval_seconds=10)

    def test_log_rotation_must_be_a_size(self):
        with pytest.raises(ConfigurationError, match="LOG_ROTATION"):
            Settings(_env_file=None, log_rotation="weekly")

    def test_errors_are_joined(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Settings(_env_file=None, default_max_retries=-1, default_debounce_ms=-1)
        assert "DEFAULT_MAX_RETRIES" in str(exc_info.value)
        assert "DEFAULT_DEBOUNCE_MS" in str(exc_info.value)

    def test_notification_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, notification_max_attempts=0)

    def test_valid_edge_values(self):
        s = Settings(
            _env_file=None,
            default_max_concurrent_files=20,
            default_max_retries=0,
            default_scan_interval_seconds=3600,
        )
        assert s.default_max_retries == 0


class TestExtensionsParsing:
    def test_normalises_case_and_dot(self):
        s = Settings(_env_file=None, default_allowed_extensions="MP3, wav,,.Ogg")
        assert s.allowed_extensions_list == [".mp3", ".wav", ".ogg"]


class TestEffectiveProcessing:
    def test_defaults_fill_every_field(self):
        s = Settings(_env_file=None)
        effective = s.effective_processing(ProcessingConfig())
        assert effective.max_file_size == 500 * MIB
        assert effective.max_concurrent_files == 5
        assert effective.retry is not None
        assert effective.retry.max_retries == 3

    def test_folder_overrides_win(self):
        s = Settings(_env_file=None)
        effective = s.effective_processing(
            ProcessingConfig(max_concurrent_files=2, allowed_extensions=[".wav"])
        )
        assert effective.max_concurrent_files == 2
        assert effective.allowed_extensions == [".wav"]
        assert effective.require_uuid_filename is True

    def test_partial_retry_override_merges(self):
        s = Settings(_env_file=None)
        folder = ProcessingConfig.model_validate({"retry": {"max_retries": 7}})
        effective = s.effective_processing(folder)
        assert effective.retry.max_retries == 7
        assert effective.retry.delay_seconds == 60

    def test_full_retry_override(self):
        s = Settings(_env_file=None)
        retry = RetryPolicy(enabled=False, max_retries=1, delay_seconds=5, exponential_backoff=False)
        effective = s.effective_processing(ProcessingConfig(retry=retry))
        assert effective.retry == retry


class TestLoadSettings:
    def test_overrides(self):
        s = load_settings(_env_file=None, store_backend="memory", api_port=9000)
        assert s.store_backend == "memory"
        assert s.api_port == 9000

    def test_env_variables(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_MAX_RETRIES", "5")
        monkeypatch.setenv("LOG_FORMAT", "text")
        s = load_settings(_env_file=None)
        assert s.default_max_retries == 5
        assert s.log_format == "text"
