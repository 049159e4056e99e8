"""Unit tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

from agentstream.core.config import Settings


def test_settings_defaults_match_control_plane_contract(monkeypatch) -> None:
    for name in (
        "HIL_BASE_URL",
        "STATUS_CACHE_SECONDS",
        "POLL_INTERVAL_SECONDS",
        "IDLE_POLL_INTERVAL_SECONDS",
        "MAX_IDLE_POLLS",
        "CACHE_SWEEP_INTERVAL_SECONDS",
        "RUN_RETENTION_SECONDS",
        "INTERRUPT_TIMEOUT_MS",
        "STATUS_LABELS_FILE",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.hil_base_url == "http://localhost:8080"
    assert settings.status_cache_seconds == 2.0
    assert settings.poll_interval_seconds == 3.0
    assert settings.idle_poll_interval_seconds == 10.0
    assert settings.max_idle_polls == 3
    assert settings.cache_sweep_interval_seconds == 60.0
    assert settings.run_retention_seconds == 300.0
    assert settings.interrupt_timeout_ms == 300000
    assert settings.status_labels_file is None


def test_settings_reads_stream_and_hil_env(monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("HIL_BASE_URL", "https://hil.example.com")
    monkeypatch.setenv("HIL_API_KEY", "secret")
    monkeypatch.setenv("CHAT_BASE_URL", "https://chat.example.com")
    monkeypatch.setenv("CHAT_STREAM_PATH", "/v2/chat")
    monkeypatch.setenv("HTTP_TIMEOUT_SECONDS", "12")
    monkeypatch.setenv("STATUS_CACHE_SECONDS", "1.5")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "4")
    monkeypatch.setenv("IDLE_POLL_INTERVAL_SECONDS", "20")
    monkeypatch.setenv("MAX_IDLE_POLLS", "5")
    monkeypatch.setenv("CACHE_SWEEP_INTERVAL_SECONDS", "30")
    monkeypatch.setenv("RUN_RETENTION_SECONDS", "120")
    monkeypatch.setenv("INTERRUPT_TIMEOUT_MS", "60000")
    monkeypatch.setenv("ENABLE_LEGACY_COMPATIBILITY", "false")
    monkeypatch.setenv("ENABLE_EVENT_LOGGING", "no")
    monkeypatch.setenv("STATUS_LABELS_FILE", "custom/labels.yaml")

    settings = Settings.from_env()

    assert settings.log_level == "DEBUG"
    assert settings.hil_base_url == "https://hil.example.com"
    assert settings.hil_api_key == "secret"
    assert settings.chat_base_url == "https://chat.example.com"
    assert settings.chat_stream_path == "/v2/chat"
    assert settings.http_timeout_seconds == 12
    assert settings.status_cache_seconds == 1.5
    assert settings.poll_interval_seconds == 4
    assert settings.idle_poll_interval_seconds == 20
    assert settings.max_idle_polls == 5
    assert settings.cache_sweep_interval_seconds == 30
    assert settings.run_retention_seconds == 120
    assert settings.interrupt_timeout_ms == 60000
    assert settings.enable_legacy_compatibility is False
    assert settings.enable_event_logging is False
    assert settings.status_labels_file == Path("custom/labels.yaml")
