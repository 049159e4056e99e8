"""Configuration layer: load client settings from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _resolve_path(path_like: str) -> Path:
    candidate = Path(path_like)
    if candidate.is_absolute():
        return candidate
    if candidate.exists():
        return candidate
    project_root = Path(__file__).resolve().parents[2]
    rooted = project_root / candidate
    if rooted.exists():
        return rooted
    return candidate


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable client settings shared by stream, router and HIL layers."""

    app_name: str = "agentstream"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    hil_base_url: str = "http://localhost:8080"
    hil_api_key: str = "dev_key_test"
    chat_base_url: str = "http://localhost:8080"
    chat_stream_path: str = "/api/chat"
    http_timeout_seconds: float = 30.0
    status_cache_seconds: float = 2.0
    poll_interval_seconds: float = 3.0
    idle_poll_interval_seconds: float = 10.0
    max_idle_polls: int = 3
    cache_sweep_interval_seconds: float = 60.0
    run_retention_seconds: float = 300.0
    interrupt_timeout_ms: int = 300000
    enable_legacy_compatibility: bool = True
    enable_event_logging: bool = True
    status_labels_file: Path | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from process env with deterministic defaults."""
        labels_file = os.getenv("STATUS_LABELS_FILE")
        return cls(
            app_name=os.getenv("APP_NAME", cls.app_name),
            app_version=os.getenv("APP_VERSION", cls.app_version),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            hil_base_url=os.getenv("HIL_BASE_URL", cls.hil_base_url),
            hil_api_key=os.getenv("HIL_API_KEY", cls.hil_api_key),
            chat_base_url=os.getenv("CHAT_BASE_URL", cls.chat_base_url),
            chat_stream_path=os.getenv("CHAT_STREAM_PATH", cls.chat_stream_path),
            http_timeout_seconds=float(
                os.getenv("HTTP_TIMEOUT_SECONDS", str(cls.http_timeout_seconds))
            ),
            status_cache_seconds=float(
                os.getenv("STATUS_CACHE_SECONDS", str(cls.status_cache_seconds))
            ),
            poll_interval_seconds=float(
                os.getenv("POLL_INTERVAL_SECONDS", str(cls.poll_interval_seconds))
            ),
            idle_poll_interval_seconds=float(
                os.getenv("IDLE_POLL_INTERVAL_SECONDS", str(cls.idle_poll_interval_seconds))
            ),
            max_idle_polls=int(os.getenv("MAX_IDLE_POLLS", str(cls.max_idle_polls))),
            cache_sweep_interval_seconds=float(
                os.getenv(
                    "CACHE_SWEEP_INTERVAL_SECONDS",
                    str(cls.cache_sweep_interval_seconds),
                )
            ),
            run_retention_seconds=float(
                os.getenv("RUN_RETENTION_SECONDS", str(cls.run_retention_seconds))
            ),
            interrupt_timeout_ms=int(
                os.getenv("INTERRUPT_TIMEOUT_MS", str(cls.interrupt_timeout_ms))
            ),
            enable_legacy_compatibility=_env_bool(
                "ENABLE_LEGACY_COMPATIBILITY", cls.enable_legacy_compatibility
            ),
            enable_event_logging=_env_bool("ENABLE_EVENT_LOGGING", cls.enable_event_logging),
            status_labels_file=_resolve_path(labels_file) if labels_file else None,
        )
