"""Configuration for studybuddy-brain.

Two layers live here:
    Settings / settings -> tunables read from ``STUDYBUDDY_*`` env vars or a .env file
    load_provider_config() -> provider definitions from a JSON file
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STUDYBUDDY_",
        extra="ignore",
    )

    debug: bool = Field(False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Logging verbosity"
    )
    log_path: str = Field("logs", description="Directory for JSON event logs")
    log_max_bytes: int = Field(5_000_000, description="Rotate the event log past this size")
    log_db_path: str | None = Field(None, description="Write events to this SQLite file instead")
    log_stream_url: str | None = Field(None, description="Also POST events to this URL")
    otel_metrics_url: str | None = None
    otel_trace_url: str | None = None

    # provider health
    failure_threshold: int = Field(3, ge=1, description="Consecutive failures before the circuit opens")
    recovery_successes: int = Field(2, ge=1, description="Consecutive successes to leave Degraded")
    open_cooldown_s: float = Field(30.0, ge=0)
    probe_interval_s: float = Field(30.0, gt=0)
    probe_timeout_s: float = Field(5.0, gt=0)
    rate_limit_cooldown_s: float = Field(60.0, ge=0)
    rate_limit_penalty: float = Field(0.5, gt=0, le=1)

    # router
    request_deadline_s: float = Field(30.0, gt=0)
    min_attempt_timeout_s: float = Field(2.0, gt=0)
    transient_retry_backoff_s: float = Field(0.2, ge=0)
    provider_config_path: str | None = Field(None, description="JSON file describing providers")

    # memory
    memory_db_path: str | None = Field(None, description="SQLite memory store; in-memory when unset")
    embedding_dims: int = Field(384, gt=0)
    embedding_timeout_s: float = Field(3.0, gt=0)
    retention_days: float = Field(240.0, gt=0, description="Default memory lifetime")
    recency_half_life_days: float = Field(30.0, gt=0)
    min_keyword_overlap: float = Field(0.3, ge=0, le=1)
    memory_candidate_pool: int = Field(0, ge=0, description="Cap on candidates ranked per query, 0 = all")
    sweep_interval_s: float = Field(3600.0, gt=0)
    context_char_budget: int = Field(2000, gt=0)

    # validation
    knowledge_cutoff_year: int = Field(2024)
    knowledge_base_path: str | None = None
    disallowed_patterns: List[str] = Field(
        default_factory=lambda: [
            r"\bhow (?:do i|to) (?:make|build) (?:a )?(?:bomb|weapon|explosive)s?\b",
            r"\bhow (?:do i|to) hack\b",
            r"\b(?:kill|hurt) myself\b",
            r"\bsuicide method",
        ]
    )

    @classmethod
    def load(cls) -> "Settings":
        """Load settings using optional env file from ``STUDYBUDDY_CONFIG_FILE``."""
        env_file = os.getenv("STUDYBUDDY_CONFIG_FILE")
        kwargs = {"_env_file": env_file} if env_file else {}
        return cls(**kwargs)


try:
    settings = Settings.load()
except ValidationError as exc:  # pragma: no cover - fail hard on import
    raise SystemExit(f"Invalid configuration: {exc}")


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, dict):
            return data
        return {}
    except (OSError, json.JSONDecodeError):
        return {}


def load_provider_config(path: str | Path | None = None) -> Dict[str, Any]:
    """Return the provider definitions JSON (``{"providers": [...]}``)."""
    path = path or settings.provider_config_path
    if not path:
        return {}
    return _load_json(Path(path))


def load_knowledge_base(path: str | Path | None = None) -> Dict[str, Any]:
    """Return declared knowledge-base facts (``{"facts": [...]}``)."""
    path = path or settings.knowledge_base_path
    if not path:
        return {}
    return _load_json(Path(path))


__all__ = ["Settings", "settings", "load_provider_config", "load_knowledge_base"]
