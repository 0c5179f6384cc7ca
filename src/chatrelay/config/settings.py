"""Application settings using Pydantic."""

import os
from functools import lru_cache
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(
        default=os.getenv("ENVIRONMENT", "development"),
        description="Deployment environment (development|production|test)",
    )

    # Assistant runtime
    runtime_base_url: str = Field(
        default="http://localhost:4096",
        description="Base URL of the assistant runtime HTTP API (control plane + /event stream).",
    )
    runtime_request_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for control-plane calls to the assistant runtime.",
    )
    runtime_event_reconnect_seconds: float = Field(
        default=5.0,
        description="Delay before re-subscribing after the runtime event stream drops.",
    )

    # Rendering
    output_update_interval_ms: int = Field(
        default=3000,
        description=(
            "Minimum interval between two render passes of one conversation. "
            "0 keeps only the same-tick coalescing."
        ),
    )
    card_component_budget: int = Field(
        default=180,
        description="Maximum rendered components per chat artifact before paginating.",
    )
    timeline_max_segments: int = Field(
        default=80,
        description="Retained timeline segments per conversation; oldest evicted first.",
    )
    tool_output_max_chars: int = Field(
        default=4000,
        description="Retained tool output per segment; the head is dropped past this size.",
    )

    # Permissions
    permission_request_ttl_seconds: float = Field(
        default=60.0,
        description="Queued permission requests older than this are dropped on next access.",
    )
    tool_whitelist: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["Read", "Glob", "Grep", "Task"],
        description="Tools whose permission requests are auto-allowed. Env var can be comma-separated.",
    )

    # Questions
    question_ttl_seconds: float = Field(
        default=1800.0,
        description="Pending questions older than this are dropped on next access.",
    )
    question_option_page_size: int = Field(
        default=20,
        description="Options shown per page for long option lists.",
    )

    # Undo history
    ledger_max_entries: int = Field(
        default=50,
        description="Interactions retained per conversation for undo.",
    )
    undo_notice_seconds: float = Field(
        default=3.0,
        description="Lifetime of the transient undo notice (0 keeps it).",
    )

    error_note_dedup_ttl_seconds: float = Field(
        default=600.0,
        description="Window in which a repeated runtime error for the same message is ignored.",
    )

    @field_validator("tool_whitelist", mode="before")
    @classmethod
    def _split_tool_whitelist(cls, v: Any) -> list[str]:
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return list(v)

    @field_validator(
        "card_component_budget",
        "timeline_max_segments",
        "tool_output_max_chars",
        "question_option_page_size",
        "ledger_max_entries",
    )
    @classmethod
    def _require_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("output_update_interval_ms")
    @classmethod
    def _require_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("OUTPUT_UPDATE_INTERVAL_MS cannot be negative")
        return v

    # Observability
    log_level: str = "INFO"
    enable_metrics: bool = True
    metrics_port: int = 9464


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Lazily construct Settings so tests and CLIs can set env vars before first access.
    return Settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()


class _SettingsProxy:
    """Lazy proxy for Settings.

    This avoids eager settings instantiation at import time, which can make tests
    order-dependent when env vars are changed during `pytest_configure()`.
    """

    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<SettingsProxy {get_settings()!r}>"


settings = _SettingsProxy()
