"""Environment-backed application configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _to_bool(value: str | None, default: bool) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _to_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _to_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(slots=True)
class AppConfig:
    """Runtime configuration for the overlay session service."""

    use_agent_mode: bool = True
    use_agent_v2: bool = True
    window_width: int = 680
    command_timeout: float = 30.0
    execution_timeout: float = 600.0
    journal_dir: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        journal_dir = os.getenv("OVERLAY_JOURNAL_DIR")
        return cls(
            use_agent_mode=_to_bool(os.getenv("OVERLAY_USE_AGENT_MODE"), True),
            use_agent_v2=_to_bool(os.getenv("OVERLAY_USE_AGENT_V2"), True),
            window_width=_to_int("OVERLAY_WINDOW_WIDTH", 680),
            command_timeout=_to_float("OVERLAY_COMMAND_TIMEOUT", 30.0),
            execution_timeout=_to_float("OVERLAY_EXECUTION_TIMEOUT", 600.0),
            journal_dir=Path(journal_dir).expanduser() if journal_dir and journal_dir.strip() else None,
            log_level=(os.getenv("OVERLAY_LOG_LEVEL") or "INFO").strip().upper(),
        )
