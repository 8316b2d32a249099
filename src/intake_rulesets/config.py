"""Engine configuration — reads settings from environment variables.

All settings have sensible defaults for local development.  In production
the values are typically overridden via env vars or a ``.env`` file that
the process manager loads before start-up.
"""

import logging
import os
from dataclasses import dataclass

from intake_rulesets.constants import (
    BOOLEAN_NUMERIC_FALLBACK,
    COMPANY_REGISTRY_RESOURCE_ID,
    COMPANY_REGISTRY_URL,
    DEFAULT_TIMEZONE,
    DYNAMIC_TOOL_TIMEOUT_SECONDS,
    START_DATE_MAX_DAYS,
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class EngineSettings:
    """Immutable engine configuration read from environment at startup."""

    # Ruleset directory (None → RulesetStore default, which is v1/ from repo root)
    ruleset_dir: str | None = None

    # Date handling
    timezone: str = DEFAULT_TIMEZONE
    start_date_max_days: int = START_DATE_MAX_DAYS

    # Answer parsing: "12 employees" reads as yes
    numeric_boolean_fallback: bool = BOOLEAN_NUMERIC_FALLBACK
    # Numbers above this cap are not a yes (None = unbounded)
    numeric_boolean_max: float | None = None

    # Tool execution
    tool_timeout_seconds: float = DYNAMIC_TOOL_TIMEOUT_SECONDS

    # External company registry lookup
    company_registry_url: str = COMPANY_REGISTRY_URL
    company_registry_resource_id: str = COMPANY_REGISTRY_RESOURCE_ID

    # Logging
    log_level: str = "INFO"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off", "")


def _env_float(name: str) -> float | None:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else None


def load_settings() -> EngineSettings:
    """Build settings from ``INTAKE_*`` environment variables."""
    return EngineSettings(
        ruleset_dir=os.getenv("INTAKE_RULESET_DIR") or None,
        timezone=os.getenv("INTAKE_TIMEZONE", DEFAULT_TIMEZONE),
        start_date_max_days=int(os.getenv("INTAKE_START_DATE_MAX_DAYS", str(START_DATE_MAX_DAYS))),
        numeric_boolean_fallback=_env_flag("INTAKE_NUMERIC_BOOLEAN_FALLBACK", BOOLEAN_NUMERIC_FALLBACK),
        numeric_boolean_max=_env_float("INTAKE_NUMERIC_BOOLEAN_MAX"),
        tool_timeout_seconds=float(
            os.getenv("INTAKE_TOOL_TIMEOUT_SECONDS", str(DYNAMIC_TOOL_TIMEOUT_SECONDS))
        ),
        company_registry_url=os.getenv("INTAKE_COMPANY_REGISTRY_URL", COMPANY_REGISTRY_URL),
        company_registry_resource_id=os.getenv(
            "INTAKE_COMPANY_REGISTRY_RESOURCE_ID", COMPANY_REGISTRY_RESOURCE_ID
        ),
        log_level=os.getenv("INTAKE_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(settings: EngineSettings) -> None:
    """Configure root logging once for CLI / worker entry points."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
    )
