"""Runtime configuration for the ITBI source, signal thresholds and API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from dotenv import load_dotenv

from pipelines.signals import SignalThresholds
from pipelines.sources.itbi import ItbiSourceConfig

T = TypeVar("T")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Everything the service needs, resolved once from the environment."""

    source: ItbiSourceConfig = field(default_factory=ItbiSourceConfig)
    thresholds: SignalThresholds = field(default_factory=SignalThresholds)
    load_on_startup: bool = True
    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"


def _env(name: str, cast: Callable[[str], T], default: T) -> T:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name}={raw!r} is not a valid value.") from exc


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"expected a boolean, got {raw!r}")


def _parse_log_level(raw: str) -> str:
    level = raw.upper()
    if level not in logging.getLevelNamesMapping():
        raise ValueError(f"unknown log level {raw!r}")
    return level


def _parse_origins(raw: str) -> tuple[str, ...]:
    origins = tuple(origin.strip() for origin in raw.split(",") if origin.strip())
    return origins or ("*",)


def load_settings() -> Settings:
    """Build ``Settings`` from environment variables (and a local ``.env`` file)."""

    load_dotenv()
    defaults_source = ItbiSourceConfig()
    defaults_thresholds = SignalThresholds()

    source = ItbiSourceConfig(
        base_url=_env("ITBI_BASE_URL", str, defaults_source.base_url),
        page_size=_env("ITBI_PAGE_SIZE", int, defaults_source.page_size),
        max_records=_env("ITBI_MAX_RECORDS", int, defaults_source.max_records),
        timeout=_env("ITBI_TIMEOUT_SECONDS", float, defaults_source.timeout),
        attempts=_env("ITBI_FETCH_ATTEMPTS", int, defaults_source.attempts),
    )
    if source.page_size < 1 or source.max_records < 1:
        raise ValueError("ITBI_PAGE_SIZE and ITBI_MAX_RECORDS must be positive.")

    thresholds = SignalThresholds(
        trend_pct=_env("SIGNAL_TREND_THRESHOLD_PCT", float, defaults_thresholds.trend_pct),
        launch_z=_env("SIGNAL_LAUNCH_Z", float, defaults_thresholds.launch_z),
        launch_min_transactions=_env(
            "SIGNAL_LAUNCH_MIN_TRANSACTIONS", int, defaults_thresholds.launch_min_transactions
        ),
        window_months=_env("SIGNAL_WINDOW_MONTHS", int, defaults_thresholds.window_months),
    )
    if thresholds.window_months < 1:
        raise ValueError("SIGNAL_WINDOW_MONTHS must be positive.")

    return Settings(
        source=source,
        thresholds=thresholds,
        load_on_startup=_env("ITBI_LOAD_ON_STARTUP", _parse_bool, True),
        cors_origins=_env("API_CORS_ORIGINS", _parse_origins, ("*",)),
        log_level=_env("LOG_LEVEL", _parse_log_level, "INFO"),
    )


__all__ = ["Settings", "load_settings"]
