"""
Centralized configuration with environment variable overrides.

Scheduling limits, booking field limits and rate-limit budgets are all
configurable here. Nothing is hardcoded in the scheduling or booking logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag from an env var (1/0, true/false, yes/no, on/off)."""
    raw = os.getenv(env_var, default)
    value = str(raw).strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class SchedulingConfig:
    """Recurrence expansion, slot search and availability defaults."""

    recurrence_max_iterations: int = _safe_int("RECURRENCE_MAX_ITERATIONS", "366")
    next_slot_search_days: int = _safe_int("NEXT_SLOT_SEARCH_DAYS", "30")
    default_min_advance_hours: int = _safe_int("DEFAULT_MIN_ADVANCE_HOURS", "24")
    default_max_advance_days: int = _safe_int("DEFAULT_MAX_ADVANCE_DAYS", "30")
    min_slot_minutes: int = _safe_int("MIN_SLOT_MINUTES", "15")
    max_slot_minutes: int = _safe_int("MAX_SLOT_MINUTES", "720")
    max_buffer_minutes: int = _safe_int("MAX_BUFFER_MINUTES", "240")
    allow_undated_slots: bool = _safe_bool("ALLOW_UNDATED_SLOTS", "false")
    default_time_zone: str = os.getenv("DEFAULT_TIME_ZONE", "UTC")
    max_page_size: int = _safe_int("MAX_PAGE_SIZE", "100")


@dataclass(frozen=True)
class BookingConfig:
    """Booking lifecycle limits and history page sizes."""

    max_rate: float = _safe_float("BOOKING_MAX_RATE", "10000")
    max_estimated_hours: int = _safe_int("BOOKING_MAX_ESTIMATED_HOURS", "2000")
    history_page_limit: int = _safe_int("BOOKING_HISTORY_PAGE_LIMIT", "100")
    details_history_limit: int = _safe_int("BOOKING_DETAILS_HISTORY_LIMIT", "50")
    dashboard_recent_limit: int = _safe_int("DASHBOARD_RECENT_LIMIT", "10")
    dashboard_active_limit: int = _safe_int("DASHBOARD_ACTIVE_LIMIT", "5")


@dataclass(frozen=True)
class RateLimitConfig:
    """Sliding-window budgets per actor and operation."""

    enabled: bool = _safe_bool("RATE_LIMIT_ENABLED", "true")
    create_max_requests: int = _safe_int("RATE_LIMIT_CREATE_MAX", "10")
    create_window_seconds: int = _safe_int("RATE_LIMIT_CREATE_WINDOW", "3600")
    state_change_max_requests: int = _safe_int("RATE_LIMIT_STATE_CHANGE_MAX", "20")
    state_change_window_seconds: int = _safe_int("RATE_LIMIT_STATE_CHANGE_WINDOW", "3600")
    update_max_requests: int = _safe_int("RATE_LIMIT_UPDATE_MAX", "30")
    update_window_seconds: int = _safe_int("RATE_LIMIT_UPDATE_WINDOW", "900")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    booking: BookingConfig = field(default_factory=BookingConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    service_name: str = os.getenv("SERVICE_NAME", "booking-engine")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    scheduling = config.scheduling
    if scheduling.recurrence_max_iterations < 1:
        raise ValueError(
            "RECURRENCE_MAX_ITERATIONS must be >= 1, "
            f"got {scheduling.recurrence_max_iterations}"
        )
    if scheduling.next_slot_search_days < 1:
        raise ValueError(
            f"NEXT_SLOT_SEARCH_DAYS must be >= 1, got {scheduling.next_slot_search_days}"
        )
    if not 0 <= scheduling.default_min_advance_hours <= 8760:
        raise ValueError(
            "DEFAULT_MIN_ADVANCE_HOURS must be between 0 and 8760, "
            f"got {scheduling.default_min_advance_hours}"
        )
    if not 1 <= scheduling.default_max_advance_days <= 365:
        raise ValueError(
            "DEFAULT_MAX_ADVANCE_DAYS must be between 1 and 365, "
            f"got {scheduling.default_max_advance_days}"
        )
    if scheduling.default_min_advance_hours >= scheduling.default_max_advance_days * 24:
        raise ValueError(
            "DEFAULT_MIN_ADVANCE_HOURS must be shorter than DEFAULT_MAX_ADVANCE_DAYS"
        )
    if not 1 <= scheduling.min_slot_minutes < scheduling.max_slot_minutes:
        raise ValueError(
            "MIN_SLOT_MINUTES must be >= 1 and below MAX_SLOT_MINUTES, "
            f"got {scheduling.min_slot_minutes}"
        )
    if scheduling.max_buffer_minutes < 0:
        raise ValueError(
            f"MAX_BUFFER_MINUTES must be >= 0, got {scheduling.max_buffer_minutes}"
        )
    if scheduling.max_page_size < 1:
        raise ValueError(f"MAX_PAGE_SIZE must be >= 1, got {scheduling.max_page_size}")

    if config.booking.max_rate <= 0:
        raise ValueError(f"BOOKING_MAX_RATE must be > 0, got {config.booking.max_rate}")

    for limit_name, limit_value in [
        ("BOOKING_MAX_ESTIMATED_HOURS", config.booking.max_estimated_hours),
        ("BOOKING_HISTORY_PAGE_LIMIT", config.booking.history_page_limit),
        ("BOOKING_DETAILS_HISTORY_LIMIT", config.booking.details_history_limit),
        ("DASHBOARD_RECENT_LIMIT", config.booking.dashboard_recent_limit),
        ("DASHBOARD_ACTIVE_LIMIT", config.booking.dashboard_active_limit),
        ("RATE_LIMIT_CREATE_MAX", config.rate_limit.create_max_requests),
        ("RATE_LIMIT_CREATE_WINDOW", config.rate_limit.create_window_seconds),
        ("RATE_LIMIT_STATE_CHANGE_MAX", config.rate_limit.state_change_max_requests),
        ("RATE_LIMIT_STATE_CHANGE_WINDOW", config.rate_limit.state_change_window_seconds),
        ("RATE_LIMIT_UPDATE_MAX", config.rate_limit.update_max_requests),
        ("RATE_LIMIT_UPDATE_WINDOW", config.rate_limit.update_window_seconds),
    ]:
        if limit_value < 1:
            raise ValueError(f"{limit_name} must be >= 1, got {limit_value}")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s'", config.service_name)
    return config


# Singleton instance
settings = load_config()
