"""
Configuration management using Pydantic Settings.
Loads environment variables from .env file.
"""
from datetime import time
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Fixdesk SLA Engine"
    app_version: str = "0.1.0"
    debug: bool = False

    # Supabase Configuration
    supabase_url: str = "http://localhost:54321"
    supabase_anon_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Preferred for the unattended sweep

    # CORS Settings (for Frontend)
    cors_origins: str = "http://localhost:3000"

    # Working Calendar
    # Branch open/close times and holiday dates are wall-clock values in this zone
    calendar_timezone: str = "UTC"
    default_open_time: str = "09:00"
    default_close_time: str = "18:00"
    default_closed_weekdays: str = "0"  # 0=Sunday .. 6=Saturday, comma-separated
    working_hours_max_days: int = 90  # Safety bound for the working-hours walk
    holiday_cache_ttl_seconds: int = 300  # 0 disables calendar caching

    # SLA thresholds (percent of the budget elapsed)
    warning_threshold_percent: int = 75
    critical_threshold_percent: int = 90
    breached_threshold_percent: int = 100

    # Scheduler Settings
    enable_scheduler: bool = True
    scheduler_timezone: str = "UTC"

    # Only ONE worker should run the sweep in multi-worker deployments
    run_scheduler: bool = False
    sla_sweep_interval_seconds: int = 60

    # Job Monitoring
    job_failure_alert_threshold: int = 2  # Alert after this many failures
    job_pause_cooldown_minutes: int = 15  # Auto-resume a paused job after this long; 0 disables

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def supabase_key(self) -> str:
        """Service role key when configured, anon key otherwise."""
        return self.supabase_service_role_key or self.supabase_anon_key

    @property
    def calendar_tz(self) -> ZoneInfo:
        """Resolve the calendar timezone, rejecting unknown names."""
        try:
            return ZoneInfo(self.calendar_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(
                "Unknown calendar timezone",
                config_key="calendar_timezone",
                expected_type="IANA timezone name",
                actual_value=self.calendar_timezone
            )

    @property
    def default_open(self) -> time:
        return _parse_clock(self.default_open_time, "default_open_time")

    @property
    def default_close(self) -> time:
        return _parse_clock(self.default_close_time, "default_close_time")

    @property
    def default_closed_days(self) -> set[int]:
        """Weekdays (0=Sunday) closed in the fallback schedule."""
        days = set()
        for part in self.default_closed_weekdays.split(","):
            part = part.strip()
            if not part:
                continue
            if not part.isdigit() or int(part) > 6:
                raise ConfigurationError(
                    "Closed weekdays must be integers 0-6",
                    config_key="default_closed_weekdays",
                    actual_value=self.default_closed_weekdays
                )
            days.add(int(part))
        return days

    @property
    def sla_thresholds(self) -> tuple[int, int, int]:
        """(warning, critical, breached) thresholds, validated as strictly increasing."""
        thresholds = (
            self.warning_threshold_percent,
            self.critical_threshold_percent,
            self.breached_threshold_percent,
        )
        if not 0 < thresholds[0] < thresholds[1] < thresholds[2]:
            raise ConfigurationError(
                "SLA thresholds must be positive and strictly increasing",
                config_key="warning_threshold_percent",
                expected_type="warning < critical < breached",
                actual_value=str(thresholds)
            )
        return thresholds


def _parse_clock(value: str, config_key: str) -> time:
    try:
        return time.fromisoformat(value)
    except ValueError:
        raise ConfigurationError(
            "Invalid clock time",
            config_key=config_key,
            expected_type="HH:MM",
            actual_value=value
        )


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Call this function to get application settings.
    """
    return Settings()


# Global settings instance
settings = get_settings()
