from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import FrozenSet, Optional, Tuple

from .models import RiskLevel


@dataclass(slots=True)
class SecurityThresholds:
    """Numeric limits checked by the threshold monitor."""

    max_exports_per_day: int = 50
    max_client_views_per_hour: int = 100
    max_failed_logins_per_hour: int = 10
    max_bulk_downloads: int = 20
    bulk_download_window_minutes: int = 5


DEFAULT_THRESHOLDS = SecurityThresholds()


@dataclass(slots=True)
class EngineConfig:
    """Configuration for the breach detection engine."""

    thresholds: SecurityThresholds = field(default_factory=SecurityThresholds)
    critical_score: int = 80
    warning_score: int = 50
    medium_score: int = 25
    alert_cooldown: timedelta = timedelta(minutes=5)
    cooldown_capacity: int = 10_000
    lockout_duration: timedelta = timedelta(minutes=30)
    ops_email: str = "security@scrybe.app"
    high_risk_countries: FrozenSet[str] = frozenset()
    default_business_hours: Tuple[int, int] = (6, 22)
    baseline_window: timedelta = timedelta(days=30)
    baseline_row_limit: int = 5000
    off_hours_history_limit: int = 1000
    off_hours_suppression_count: int = 10
    rapid_fire_threshold: int = 10
    rapid_fire_critical: int = 50
    baseline_cache_ttl: timedelta = timedelta(0)
    timezone: str = "UTC"
    siem_webhook_url: Optional[str] = None
    max_workers: int = 4

    def risk_level(self, risk_score: int) -> RiskLevel:
        if risk_score >= self.critical_score:
            return RiskLevel.CRITICAL
        if risk_score >= self.warning_score:
            return RiskLevel.WARNING
        if risk_score >= self.medium_score:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    @property
    def baseline_days(self) -> int:
        return max(self.baseline_window.days, 1)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        defaults = SecurityThresholds()
        thresholds = SecurityThresholds(
            max_exports_per_day=_int_env("SECURITY_MAX_EXPORTS_PER_DAY", defaults.max_exports_per_day),
            max_client_views_per_hour=_int_env(
                "SECURITY_MAX_CLIENT_VIEWS_PER_HOUR", defaults.max_client_views_per_hour
            ),
            max_failed_logins_per_hour=_int_env(
                "SECURITY_MAX_FAILED_LOGINS_PER_HOUR", defaults.max_failed_logins_per_hour
            ),
            max_bulk_downloads=_int_env("SECURITY_MAX_BULK_DOWNLOADS", defaults.max_bulk_downloads),
            bulk_download_window_minutes=_int_env(
                "SECURITY_BULK_DOWNLOAD_WINDOW_MINUTES", defaults.bulk_download_window_minutes
            ),
        )
        countries = os.getenv("SECURITY_HIGH_RISK_COUNTRIES", "")
        return cls(
            thresholds=thresholds,
            alert_cooldown=timedelta(seconds=_int_env("SECURITY_ALERT_COOLDOWN_SECONDS", 300)),
            ops_email=os.getenv("SECURITY_OPS_EMAIL", "security@scrybe.app"),
            high_risk_countries=frozenset(c.strip().upper() for c in countries.split(",") if c.strip()),
            timezone=os.getenv("SECURITY_TIMEZONE", "UTC"),
            siem_webhook_url=os.getenv("SIEM_WEBHOOK_URL") or None,
        )


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)
