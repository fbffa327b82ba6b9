from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, List, Optional
from zoneinfo import ZoneInfo

from .checks import CheckOutcome, run_checks
from .config import EngineConfig
from .geolocation import LOCAL, GeoResolver, mask_ip
from .models import (
    AccessHours,
    AccessPatternDetails,
    Action,
    AnomalyIndicator,
    AnomalyType,
    GeographicDetails,
    OffHoursDetails,
    RapidFireDetails,
    Severity,
    UserAccessPattern,
)
from .stores import ActivityLog
from .thresholds import ThresholdMonitor

logger = logging.getLogger(__name__)

OFF_HOURS_CONFIDENCE = 0.7
GEO_CONFIDENCE = 0.75
GEO_HIGH_RISK_CONFIDENCE = 0.9

EXPORT_TRIGGER_RATIO = 3.0
EXPORT_HIGH_RATIO = 5.0
VIEW_TRIGGER_RATIO = 5.0
VIEW_HIGH_RATIO = 10.0


class AnomalyDetector:
    """Compares the current action against the user's own baseline."""

    def __init__(
        self,
        activity_log: ActivityLog,
        geo: GeoResolver,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.activity_log = activity_log
        self.geo = geo
        self.config = config or EngineConfig()
        self.tz = ZoneInfo(self.config.timezone)
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.counters = ThresholdMonitor(activity_log, self.config, self.clock)

    @property
    def default_hours(self) -> AccessHours:
        start, end = self.config.default_business_hours
        return AccessHours(start=start, end=end)

    @property
    def high_risk_countries(self) -> FrozenSet[str]:
        return self.config.high_risk_countries

    def run(
        self,
        user_id: str,
        org_id: str,
        action: str,
        ip: str,
        baseline: Optional[UserAccessPattern],
    ) -> CheckOutcome[AnomalyIndicator]:
        now = self.clock()
        checks: Dict[str, Callable[[], Optional[AnomalyIndicator]]] = {
            AnomalyType.OFF_HOURS_ACCESS.value: lambda: self.check_off_hours_access(user_id, org_id, now, baseline),
            AnomalyType.GEOGRAPHIC_ANOMALY.value: lambda: self.check_geographic_anomaly(ip, now, baseline),
            AnomalyType.UNUSUAL_ACCESS_PATTERN.value: lambda: self.check_unusual_access_pattern(
                user_id, org_id, action, now, baseline
            ),
            AnomalyType.RAPID_FIRE_REQUESTS.value: lambda: self.check_rapid_fire_requests(user_id, org_id, now),
        }
        results, failed = run_checks(checks, self.config.max_workers, logger)
        return CheckOutcome(
            items=[indicator for indicator in results.values() if indicator is not None],
            failed_checks=failed,
        )

    def detect_anomalies(
        self,
        user_id: str,
        org_id: str,
        action: str,
        ip: str,
        baseline: Optional[UserAccessPattern],
    ) -> List[AnomalyIndicator]:
        return self.run(user_id, org_id, action, ip, baseline).items

    def check_off_hours_access(
        self,
        user_id: str,
        org_id: str,
        now: datetime,
        baseline: Optional[UserAccessPattern],
    ) -> Optional[AnomalyIndicator]:
        hour = now.astimezone(self.tz).hour
        hours = baseline.typical_access_hours if baseline else self.default_hours
        if hours.contains(hour):
            return None

        # a user who routinely works late is not anomalous
        if baseline and self.count_historical_off_hours(user_id, org_id, now) > self.config.off_hours_suppression_count:
            return None

        return AnomalyIndicator(
            type=AnomalyType.OFF_HOURS_ACCESS,
            confidence=OFF_HOURS_CONFIDENCE,
            severity=Severity.HIGH if hour < 4 or hour >= 23 else Severity.MEDIUM,
            description=(
                f"Access at {hour}:00 is outside normal business hours ({hours.start}:00 - {hours.end}:00)"
            ),
            details=OffHoursDetails(
                current_hour=hour,
                business_hours_start=hours.start,
                business_hours_end=hours.end,
            ),
            timestamp=now,
        )

    def count_historical_off_hours(self, user_id: str, org_id: str, now: datetime) -> int:
        rows = self.activity_log.list_recent_activity(
            org_id,
            user_id,
            now - self.config.baseline_window,
            self.config.off_hours_history_limit,
        )
        default = self.default_hours
        return sum(1 for row in rows if not default.contains(row.timestamp.astimezone(self.tz).hour))

    def check_geographic_anomaly(
        self,
        ip: str,
        now: datetime,
        baseline: Optional[UserAccessPattern],
    ) -> Optional[AnomalyIndicator]:
        country = self.geo.resolve_country(ip)
        if not country or country == LOCAL:
            return None

        known = baseline.known_countries if baseline else []
        if not known or country in known:
            return None

        high_risk = country in self.high_risk_countries
        return AnomalyIndicator(
            type=AnomalyType.GEOGRAPHIC_ANOMALY,
            confidence=GEO_HIGH_RISK_CONFIDENCE if high_risk else GEO_CONFIDENCE,
            severity=Severity.CRITICAL if high_risk else Severity.HIGH,
            description=f"Access from {country} - user typically accesses from: {', '.join(known)}",
            details=GeographicDetails(
                detected_country=country,
                known_countries=list(known),
                is_high_risk=high_risk,
                ip=mask_ip(ip),
            ),
            timestamp=now,
        )

    def check_unusual_access_pattern(
        self,
        user_id: str,
        org_id: str,
        action: str,
        now: datetime,
        baseline: Optional[UserAccessPattern],
    ) -> Optional[AnomalyIndicator]:
        if baseline is None:
            return None

        if action == Action.EXPORT:
            average = baseline.avg_daily_exports
            if average <= 0:
                return None
            current = self.counters.count_exports_today(user_id, org_id, now)
            ratio = current / average
            if ratio < EXPORT_TRIGGER_RATIO:
                return None
            return AnomalyIndicator(
                type=AnomalyType.UNUSUAL_ACCESS_PATTERN,
                confidence=min(0.9, (ratio - 1) / 5),
                severity=Severity.HIGH if ratio >= EXPORT_HIGH_RATIO else Severity.MEDIUM,
                description=(
                    f"Export activity ({current}) is {ratio:.1f}x higher than usual (avg: {average:.1f})"
                ),
                details=AccessPatternDetails(metric="daily_exports", average=average, current=current, ratio=ratio),
                timestamp=now,
            )

        if action in (Action.VIEW, Action.CLIENT):
            average = baseline.avg_daily_client_views / 24
            if average <= 0:
                return None
            current = self.counters.count_client_views_last_hour(user_id, org_id, now)
            ratio = current / average
            if ratio < VIEW_TRIGGER_RATIO:
                return None
            return AnomalyIndicator(
                type=AnomalyType.UNUSUAL_ACCESS_PATTERN,
                confidence=min(0.85, (ratio - 1) / 10),
                severity=Severity.HIGH if ratio >= VIEW_HIGH_RATIO else Severity.MEDIUM,
                description=f"Client view activity ({current}/hr) is {ratio:.1f}x higher than usual",
                details=AccessPatternDetails(
                    metric="hourly_client_views", average=average, current=current, ratio=ratio
                ),
                timestamp=now,
            )

        return None

    def check_rapid_fire_requests(self, user_id: str, org_id: str, now: datetime) -> Optional[AnomalyIndicator]:
        count = self.activity_log.count_activity(org_id, user_id, now - timedelta(seconds=1))
        if count <= self.config.rapid_fire_threshold:
            return None
        return AnomalyIndicator(
            type=AnomalyType.RAPID_FIRE_REQUESTS,
            confidence=min(0.95, count / 20),
            severity=Severity.CRITICAL if count > self.config.rapid_fire_critical else Severity.HIGH,
            description=f"Detected {count} requests/second - possible automated access",
            details=RapidFireDetails(requests_per_second=count, threshold=self.config.rapid_fire_threshold),
            timestamp=now,
        )
