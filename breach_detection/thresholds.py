from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Tuple
from zoneinfo import ZoneInfo

from .checks import CheckOutcome, run_checks
from .config import EngineConfig, SecurityThresholds
from .models import Action, ActivityFilter, Resource, Severity, ThresholdType, ThresholdViolation
from .stores import ActivityLog

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SeverityPolicy:
    base: Severity
    escalated: Severity
    escalation_factor: float = 2.0

    def severity_for(self, actual: int, threshold: int) -> Severity:
        if actual >= threshold * self.escalation_factor:
            return self.escalated
        return self.base


SEVERITY_POLICIES: Dict[ThresholdType, SeverityPolicy] = {
    ThresholdType.EXCESSIVE_EXPORTS: SeverityPolicy(Severity.HIGH, Severity.CRITICAL),
    ThresholdType.EXCESSIVE_CLIENT_VIEWS: SeverityPolicy(Severity.MEDIUM, Severity.HIGH),
    ThresholdType.EXCESSIVE_FAILED_LOGINS: SeverityPolicy(Severity.HIGH, Severity.CRITICAL),
    ThresholdType.BULK_DOWNLOAD: SeverityPolicy(Severity.HIGH, Severity.CRITICAL),
}


class ThresholdMonitor:
    def __init__(
        self,
        activity_log: ActivityLog,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.activity_log = activity_log
        self.config = config or EngineConfig()
        self.tz = ZoneInfo(self.config.timezone)
        self.clock = clock or (lambda: datetime.now(self.tz))

    def start_of_day(self, now: datetime) -> datetime:
        local = now.astimezone(self.tz)
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    def count_exports_today(self, user_id: str, org_id: str, now: datetime) -> int:
        return self.activity_log.count_activity(
            org_id, user_id, self.start_of_day(now), ActivityFilter(action=Action.EXPORT.value)
        )

    def count_client_views_last_hour(self, user_id: str, org_id: str, now: datetime) -> int:
        return self.activity_log.count_activity(
            org_id,
            user_id,
            now - timedelta(hours=1),
            ActivityFilter(action=Action.VIEW.value, resource=Resource.CLIENT.value),
        )

    def count_failed_logins_last_hour(self, user_id: str, now: datetime) -> int:
        # logins are not scoped to an org
        return self.activity_log.count_activity(
            None, user_id, now - timedelta(hours=1), ActivityFilter(action=Action.LOGIN.value, success=False)
        )

    def count_recent_downloads(self, user_id: str, org_id: str, now: datetime, window_minutes: int) -> int:
        return self.activity_log.count_activity(
            org_id, user_id, now - timedelta(minutes=window_minutes), ActivityFilter(action=Action.DOWNLOAD.value)
        )

    def run(
        self,
        user_id: str,
        org_id: str,
        thresholds: SecurityThresholds | None = None,
    ) -> CheckOutcome[ThresholdViolation]:
        thresholds = thresholds or self.config.thresholds
        now = self.clock()
        window = thresholds.bulk_download_window_minutes
        checks: Dict[ThresholdType, Tuple[Callable[[], int], int, str]] = {
            ThresholdType.EXCESSIVE_EXPORTS: (
                lambda: self.count_exports_today(user_id, org_id, now),
                thresholds.max_exports_per_day,
                "User exported {actual} items today (limit: {limit})",
            ),
            ThresholdType.EXCESSIVE_CLIENT_VIEWS: (
                lambda: self.count_client_views_last_hour(user_id, org_id, now),
                thresholds.max_client_views_per_hour,
                "User viewed {actual} client records in the last hour (limit: {limit})",
            ),
            ThresholdType.EXCESSIVE_FAILED_LOGINS: (
                lambda: self.count_failed_logins_last_hour(user_id, now),
                thresholds.max_failed_logins_per_hour,
                "{actual} failed login attempts in the last hour (limit: {limit})",
            ),
            ThresholdType.BULK_DOWNLOAD: (
                lambda: self.count_recent_downloads(user_id, org_id, now, window),
                thresholds.max_bulk_downloads,
                "User downloaded {actual} files in {window} minutes (limit: {limit})",
            ),
        }

        counts, failed = run_checks(
            {kind.value: query for kind, (query, _, _) in checks.items()},
            self.config.max_workers,
            logger,
        )

        outcome: CheckOutcome[ThresholdViolation] = CheckOutcome(failed_checks=failed)
        for kind, (_, limit, template) in checks.items():
            actual = counts.get(kind.value)
            if actual is None or actual < limit:
                continue
            outcome.items.append(
                ThresholdViolation(
                    type=kind,
                    threshold=limit,
                    actual=actual,
                    severity=SEVERITY_POLICIES[kind].severity_for(actual, limit),
                    description=template.format(actual=actual, limit=limit, window=window),
                    timestamp=now,
                )
            )
        return outcome

    def check_thresholds(
        self,
        user_id: str,
        org_id: str,
        thresholds: SecurityThresholds | None = None,
    ) -> List[ThresholdViolation]:
        return self.run(user_id, org_id, thresholds).items
