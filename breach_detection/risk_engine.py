from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .alerts import AlertDispatcher
from .anomaly import AnomalyDetector
from .baseline import BaselineBuilder
from .checks import CheckOutcome
from .config import EngineConfig
from .geolocation import GeoResolver, mask_ip
from .lockout import LoginLockoutManager
from .logging_config import AUTH_SUCCESS, SUSPICIOUS_ACTIVITY, log_security_event
from .models import (
    AlertType,
    AnomalyIndicator,
    BlockDecision,
    RiskLevel,
    SecurityAlert,
    SecurityRiskResult,
    ThresholdViolation,
    UserAccessPattern,
)
from .scoring import calculate_risk_score
from .stores import ActivityLog, AuditRecorder, Directory, EmailSender, NotificationInbox
from .thresholds import ThresholdMonitor

logger = logging.getLogger(__name__)

BASELINE_CHECK = "BASELINE"
THRESHOLD_CHECKS = "THRESHOLDS"
ANOMALY_CHECKS = "ANOMALIES"


class RiskEvaluator:
    """Single entry point for scoring a sensitive user action."""

    def __init__(
        self,
        activity_log: ActivityLog,
        directory: Directory,
        email: EmailSender,
        inbox: NotificationInbox,
        audit: AuditRecorder,
        geo: GeoResolver | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        dispatcher: AlertDispatcher | None = None,
    ):
        self.config = config or EngineConfig()
        tz = ZoneInfo(self.config.timezone)
        self.clock = clock or (lambda: datetime.now(tz))
        self.geo = geo or GeoResolver()
        self.baseline = BaselineBuilder(activity_log, self.geo, self.config, self.clock)
        self.thresholds = ThresholdMonitor(activity_log, self.config, self.clock)
        self.anomalies = AnomalyDetector(activity_log, self.geo, self.config, self.clock)
        self.alerts = dispatcher or AlertDispatcher(
            directory, email, inbox, audit, config=self.config, clock=self.clock
        )
        self.lockout = LoginLockoutManager(directory, self.config, audit=audit, clock=self.clock)

    def _baseline_then_anomalies(
        self,
        user_id: str,
        org_id: str,
        action: str,
        ip: str,
    ) -> Tuple[CheckOutcome[AnomalyIndicator], List[str]]:
        failed: List[str] = []
        baseline: Optional[UserAccessPattern] = None
        try:
            baseline = self.baseline.build_baseline(user_id)
        except Exception:
            logger.warning("Baseline build failed for %s; anomaly checks run without it", user_id, exc_info=True)
            failed.append(BASELINE_CHECK)
        return self.anomalies.run(user_id, org_id, action, ip, baseline), failed

    def _collect(
        self,
        user_id: str,
        org_id: str,
        action: str,
        ip: str,
    ) -> Tuple[List[ThresholdViolation], List[AnomalyIndicator], List[str]]:
        failed: List[str] = []
        violations: List[ThresholdViolation] = []
        anomalies: List[AnomalyIndicator] = []

        with ThreadPoolExecutor(max_workers=2) as executor:
            threshold_future = executor.submit(self.thresholds.run, user_id, org_id)
            anomaly_future = executor.submit(self._baseline_then_anomalies, user_id, org_id, action, ip)

            try:
                threshold_outcome = threshold_future.result()
                violations = threshold_outcome.items
                failed.extend(threshold_outcome.failed_checks)
            except Exception:
                logger.warning("Threshold checks failed for %s", user_id, exc_info=True)
                failed.append(THRESHOLD_CHECKS)

            try:
                anomaly_outcome, baseline_failures = anomaly_future.result()
                anomalies = anomaly_outcome.items
                failed.extend(baseline_failures)
                failed.extend(anomaly_outcome.failed_checks)
            except Exception:
                logger.warning("Anomaly checks failed for %s", user_id, exc_info=True)
                failed.append(ANOMALY_CHECKS)

        return violations, anomalies, failed

    def evaluate(self, user_id: str, org_id: str, action: str, ip: str) -> SecurityRiskResult:
        timestamp = self.clock()
        violations, anomalies, failed = self._collect(user_id, org_id, action, ip)

        risk_score = calculate_risk_score(violations, anomalies)
        risk_level = self.config.risk_level(risk_score)
        requires_alert = risk_score >= self.config.warning_score

        log_security_event(
            logger,
            SUSPICIOUS_ACTIVITY if requires_alert else AUTH_SUCCESS,
            f"Security risk evaluation: score={risk_score}, level={risk_level.value}",
            user_id=user_id,
            organization_id=org_id,
            action=action,
            risk_score=risk_score,
            risk_level=risk_level.value,
            violation_count=len(violations),
            anomaly_count=len(anomalies),
            failed_checks=failed,
        )
        if failed:
            logger.warning(
                "Risk evaluation for %s ran with %d failed checks: %s", user_id, len(failed), ", ".join(failed)
            )

        alert_triggered = False
        if requires_alert:
            alert = SecurityAlert(
                type=AlertType.CRITICAL if risk_level == RiskLevel.CRITICAL else AlertType.WARNING,
                user_id=user_id,
                org_id=org_id,
                risk_score=risk_score,
                violations=violations,
                anomalies=anomalies,
                action=action,
                ip=mask_ip(ip),
                timestamp=timestamp,
            )
            try:
                result = self.alerts.trigger_alert(alert)
                alert_triggered = not result.suppressed
            except Exception:
                logger.error(
                    "Failed to trigger security alert for %s in %s (score=%d, ip=%s)",
                    user_id,
                    org_id,
                    risk_score,
                    mask_ip(ip),
                    exc_info=True,
                )

        return SecurityRiskResult(
            user_id=user_id,
            org_id=org_id,
            risk_score=risk_score,
            risk_level=risk_level,
            violations=violations,
            anomalies=anomalies,
            timestamp=timestamp,
            requires_alert=requires_alert,
            alert_triggered=alert_triggered,
            failed_checks=failed,
        )

    def should_block_action(self, user_id: str, org_id: str, action: str, ip: str) -> BlockDecision:
        result = self.evaluate(user_id, org_id, action, ip)
        if result.risk_level == RiskLevel.CRITICAL:
            return BlockDecision(
                blocked=True,
                risk_score=result.risk_score,
                reason=(
                    f"Security risk too high (score: {result.risk_score}). "
                    "Please contact your administrator."
                ),
            )
        return BlockDecision(blocked=False, risk_score=result.risk_score)
