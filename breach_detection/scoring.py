from __future__ import annotations

from typing import Dict, Iterable

from .models import AnomalyIndicator, AnomalyType, Severity, ThresholdType, ThresholdViolation

THRESHOLD_WEIGHTS: Dict[ThresholdType, float] = {
    ThresholdType.EXCESSIVE_EXPORTS: 25,
    ThresholdType.EXCESSIVE_CLIENT_VIEWS: 20,
    ThresholdType.EXCESSIVE_FAILED_LOGINS: 30,
    ThresholdType.BULK_DOWNLOAD: 25,
}

ANOMALY_WEIGHTS: Dict[AnomalyType, float] = {
    AnomalyType.OFF_HOURS_ACCESS: 15,
    AnomalyType.GEOGRAPHIC_ANOMALY: 25,
    AnomalyType.UNUSUAL_ACCESS_PATTERN: 20,
    AnomalyType.RAPID_FIRE_REQUESTS: 30,
}

SEVERITY_MULTIPLIERS: Dict[Severity, float] = {
    Severity.CRITICAL: 1.5,
    Severity.HIGH: 1.2,
    Severity.MEDIUM: 1.0,
    Severity.LOW: 0.7,
}

DEFAULT_WEIGHT = 15.0
MAX_SCORE = 100
MAX_OVERAGE = 2.0


def violation_points(violation: ThresholdViolation) -> float:
    weight = THRESHOLD_WEIGHTS.get(violation.type, DEFAULT_WEIGHT)
    overage = min(MAX_OVERAGE, violation.actual / violation.threshold) if violation.threshold > 0 else MAX_OVERAGE
    return weight * SEVERITY_MULTIPLIERS[violation.severity] * overage


def anomaly_points(anomaly: AnomalyIndicator) -> float:
    weight = ANOMALY_WEIGHTS.get(anomaly.type, DEFAULT_WEIGHT)
    return weight * SEVERITY_MULTIPLIERS[anomaly.severity] * anomaly.confidence


def calculate_risk_score(
    violations: Iterable[ThresholdViolation],
    anomalies: Iterable[AnomalyIndicator],
) -> int:
    """Combine violations and confidence-weighted anomalies into a 0-100 score.

    Pure and deterministic: no clock, no I/O.
    """
    score = sum(violation_points(v) for v in violations) + sum(anomaly_points(a) for a in anomalies)
    # round half up, matching how scores are shown to admins
    return min(MAX_SCORE, int(score + 0.5))
