"""Security risk evaluation and alerting engine."""

from .alerts import AlertDispatcher
from .config import EngineConfig, SecurityThresholds
from .cooldown import AlertCooldownCache
from .lockout import LoginLockoutManager
from .models import (
    AnomalyIndicator,
    RiskLevel,
    SecurityAlert,
    SecurityRiskResult,
    ThresholdViolation,
    UserAccessPattern,
)
from .risk_engine import RiskEvaluator
from .scoring import calculate_risk_score

__all__ = [
    "AlertCooldownCache",
    "AlertDispatcher",
    "AnomalyIndicator",
    "EngineConfig",
    "LoginLockoutManager",
    "RiskEvaluator",
    "RiskLevel",
    "SecurityAlert",
    "SecurityRiskResult",
    "SecurityThresholds",
    "ThresholdViolation",
    "UserAccessPattern",
    "calculate_risk_score",
]
