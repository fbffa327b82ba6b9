from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence, Union


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ThresholdType(str, Enum):
    EXCESSIVE_EXPORTS = "EXCESSIVE_EXPORTS"
    EXCESSIVE_CLIENT_VIEWS = "EXCESSIVE_CLIENT_VIEWS"
    EXCESSIVE_FAILED_LOGINS = "EXCESSIVE_FAILED_LOGINS"
    BULK_DOWNLOAD = "BULK_DOWNLOAD"


class AnomalyType(str, Enum):
    OFF_HOURS_ACCESS = "OFF_HOURS_ACCESS"
    GEOGRAPHIC_ANOMALY = "GEOGRAPHIC_ANOMALY"
    UNUSUAL_ACCESS_PATTERN = "UNUSUAL_ACCESS_PATTERN"
    RAPID_FIRE_REQUESTS = "RAPID_FIRE_REQUESTS"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AlertType(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"


class Action(str, Enum):
    """Activity-log action names the engine queries for."""

    EXPORT = "EXPORT"
    VIEW = "VIEW"
    DOWNLOAD = "DOWNLOAD"
    LOGIN = "LOGIN"
    CLIENT = "CLIENT"


class Resource(str, Enum):
    CLIENT = "CLIENT"
    SECURITY_ALERT = "SECURITY_ALERT"
    SECURITY_INCIDENT = "SECURITY_INCIDENT"
    USER = "USER"


@dataclass(slots=True)
class ActivityRecord:
    user_id: str
    org_id: str
    action: str
    timestamp: datetime
    resource: Optional[str] = None
    ip: Optional[str] = None
    success: Optional[bool] = None


@dataclass(slots=True, frozen=True)
class ActivityFilter:
    """Narrows an activity count to one action/resource/outcome."""

    action: Optional[str] = None
    resource: Optional[str] = None
    success: Optional[bool] = None


@dataclass(slots=True)
class UserRecord:
    id: str
    org_id: str
    email: str
    name: Optional[str] = None
    role: str = "MEMBER"
    is_active: bool = True
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None


@dataclass(slots=True)
class OrgRecord:
    id: str
    name: str


@dataclass(slots=True)
class AlertRecipient:
    id: str
    email: str
    name: Optional[str] = None


@dataclass(slots=True)
class AuditEntry:
    org_id: str
    user_id: str
    action: str
    resource: str
    resource_id: str
    resource_name: str
    details: Mapping[str, Any]
    timestamp: datetime


@dataclass(slots=True)
class Delivery:
    """Outcome of one email or in-app delivery attempt."""

    recipient: str
    ok: bool
    error: Optional[str] = None


@dataclass(slots=True)
class ThresholdViolation:
    type: ThresholdType
    threshold: int
    actual: int
    severity: Severity
    description: str
    timestamp: datetime


@dataclass(slots=True)
class OffHoursDetails:
    current_hour: int
    business_hours_start: int
    business_hours_end: int


@dataclass(slots=True)
class GeographicDetails:
    detected_country: str
    known_countries: List[str]
    is_high_risk: bool
    ip: str


@dataclass(slots=True)
class AccessPatternDetails:
    metric: str
    average: float
    current: int
    ratio: float


@dataclass(slots=True)
class RapidFireDetails:
    requests_per_second: int
    threshold: int


AnomalyDetails = Union[OffHoursDetails, GeographicDetails, AccessPatternDetails, RapidFireDetails]


@dataclass(slots=True)
class AnomalyIndicator:
    type: AnomalyType
    confidence: float
    severity: Severity
    description: str
    details: AnomalyDetails
    timestamp: datetime


@dataclass(slots=True)
class AccessHours:
    start: int
    end: int

    def contains(self, hour: int) -> bool:
        return self.start <= hour < self.end


@dataclass(slots=True)
class UserAccessPattern:
    user_id: str
    avg_daily_exports: float
    avg_daily_client_views: float
    typical_access_hours: AccessHours
    known_countries: List[str]
    avg_requests_per_minute: float
    last_calculated: datetime


@dataclass(slots=True)
class SecurityRiskResult:
    user_id: str
    org_id: str
    risk_score: int
    risk_level: RiskLevel
    violations: List[ThresholdViolation]
    anomalies: List[AnomalyIndicator]
    timestamp: datetime
    requires_alert: bool
    alert_triggered: bool
    failed_checks: List[str] = field(default_factory=list)


@dataclass(slots=True)
class BlockDecision:
    blocked: bool
    risk_score: int
    reason: Optional[str] = None


@dataclass(slots=True)
class SecurityAlert:
    type: AlertType
    user_id: str
    org_id: str
    risk_score: int
    violations: Sequence[ThresholdViolation]
    anomalies: Sequence[AnomalyIndicator]
    action: str
    ip: str
    timestamp: datetime


@dataclass(slots=True)
class DeliveryReport:
    org_admins: List[str] = field(default_factory=list)
    ops: bool = False
    in_app_notifications: List[str] = field(default_factory=list)
    extra_recipients: List[str] = field(default_factory=list)

    @property
    def any(self) -> bool:
        return bool(self.org_admins or self.ops or self.in_app_notifications or self.extra_recipients)


@dataclass(slots=True)
class AlertResult:
    alert_id: str
    delivered: DeliveryReport
    errors: List[str] = field(default_factory=list)
    suppressed: bool = False
    note: Optional[str] = None


@dataclass(slots=True)
class IncidentReport:
    incident_id: str
    delivered_to_ops: bool
    errors: List[str] = field(default_factory=list)


@dataclass(slots=True)
class LockoutStatus:
    locked: bool
    remaining_attempts: int
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    minutes_remaining: Optional[int] = None


@dataclass(slots=True)
class LockedAccount:
    id: str
    email: str
    name: Optional[str]
    locked_until: datetime
    failed_attempts: int
