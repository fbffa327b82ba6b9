"""Security alert routing.

Alerts produced by the risk evaluator go to organization admins by email and
in-app notification, to the operations mailbox when critical, to the
compliance audit trail, and optionally to a SIEM webhook. Repeated alerts for
the same user and alert type are collapsed by a cooldown cache; emergency
alerts and incident reports skip it.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .config import EngineConfig
from .cooldown import AlertCooldownCache
from .geolocation import mask_ip
from .logging_config import SUSPICIOUS_ACTIVITY, log_security_event
from .models import (
    AlertRecipient,
    AlertResult,
    AlertType,
    AuditEntry,
    Delivery,
    DeliveryReport,
    IncidentReport,
    OrgRecord,
    Resource,
    SecurityAlert,
    UserRecord,
)
from .stores import AuditRecorder, Directory, EmailSender, NotificationInbox
from .webhook import build_alert_payload, deliver_webhook

logger = logging.getLogger(__name__)

COOLDOWN_NOTE = "Alert skipped due to cooldown period"

_BASE36 = string.digits + string.ascii_lowercase

RECOMMENDED_ACTIONS: Dict[AlertType, List[str]] = {
    AlertType.CRITICAL: [
        "Immediately review the user's recent activity in the audit logs",
        "Consider temporarily disabling the user account",
        "Contact the user to verify their identity",
        "Check for any data that may have been accessed or exported",
        "Document your investigation and findings",
    ],
    AlertType.WARNING: [
        "Review the user's recent activity in the audit logs",
        "Contact the user if the activity seems unusual",
        "Monitor for continued suspicious activity",
        "Document any concerns",
    ],
    AlertType.INFO: [
        "Note the activity for future reference",
        "No immediate action required",
    ],
}


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_alert_id(prefix: str, timestamp: datetime) -> str:
    millis = int(timestamp.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{prefix}_{_base36(millis)}_{suffix}"


@dataclass(slots=True)
class AlertContent:
    summary: str
    risk_score: int
    timestamp: str
    user_name: Optional[str]
    user_email: Optional[str]
    org_name: Optional[str]
    action: str
    ip: str
    violations: List[str]
    anomalies: List[str]


def format_alert_content(
    alert: SecurityAlert,
    user: Optional[UserRecord],
    org_name: Optional[str],
) -> AlertContent:
    if alert.type == AlertType.CRITICAL:
        summary = f"Critical security risk detected (score: {alert.risk_score})"
    elif alert.type == AlertType.WARNING:
        summary = f"Suspicious activity detected (score: {alert.risk_score})"
    else:
        summary = f"Security event logged (score: {alert.risk_score})"

    return AlertContent(
        summary=summary,
        risk_score=alert.risk_score,
        timestamp=alert.timestamp.isoformat(),
        user_name=user.name if user else None,
        user_email=user.email if user else None,
        org_name=org_name,
        action=alert.action,
        ip=mask_ip(alert.ip),
        violations=[f"[{v.severity.value.upper()}] {v.description}" for v in alert.violations],
        anomalies=[
            f"[{a.severity.value.upper()}] {a.description} (confidence: {a.confidence * 100:.0f}%)"
            for a in alert.anomalies
        ],
    )


def _numbered(items: Sequence[str]) -> str:
    return "\n".join(f"  {index}. {item}" for index, item in enumerate(items, start=1))


def render_alert_email(
    alert_type: AlertType,
    content: AlertContent,
    recipient_name: Optional[str],
    ops: bool = False,
) -> tuple[str, str]:
    subject = f"[{alert_type.value}] Security Alert{' (Ops)' if ops else ''}: {content.summary}"
    sections = [
        f"Security Alert - {alert_type.value}",
        "=" * 50,
        f"Dear {recipient_name}," if recipient_name else "Dear Administrator,",
        f"A security alert has been triggered in {content.org_name or 'your organization'}.",
        "\n".join(
            [
                f"Summary: {content.summary}",
                f"Risk Score: {content.risk_score}/100",
                f"Timestamp: {content.timestamp}",
            ]
        ),
        "\n".join(
            [
                "User Involved:",
                f"- Name: {content.user_name or 'Unknown'}",
                f"- Email: {content.user_email or 'Unknown'}",
                f"- Action: {content.action}",
                f"- IP Address: {content.ip}",
            ]
        ),
    ]
    if content.violations:
        sections.append(f"Threshold Violations ({len(content.violations)}):\n{_numbered(content.violations)}")
    if content.anomalies:
        sections.append(f"Anomalies Detected ({len(content.anomalies)}):\n{_numbered(content.anomalies)}")
    sections.append(f"Recommended Actions:\n{_numbered(RECOMMENDED_ACTIONS[alert_type])}")
    sections.append("Please investigate this activity and take appropriate action if necessary.")
    sections.append(
        "---\nThis is an automated security alert.\n"
        "If you believe this alert is a false positive, please document your findings."
    )
    return subject, "\n\n".join(sections)


class AlertDispatcher:
    def __init__(
        self,
        directory: Directory,
        email: EmailSender,
        inbox: NotificationInbox,
        audit: AuditRecorder,
        config: EngineConfig | None = None,
        cooldowns: AlertCooldownCache | None = None,
        clock: Callable[[], datetime] | None = None,
        webhook: Callable[[Optional[str], Mapping[str, Any]], Optional[str]] = deliver_webhook,
    ):
        self.directory = directory
        self.email = email
        self.inbox = inbox
        self.audit = audit
        self.config = config or EngineConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.cooldowns = cooldowns or AlertCooldownCache(
            window=self.config.alert_cooldown,
            capacity=self.config.cooldown_capacity,
            clock=self.clock,
        )
        self.webhook = webhook

    def trigger_alert(self, alert: SecurityAlert) -> AlertResult:
        alert_id = generate_alert_id("alert", alert.timestamp)
        delivered = DeliveryReport()
        errors: List[str] = []

        key = AlertCooldownCache.key(alert.user_id, alert.type.value)
        previous = self.cooldowns.acquire(key)
        if previous is not None:
            logger.debug(
                "Skipping alert %s for %s due to cooldown (last sent %s)",
                alert_id,
                alert.user_id,
                previous.isoformat(),
            )
            return AlertResult(alert_id=alert_id, delivered=delivered, suppressed=True, note=COOLDOWN_NOTE)
        self.cooldowns.purge()

        admins: List[AlertRecipient] = []
        try:
            admins = self.directory.list_org_admins(alert.org_id)
            user = self.directory.get_user(alert.user_id)
            org = self.directory.get_org(alert.org_id)
            content = format_alert_content(alert, user, org.name if org else None)
        except Exception as exc:
            logger.error("Security alert %s could not load recipients", alert_id, exc_info=True)
            errors.append(f"Alert processing failed: {exc}")
            content = format_alert_content(alert, None, None)

        for admin in admins:
            subject, body = render_alert_email(alert.type, content, admin.name)
            outcome = self._send(admin.email, subject, body)
            if outcome.ok:
                delivered.org_admins.append(admin.email)
            else:
                errors.append(f"Failed to email {admin.email}: {outcome.error}")

        if alert.type == AlertType.CRITICAL:
            subject, body = render_alert_email(alert.type, content, "Security Operations Team", ops=True)
            outcome = self._send(self.config.ops_email, subject, body)
            delivered.ops = outcome.ok
            if not outcome.ok:
                errors.append(f"Failed to email security ops: {outcome.error}")

        for admin in admins:
            outcome = self._notify(
                admin.id,
                {
                    "type": "warning",
                    "title": f"Security Alert: {alert.type.value}",
                    "message": (
                        f"Suspicious activity detected. Risk score: {alert.risk_score}. "
                        f"{len(alert.violations)} threshold violations and "
                        f"{len(alert.anomalies)} anomalies detected."
                    ),
                    "metadata": {
                        "alert_id": alert_id,
                        "alert_type": alert.type.value,
                        "risk_score": alert.risk_score,
                        "user_id": alert.user_id,
                        "action": alert.action,
                    },
                },
            )
            if outcome.ok:
                delivered.in_app_notifications.append(admin.id)
            else:
                errors.append(f"Failed to create notification for {admin.id}: {outcome.error}")

        if self.config.siem_webhook_url:
            payload = build_alert_payload(alert_id=alert_id, alert=alert, delivered=delivered, errors=errors)
            try:
                webhook_error = self.webhook(self.config.siem_webhook_url, payload)
            except Exception as exc:
                logger.error("SIEM webhook failed for alert %s", alert_id, exc_info=True)
                webhook_error = f"Failed to deliver SIEM webhook: {exc}"
            if webhook_error:
                errors.append(webhook_error)

        self._record_alert(alert_id, alert, delivered, errors)
        return AlertResult(alert_id=alert_id, delivered=delivered, errors=errors)

    def send_emergency_alert(
        self,
        org_id: str,
        title: str,
        description: str,
        affected_users: Sequence[str] | None = None,
        additional_recipients: Sequence[str] | None = None,
    ) -> AlertResult:
        """Deliver a confirmed-incident alert to every admin and ops, ignoring cooldowns."""
        now = self.clock()
        alert_id = generate_alert_id("emergency", now)
        delivered = DeliveryReport()
        errors: List[str] = []
        affected = list(affected_users or [])

        admins, org = self._load_org(org_id, errors)

        lines = [
            "EMERGENCY SECURITY ALERT",
            "=" * 50,
            "",
            f"Organization: {org.name if org else org_id}",
            f"Alert ID: {alert_id}",
            f"Time: {now.isoformat()}",
            "",
            title,
            "",
            description,
        ]
        if affected:
            shown = ", ".join(affected[:10])
            more = f" (and {len(affected) - 10} more)" if len(affected) > 10 else ""
            lines += ["", f"Affected Users: {len(affected)}", f"{shown}{more}"]
        lines += [
            "",
            "IMMEDIATE ACTION REQUIRED:",
            "1. Investigate the incident immediately",
            "2. Contain any potential data exposure",
            "3. Document all findings",
            "4. Consider notifying affected parties per HIPAA requirements",
        ]
        body = "\n".join(lines)
        subject = f"[EMERGENCY] {title}"

        for admin in admins:
            outcome = self._send(admin.email, subject, body)
            if outcome.ok:
                delivered.org_admins.append(admin.email)
            else:
                errors.append(f"Failed to email {admin.email}: {outcome.error}")

        outcome = self._send(self.config.ops_email, subject, body)
        delivered.ops = outcome.ok
        if not outcome.ok:
            errors.append(f"Failed to email security ops: {outcome.error}")

        for address in additional_recipients or []:
            outcome = self._send(address, subject, body)
            if outcome.ok:
                delivered.extra_recipients.append(address)
            else:
                errors.append(f"Failed to email {address}: {outcome.error}")

        for admin in admins:
            outcome = self._notify(
                admin.id,
                {
                    "type": "warning",
                    "title": f"EMERGENCY: {title}",
                    "message": description[:500],
                    "metadata": {"alert_id": alert_id, "emergency": True},
                },
            )
            if outcome.ok:
                delivered.in_app_notifications.append(admin.id)
            else:
                errors.append(f"Failed to create notification for {admin.id}: {outcome.error}")

        log_security_event(
            logger,
            SUSPICIOUS_ACTIVITY,
            f"Emergency security alert: {alert_id}",
            alert_id=alert_id,
            organization_id=org_id,
            title=title,
            affected_user_count=len(affected),
            recipient_count=len(admins) + 1 + len(additional_recipients or []),
            error_count=len(errors),
        )
        return AlertResult(alert_id=alert_id, delivered=delivered, errors=errors)

    def report_security_incident(
        self,
        org_id: str,
        reporter_id: str,
        incident_type: str,
        description: str,
        evidence: Mapping[str, Any] | None = None,
    ) -> IncidentReport:
        """File a human-reported incident: always logged, audited and emailed to ops."""
        now = self.clock()
        incident_id = generate_alert_id("incident", now)
        errors: List[str] = []

        _, org = self._load_org(org_id, errors, with_admins=False)
        try:
            reporter = self.directory.get_user(reporter_id)
        except Exception:
            logger.warning("Could not load incident reporter %s", reporter_id, exc_info=True)
            reporter = None

        log_security_event(
            logger,
            SUSPICIOUS_ACTIVITY,
            f"Security incident reported: {incident_id}",
            incident_id=incident_id,
            incident_type=incident_type,
            organization_id=org_id,
            reporter_id=reporter_id,
            has_evidence=bool(evidence),
        )

        try:
            self.audit.write_audit_record(
                AuditEntry(
                    org_id=org_id,
                    user_id=reporter_id,
                    action="CREATE",
                    resource=Resource.SECURITY_INCIDENT.value,
                    resource_id=incident_id,
                    resource_name=f"Security Incident: {incident_type}",
                    details={
                        "incident_type": incident_type,
                        "description": description[:1000],
                        "has_evidence": bool(evidence),
                    },
                    timestamp=now,
                )
            )
        except Exception as exc:
            logger.error("Failed to write audit record for incident %s", incident_id, exc_info=True)
            errors.append(f"Failed to write audit record: {exc}")

        reporter_label = reporter_id
        if reporter is not None:
            reporter_label = reporter.name or reporter.email
        body = "\n".join(
            [
                f"Incident ID: {incident_id}",
                f"Organization: {org.name if org else org_id}",
                f"Reported By: {reporter_label}",
                f"Type: {incident_type}",
                f"Time: {now.isoformat()}",
                "",
                "Description:",
                description,
                "",
                f"Evidence Attached: {'Yes' if evidence else 'No'}",
                "",
                "Please investigate this incident.",
            ]
        )
        outcome = self._send(self.config.ops_email, f"Security Incident Report: {incident_type}", body)
        if not outcome.ok:
            errors.append(f"Failed to email security ops: {outcome.error}")

        return IncidentReport(incident_id=incident_id, delivered_to_ops=outcome.ok, errors=errors)

    def purge_cooldowns(self) -> int:
        return self.cooldowns.purge()

    def _load_org(
        self,
        org_id: str,
        errors: List[str],
        with_admins: bool = True,
    ) -> tuple[List[AlertRecipient], Optional[OrgRecord]]:
        try:
            admins = self.directory.list_org_admins(org_id) if with_admins else []
            return admins, self.directory.get_org(org_id)
        except Exception as exc:
            logger.error("Could not load organization %s for alerting", org_id, exc_info=True)
            errors.append(f"Failed to load organization {org_id}: {exc}")
            return [], None

    def _send(self, to: str, subject: str, body: str) -> Delivery:
        try:
            outcome = self.email.send_email(to, subject, body)
        except Exception as exc:
            outcome = Delivery(recipient=to, ok=False, error=str(exc) or exc.__class__.__name__)
        if not outcome.ok:
            logger.error("Failed to send security alert email to %s: %s", to, outcome.error)
        return outcome

    def _notify(self, user_id: str, payload: Mapping[str, Any]) -> Delivery:
        try:
            return self.inbox.create_notification(user_id, payload)
        except Exception as exc:
            return Delivery(recipient=user_id, ok=False, error=str(exc) or exc.__class__.__name__)

    def _record_alert(
        self,
        alert_id: str,
        alert: SecurityAlert,
        delivered: DeliveryReport,
        errors: List[str],
    ) -> None:
        log_security_event(
            logger,
            SUSPICIOUS_ACTIVITY,
            f"Security alert triggered: {alert_id}",
            alert_id=alert_id,
            alert_type=alert.type.value,
            user_id=alert.user_id,
            organization_id=alert.org_id,
            risk_score=alert.risk_score,
            action=alert.action,
            ip=mask_ip(alert.ip),
            violations=[
                {"type": v.type.value, "severity": v.severity.value, "threshold": v.threshold, "actual": v.actual}
                for v in alert.violations
            ],
            anomalies=[
                {"type": a.type.value, "severity": a.severity.value, "confidence": a.confidence}
                for a in alert.anomalies
            ],
            org_admin_count=len(delivered.org_admins),
            ops=delivered.ops,
            notification_count=len(delivered.in_app_notifications),
            error_count=len(errors),
        )

        try:
            self.audit.write_audit_record(
                AuditEntry(
                    org_id=alert.org_id,
                    user_id=alert.user_id,
                    action="CREATE",
                    resource=Resource.SECURITY_ALERT.value,
                    resource_id=alert_id,
                    resource_name=f"Security Alert: {alert.type.value}",
                    details={
                        "alert_type": alert.type.value,
                        "risk_score": alert.risk_score,
                        "violation_count": len(alert.violations),
                        "anomaly_count": len(alert.anomalies),
                        "alert_delivered": bool(delivered.org_admins) or delivered.ops,
                        "ops_delivered": delivered.ops,
                        "notifications_delivered": bool(delivered.in_app_notifications),
                    },
                    timestamp=alert.timestamp,
                )
            )
        except Exception as exc:
            logger.error("Failed to create audit record for security alert %s", alert_id, exc_info=True)
            errors.append(f"Failed to write audit record: {exc}")
