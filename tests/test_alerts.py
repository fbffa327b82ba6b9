from datetime import timedelta

import pytest

from breach_detection.alerts import COOLDOWN_NOTE, AlertDispatcher, generate_alert_id
from breach_detection.config import EngineConfig
from breach_detection.cooldown import AlertCooldownCache
from breach_detection.models import (
    AlertType,
    AnomalyIndicator,
    AnomalyType,
    GeographicDetails,
    Resource,
    SecurityAlert,
    Severity,
    ThresholdType,
    ThresholdViolation,
)

from conftest import NOW


def make_alert(alert_type=AlertType.CRITICAL, user_id="user-1", risk_score=98):
    return SecurityAlert(
        type=alert_type,
        user_id=user_id,
        org_id="org-1",
        risk_score=risk_score,
        violations=[
            ThresholdViolation(
                type=ThresholdType.EXCESSIVE_EXPORTS,
                threshold=50,
                actual=120,
                severity=Severity.CRITICAL,
                description="User exported 120 items today (limit: 50)",
                timestamp=NOW,
            )
        ],
        anomalies=[
            AnomalyIndicator(
                type=AnomalyType.GEOGRAPHIC_ANOMALY,
                confidence=0.75,
                severity=Severity.HIGH,
                description="Access from DE - user typically accesses from: US",
                details=GeographicDetails(
                    detected_country="DE", known_countries=["US"], is_high_risk=False, ip="5.60.xxx.xxx"
                ),
                timestamp=NOW,
            )
        ],
        action="EXPORT",
        ip="5.60.70.80",
        timestamp=NOW,
    )


def test_critical_alert_reaches_admins_ops_and_inbox(dispatcher, email, inbox, audit):
    result = dispatcher.trigger_alert(make_alert())

    assert result.suppressed is False
    assert result.errors == []
    assert result.delivered.org_admins == ["admin@acme.test", "second@acme.test"]
    assert result.delivered.ops is True
    assert result.delivered.in_app_notifications == ["admin-1", "admin-2"]
    assert email.recipients() == ["admin@acme.test", "second@acme.test", "security@scrybe.app"]
    assert inbox.notifications["admin-1"][0]["metadata"]["alert_id"] == result.alert_id

    assert len(audit.entries) == 1
    entry = audit.entries[0]
    assert entry.resource == Resource.SECURITY_ALERT.value
    assert entry.resource_id == result.alert_id
    assert entry.details["ops_delivered"] is True


def test_warning_alert_skips_ops(dispatcher, email):
    result = dispatcher.trigger_alert(make_alert(AlertType.WARNING, risk_score=60))
    assert result.delivered.ops is False
    assert "security@scrybe.app" not in email.recipients()


def test_email_body_masks_ip_and_lists_findings(dispatcher, email):
    dispatcher.trigger_alert(make_alert())
    admin_mail = email.sent[0]

    assert admin_mail.subject == "[CRITICAL] Security Alert: Critical security risk detected (score: 98)"
    assert "Dear Ada Admin," in admin_mail.body
    assert "Acme Health" in admin_mail.body
    assert "- IP Address: 5.60.xxx.xxx" in admin_mail.body
    assert "5.60.70.80" not in admin_mail.body
    assert "[CRITICAL] User exported 120 items today (limit: 50)" in admin_mail.body
    assert "(confidence: 75%)" in admin_mail.body
    assert "Immediately review the user's recent activity in the audit logs" in admin_mail.body
    assert email.sent[1].body.count("Dear Administrator,") == 1


def test_repeat_alert_within_cooldown_is_suppressed(dispatcher, email, audit, clock):
    first = dispatcher.trigger_alert(make_alert())
    sent = len(email.sent)

    clock.advance(timedelta(minutes=2))
    second = dispatcher.trigger_alert(make_alert())

    assert second.suppressed is True
    assert second.note == COOLDOWN_NOTE
    assert second.delivered.any is False
    assert len(email.sent) == sent
    assert len(audit.entries) == 1

    clock.advance(timedelta(minutes=3))
    third = dispatcher.trigger_alert(make_alert())
    assert third.suppressed is False
    assert third.alert_id != first.alert_id
    assert len(email.sent) == sent * 2


def test_cooldown_is_per_user_and_type(dispatcher):
    dispatcher.trigger_alert(make_alert())
    assert dispatcher.trigger_alert(make_alert(AlertType.WARNING)).suppressed is False
    assert dispatcher.trigger_alert(make_alert(user_id="user-2")).suppressed is False


def test_failed_recipient_does_not_block_others(directory, inbox, audit, config, clock, email):
    email.failing.add("admin@acme.test")
    inbox.failing.add("admin-2")
    dispatcher = AlertDispatcher(directory, email, inbox, audit, config=config, clock=clock)

    result = dispatcher.trigger_alert(make_alert())

    assert result.delivered.org_admins == ["second@acme.test"]
    assert result.delivered.ops is True
    assert result.delivered.in_app_notifications == ["admin-1"]
    assert "Failed to email admin@acme.test: mailbox unavailable" in result.errors
    assert "Failed to create notification for admin-2: inbox unavailable" in result.errors
    assert len(audit.entries) == 1


def test_raising_email_sender_is_collected(directory, inbox, audit, config, clock):
    class Outage:
        def send_email(self, to, subject, body):
            raise TimeoutError("smtp timeout")

    dispatcher = AlertDispatcher(directory, Outage(), inbox, audit, config=config, clock=clock)
    result = dispatcher.trigger_alert(make_alert())

    assert result.delivered.org_admins == []
    assert result.delivered.ops is False
    assert len(result.errors) == 3
    assert result.delivered.in_app_notifications == ["admin-1", "admin-2"]
    assert audit.entries[0].details["alert_delivered"] is False


def test_audit_failure_is_reported(directory, email, inbox, config, clock):
    class BrokenAudit:
        def write_audit_record(self, entry):
            raise IOError("disk full")

    dispatcher = AlertDispatcher(directory, email, inbox, BrokenAudit(), config=config, clock=clock)
    result = dispatcher.trigger_alert(make_alert())

    assert result.delivered.ops is True
    assert result.errors == ["Failed to write audit record: disk full"]


def test_siem_webhook_receives_masked_payload(directory, email, inbox, audit, clock):
    calls = []

    def webhook(url, payload):
        calls.append((url, payload))
        return None

    config = EngineConfig(siem_webhook_url="https://siem.example/hook")
    dispatcher = AlertDispatcher(directory, email, inbox, audit, config=config, clock=clock, webhook=webhook)
    result = dispatcher.trigger_alert(make_alert())

    assert len(calls) == 1
    url, payload = calls[0]
    assert url == "https://siem.example/hook"
    assert payload["alert_id"] == result.alert_id
    assert payload["alert_type"] == "CRITICAL"
    assert payload["ip"] == "5.60.xxx.xxx"
    assert payload["anomalies"][0]["details"]["detected_country"] == "DE"
    assert payload["delivered"]["ops"] is True


def test_webhook_error_is_collected(directory, email, inbox, audit, clock):
    config = EngineConfig(siem_webhook_url="https://siem.example/hook")
    dispatcher = AlertDispatcher(
        directory, email, inbox, audit, config=config, clock=clock, webhook=lambda url, payload: "siem down"
    )
    assert dispatcher.trigger_alert(make_alert()).errors == ["siem down"]


def test_emergency_alert_ignores_cooldown(dispatcher, email, inbox):
    dispatcher.trigger_alert(make_alert())
    email.sent.clear()

    result = dispatcher.send_emergency_alert(
        "org-1",
        "Confirmed data exfiltration",
        "Client records were exported to an unknown host.",
        affected_users=[f"user-{n}" for n in range(12)],
        additional_recipients=["ciso@acme.test"],
    )

    assert result.alert_id.startswith("emergency_")
    assert result.delivered.org_admins == ["admin@acme.test", "second@acme.test"]
    assert result.delivered.ops is True
    assert result.delivered.extra_recipients == ["ciso@acme.test"]
    assert email.recipients() == ["admin@acme.test", "second@acme.test", "security@scrybe.app", "ciso@acme.test"]
    assert email.sent[0].subject == "[EMERGENCY] Confirmed data exfiltration"
    assert "Affected Users: 12" in email.sent[0].body
    assert "(and 2 more)" in email.sent[0].body
    assert inbox.notifications["admin-1"][0]["metadata"]["emergency"] is True


def test_emergency_alert_survives_directory_outage(email, inbox, audit, config, clock):
    class DownDirectory:
        def list_org_admins(self, org_id):
            raise ConnectionError("directory offline")

    dispatcher = AlertDispatcher(DownDirectory(), email, inbox, audit, config=config, clock=clock)
    result = dispatcher.send_emergency_alert("org-1", "Breach", "details")

    assert result.delivered.ops is True
    assert email.recipients() == ["security@scrybe.app"]
    assert result.errors == ["Failed to load organization org-1: directory offline"]


def test_incident_report_goes_to_ops_and_audit(dispatcher, email, audit):
    report = dispatcher.report_security_incident(
        "org-1", "admin-1", "PHISHING", "Staff received a credential phishing email.", evidence={"headers": "..."}
    )

    assert report.incident_id.startswith("incident_")
    assert report.delivered_to_ops is True
    assert email.recipients() == ["security@scrybe.app"]
    assert email.sent[0].subject == "Security Incident Report: PHISHING"
    assert "Reported By: Ada Admin" in email.sent[0].body
    assert "Evidence Attached: Yes" in email.sent[0].body

    entry = audit.entries[0]
    assert entry.resource == Resource.SECURITY_INCIDENT.value
    assert entry.resource_id == report.incident_id
    assert entry.user_id == "admin-1"


def test_incident_report_when_ops_mail_fails(directory, inbox, audit, clock, email):
    email.failing.add("security@scrybe.app")
    dispatcher = AlertDispatcher(directory, email, inbox, audit, config=EngineConfig(), clock=clock)
    report = dispatcher.report_security_incident("org-1", "ghost", "OTHER", "Something odd")

    assert report.delivered_to_ops is False
    assert report.errors == ["Failed to email security ops: mailbox unavailable"]
    assert len(audit.entries) == 1


def test_alert_ids_are_unique_and_prefixed():
    ids = {generate_alert_id("alert", NOW) for _ in range(50)}
    assert len(ids) == 50
    assert all(alert_id.startswith("alert_") for alert_id in ids)


def test_cooldown_entries_are_purged(clock):
    cache = AlertCooldownCache(window=timedelta(minutes=5), clock=clock)
    assert cache.acquire(AlertCooldownCache.key("user-1", "CRITICAL")) is None
    assert cache.acquire(AlertCooldownCache.key("user-2", "WARNING")) is None

    clock.advance(timedelta(minutes=6))
    assert len(cache) == 2
    assert cache.last_sent("user-1:CRITICAL") == clock() - timedelta(minutes=6)

    clock.advance(timedelta(minutes=5))
    assert cache.purge() == 2
    assert cache.last_sent("user-1:CRITICAL") is None


@pytest.mark.parametrize("elapsed, suppressed", [(timedelta(minutes=4, seconds=59), True), (timedelta(minutes=5), False)])
def test_cooldown_window_edge(clock, elapsed, suppressed):
    cache = AlertCooldownCache(window=timedelta(minutes=5), clock=clock)
    cache.acquire("user-1:CRITICAL")
    clock.advance(elapsed)
    assert (cache.acquire("user-1:CRITICAL") is not None) is suppressed


@pytest.mark.parametrize("url", ["http://[::1", "http://siem.example\n/hook"])
def test_malformed_webhook_url_still_writes_audit(directory, email, inbox, audit, clock, url):
    config = EngineConfig(siem_webhook_url=url)
    dispatcher = AlertDispatcher(directory, email, inbox, audit, config=config, clock=clock)

    result = dispatcher.trigger_alert(make_alert())

    assert result.suppressed is False
    assert result.delivered.ops is True
    assert len(audit.entries) == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Failed to deliver SIEM webhook")


def test_raising_webhook_callable_is_collected(directory, email, inbox, audit, clock):
    def webhook(url, payload):
        raise RuntimeError("collector rejected payload")

    config = EngineConfig(siem_webhook_url="https://siem.example/hook")
    dispatcher = AlertDispatcher(directory, email, inbox, audit, config=config, clock=clock, webhook=webhook)

    result = dispatcher.trigger_alert(make_alert())

    assert result.errors == ["Failed to deliver SIEM webhook: collector rejected payload"]
    assert len(audit.entries) == 1
