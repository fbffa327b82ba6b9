from datetime import datetime, timedelta, timezone

from breach_detection import EngineConfig, RiskEvaluator
from breach_detection.geolocation import GeoResolver, StaticCountryTable
from breach_detection.logging_config import setup_logger
from breach_detection.memory import (
    InMemoryActivityLog,
    InMemoryAuditRecorder,
    InMemoryDirectory,
    InMemoryNotificationInbox,
    ManualClock,
    RecordingEmailSender,
)
from breach_detection.models import ActivityRecord, OrgRecord, UserRecord


def seed(activity: InMemoryActivityLog, now: datetime) -> None:
    # three weeks of ordinary client work from the office
    for day in range(1, 22):
        start = (now - timedelta(days=day)).replace(hour=9)
        for n in range(8):
            activity.record(
                ActivityRecord(
                    "alice", "acme", "VIEW", start + timedelta(hours=n), resource="CLIENT", ip="3.14.15.92"
                )
            )
    # then a burst of exports this morning
    for n in range(120):
        activity.record(ActivityRecord("alice", "acme", "EXPORT", now.replace(hour=8) + timedelta(minutes=3 * n)))


def main() -> None:
    setup_logger()
    clock = ManualClock(datetime(2024, 3, 12, 14, 0, tzinfo=timezone.utc))

    directory = InMemoryDirectory()
    directory.add_org(OrgRecord(id="acme", name="Acme Health"))
    directory.add_user(UserRecord(id="bob", org_id="acme", email="bob@acme.test", name="Bob", role="ADMIN"))
    directory.add_user(UserRecord(id="alice", org_id="acme", email="alice@acme.test", name="Alice"))

    activity = InMemoryActivityLog()
    seed(activity, clock())

    email = RecordingEmailSender()
    evaluator = RiskEvaluator(
        activity_log=activity,
        directory=directory,
        email=email,
        inbox=InMemoryNotificationInbox(),
        audit=InMemoryAuditRecorder(),
        geo=GeoResolver(StaticCountryTable({"3.0.0.0/8": "US", "5.0.0.0/8": "DE"})),
        config=EngineConfig(high_risk_countries=frozenset({"KP", "IR"})),
        clock=clock,
    )

    result = evaluator.evaluate("alice", "acme", "EXPORT", "5.44.12.9")

    print("Risk score:", result.risk_score, result.risk_level.value)
    for violation in result.violations:
        print(f"- [{violation.severity.value}] {violation.description}")
    for anomaly in result.anomalies:
        print(f"- [{anomaly.severity.value}] {anomaly.description} ({anomaly.confidence:.0%})")
    print("Alert sent to:", ", ".join(email.recipients()) or "nobody")

    decision = evaluator.should_block_action("alice", "acme", "EXPORT", "5.44.12.9")
    print("Blocked:", decision.blocked, decision.reason or "")

    for _ in range(10):
        status = evaluator.lockout.record_failed_login("alice")
    print("Locked after 10 failures:", status.locked, f"({status.minutes_remaining} min)")


if __name__ == "__main__":
    main()
