from datetime import datetime, timedelta, timezone

import pytest

from breach_detection.alerts import AlertDispatcher
from breach_detection.config import EngineConfig
from breach_detection.geolocation import GeoResolver, StaticCountryTable
from breach_detection.memory import (
    InMemoryActivityLog,
    InMemoryAuditRecorder,
    InMemoryDirectory,
    InMemoryNotificationInbox,
    ManualClock,
    RecordingEmailSender,
)
from breach_detection.models import ActivityRecord, OrgRecord, UserRecord
from breach_detection.risk_engine import RiskEvaluator

NOW = datetime(2024, 3, 12, 14, 0, tzinfo=timezone.utc)

US_IP = "3.10.20.30"
DE_IP = "5.60.70.80"
CN_IP = "1.2.3.4"


@pytest.fixture
def clock():
    return ManualClock(NOW)


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def geo():
    return GeoResolver(StaticCountryTable({"3.0.0.0/8": "US", "5.0.0.0/8": "DE", "1.0.0.0/8": "CN"}))


@pytest.fixture
def activity_log():
    return InMemoryActivityLog()


@pytest.fixture
def directory():
    directory = InMemoryDirectory()
    directory.add_org(OrgRecord(id="org-1", name="Acme Health"))
    directory.add_user(UserRecord(id="admin-1", org_id="org-1", email="admin@acme.test", name="Ada Admin", role="ADMIN"))
    directory.add_user(UserRecord(id="admin-2", org_id="org-1", email="second@acme.test", name=None, role="ADMIN"))
    directory.add_user(
        UserRecord(id="admin-old", org_id="org-1", email="old@acme.test", role="ADMIN", is_active=False)
    )
    directory.add_user(UserRecord(id="user-1", org_id="org-1", email="casey@acme.test", name="Casey Worker"))
    return directory


@pytest.fixture
def email():
    return RecordingEmailSender()


@pytest.fixture
def inbox():
    return InMemoryNotificationInbox()


@pytest.fixture
def audit():
    return InMemoryAuditRecorder()


@pytest.fixture
def dispatcher(directory, email, inbox, audit, config, clock):
    return AlertDispatcher(directory, email, inbox, audit, config=config, clock=clock)


@pytest.fixture
def evaluator(activity_log, directory, email, inbox, audit, geo, config, clock):
    return RiskEvaluator(activity_log, directory, email, inbox, audit, geo=geo, config=config, clock=clock)


def add_activity(log, when, action="VIEW", count=1, user_id="user-1", org_id="org-1", spacing=timedelta(0), **extra):
    for index in range(count):
        log.record(
            ActivityRecord(
                user_id=user_id,
                org_id=org_id,
                action=action,
                timestamp=when + spacing * index,
                **extra,
            )
        )
