"""In-process collaborators for tests, demos and single-node deployments."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from .models import (
    ActivityFilter,
    ActivityRecord,
    AlertRecipient,
    AuditEntry,
    Delivery,
    OrgRecord,
    UserRecord,
)


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now = self.now + delta
        return self.now


class InMemoryActivityLog:
    def __init__(self) -> None:
        self.records: List[ActivityRecord] = []
        self._lock = threading.Lock()

    def record(self, record: ActivityRecord) -> None:
        with self._lock:
            self.records.append(record)

    def _matching(self, org_id: Optional[str], user_id: str, since: datetime) -> List[ActivityRecord]:
        with self._lock:
            rows = list(self.records)
        return [
            row
            for row in rows
            if row.user_id == user_id
            and (org_id is None or row.org_id == org_id)
            and row.timestamp >= since
        ]

    def count_activity(
        self,
        org_id: Optional[str],
        user_id: str,
        since: datetime,
        action_filter: ActivityFilter | None = None,
    ) -> int:
        action_filter = action_filter or ActivityFilter()
        return sum(
            1
            for row in self._matching(org_id, user_id, since)
            if (action_filter.action is None or row.action == action_filter.action)
            and (action_filter.resource is None or row.resource == action_filter.resource)
            and (action_filter.success is None or row.success is action_filter.success)
        )

    def list_recent_activity(
        self,
        org_id: Optional[str],
        user_id: str,
        since: datetime,
        limit: int,
    ) -> List[ActivityRecord]:
        rows = sorted(self._matching(org_id, user_id, since), key=lambda row: row.timestamp, reverse=True)
        return rows[:limit]


class InMemoryDirectory:
    def __init__(self) -> None:
        self.users: Dict[str, UserRecord] = {}
        self.orgs: Dict[str, OrgRecord] = {}
        self._lock = threading.Lock()

    def add_org(self, org: OrgRecord) -> None:
        self.orgs[org.id] = org

    def add_user(self, user: UserRecord) -> None:
        with self._lock:
            self.users[user.id] = user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_org(self, org_id: str) -> Optional[OrgRecord]:
        return self.orgs.get(org_id)

    def list_org_admins(self, org_id: str) -> List[AlertRecipient]:
        with self._lock:
            return [
                AlertRecipient(id=user.id, email=user.email, name=user.name)
                for user in self.users.values()
                if user.org_id == org_id and user.role == "ADMIN" and user.is_active
            ]

    def list_org_users(self, org_id: str) -> List[UserRecord]:
        with self._lock:
            return [replace(user) for user in self.users.values() if user.org_id == org_id]

    def increment_failed_logins(self, user_id: str, now: datetime) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            if user.locked_until is not None and user.locked_until <= now:
                user.failed_login_attempts = 0
                user.locked_until = None
            user.failed_login_attempts += 1
            return replace(user)

    def set_locked_until(self, user_id: str, locked_until: Optional[datetime]) -> None:
        with self._lock:
            user = self.users.get(user_id)
            if user is not None:
                user.locked_until = locked_until

    def reset_failed_logins(self, user_id: str) -> None:
        with self._lock:
            user = self.users.get(user_id)
            if user is not None:
                user.failed_login_attempts = 0
                user.locked_until = None


@dataclass(slots=True)
class SentEmail:
    to: str
    subject: str
    body: str


@dataclass
class RecordingEmailSender:
    """Keeps every message; addresses in ``failing`` report a delivery error."""

    failing: set = field(default_factory=set)
    sent: List[SentEmail] = field(default_factory=list)

    def send_email(self, to: str, subject: str, body: str) -> Delivery:
        if to in self.failing:
            return Delivery(recipient=to, ok=False, error="mailbox unavailable")
        self.sent.append(SentEmail(to=to, subject=subject, body=body))
        return Delivery(recipient=to, ok=True)

    def recipients(self) -> List[str]:
        return [mail.to for mail in self.sent]


@dataclass
class InMemoryNotificationInbox:
    failing: set = field(default_factory=set)
    notifications: Dict[str, List[Mapping[str, Any]]] = field(default_factory=dict)

    def create_notification(self, user_id: str, payload: Mapping[str, Any]) -> Delivery:
        if user_id in self.failing:
            return Delivery(recipient=user_id, ok=False, error="inbox unavailable")
        self.notifications.setdefault(user_id, []).append(dict(payload))
        return Delivery(recipient=user_id, ok=True)


@dataclass
class InMemoryAuditRecorder:
    entries: List[AuditEntry] = field(default_factory=list)

    def write_audit_record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)
