"""Contracts the engine needs from the surrounding product.

The engine never talks to a database or mail server directly; it is handed
objects that satisfy these protocols. ``memory`` holds in-process versions
and ``persistence`` the MongoDB-backed ones.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Protocol

from .models import (
    ActivityFilter,
    ActivityRecord,
    AlertRecipient,
    AuditEntry,
    Delivery,
    OrgRecord,
    UserRecord,
)


class ActivityLog(Protocol):
    def count_activity(
        self,
        org_id: Optional[str],
        user_id: str,
        since: datetime,
        action_filter: ActivityFilter | None = None,
    ) -> int:
        """Count rows for a user since ``since``; ``org_id=None`` spans all orgs."""

    def list_recent_activity(
        self,
        org_id: Optional[str],
        user_id: str,
        since: datetime,
        limit: int,
    ) -> List[ActivityRecord]:
        """Most recent rows first, at most ``limit`` of them."""


class Directory(Protocol):
    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_org(self, org_id: str) -> Optional[OrgRecord]:
        ...

    def list_org_admins(self, org_id: str) -> List[AlertRecipient]:
        """Active users with the ADMIN role."""

    def list_org_users(self, org_id: str) -> List[UserRecord]:
        ...

    def increment_failed_logins(self, user_id: str, now: datetime) -> Optional[UserRecord]:
        """Atomically add one failed attempt.

        A lock that expired before ``now`` is cleared first and the count
        restarts at one. Returns the updated user or ``None`` if unknown.
        """

    def set_locked_until(self, user_id: str, locked_until: Optional[datetime]) -> None:
        ...

    def reset_failed_logins(self, user_id: str) -> None:
        ...


class EmailSender(Protocol):
    def send_email(self, to: str, subject: str, body: str) -> Delivery:
        ...


class NotificationInbox(Protocol):
    def create_notification(self, user_id: str, payload: Mapping[str, Any]) -> Delivery:
        ...


class AuditRecorder(Protocol):
    def write_audit_record(self, entry: AuditEntry) -> None:
        ...
