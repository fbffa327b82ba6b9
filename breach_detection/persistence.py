from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Optional

from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .errors import DataSourceError
from .models import (
    ActivityFilter,
    ActivityRecord,
    AlertRecipient,
    AnomalyIndicator,
    AuditEntry,
    Delivery,
    OrgRecord,
    SecurityRiskResult,
    ThresholdViolation,
    UserRecord,
)


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as exc:
        raise DataSourceError(f"{operation} failed: {exc}") from exc


def connect(uri: str, database: str = "breach_detection") -> Database:
    client: MongoClient = MongoClient(uri, tz_aware=True)
    return client[database]


def build_activity_query(
    org_id: Optional[str],
    user_id: str,
    since: datetime,
    action_filter: ActivityFilter | None = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {"user_id": user_id, "timestamp": {"$gte": since}}
    if org_id is not None:
        query["org_id"] = org_id
    if action_filter is not None:
        if action_filter.action is not None:
            query["action"] = action_filter.action
        if action_filter.resource is not None:
            query["resource"] = action_filter.resource
        if action_filter.success is not None:
            query["success"] = action_filter.success
    return query


class MongoActivityLog:
    def __init__(self, db: Database, collection: str = "activity_logs") -> None:
        self.logs = db[collection]
        self.logs.create_index([("user_id", 1), ("org_id", 1), ("timestamp", DESCENDING)])

    def record(self, record: ActivityRecord) -> None:
        with _translate_errors("activity insert"):
            self.logs.insert_one(asdict(record))

    def count_activity(
        self,
        org_id: Optional[str],
        user_id: str,
        since: datetime,
        action_filter: ActivityFilter | None = None,
    ) -> int:
        with _translate_errors("activity count"):
            return self.logs.count_documents(build_activity_query(org_id, user_id, since, action_filter))

    def list_recent_activity(
        self,
        org_id: Optional[str],
        user_id: str,
        since: datetime,
        limit: int,
    ) -> List[ActivityRecord]:
        with _translate_errors("activity scan"):
            cursor = (
                self.logs.find(build_activity_query(org_id, user_id, since), {"_id": 0})
                .sort("timestamp", DESCENDING)
                .limit(limit)
            )
            return [
                ActivityRecord(
                    user_id=doc["user_id"],
                    org_id=doc.get("org_id", ""),
                    action=doc.get("action", ""),
                    timestamp=doc["timestamp"],
                    resource=doc.get("resource"),
                    ip=doc.get("ip"),
                    success=doc.get("success"),
                )
                for doc in cursor
            ]


def _to_user(doc: Mapping[str, Any]) -> UserRecord:
    return UserRecord(
        id=str(doc["_id"]),
        org_id=doc.get("org_id", ""),
        email=doc.get("email", ""),
        name=doc.get("name"),
        role=doc.get("role", "MEMBER"),
        is_active=doc.get("is_active", True),
        failed_login_attempts=doc.get("failed_login_attempts", 0),
        locked_until=doc.get("locked_until"),
    )


class MongoDirectory:
    def __init__(self, db: Database) -> None:
        self.users = db["users"]
        self.orgs = db["organizations"]

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with _translate_errors("user lookup"):
            doc = self.users.find_one({"_id": user_id})
        return _to_user(doc) if doc else None

    def get_org(self, org_id: str) -> Optional[OrgRecord]:
        with _translate_errors("organization lookup"):
            doc = self.orgs.find_one({"_id": org_id}, {"name": 1})
        return OrgRecord(id=org_id, name=doc.get("name", org_id)) if doc else None

    def list_org_admins(self, org_id: str) -> List[AlertRecipient]:
        with _translate_errors("admin lookup"):
            cursor = self.users.find(
                {"org_id": org_id, "role": "ADMIN", "is_active": True},
                {"email": 1, "name": 1},
            )
            return [AlertRecipient(id=str(doc["_id"]), email=doc["email"], name=doc.get("name")) for doc in cursor]

    def list_org_users(self, org_id: str) -> List[UserRecord]:
        with _translate_errors("user listing"):
            return [_to_user(doc) for doc in self.users.find({"org_id": org_id})]

    def increment_failed_logins(self, user_id: str, now: datetime) -> Optional[UserRecord]:
        with _translate_errors("failed login increment"):
            self.users.update_one(
                {"_id": user_id, "locked_until": {"$lte": now}},
                {"$set": {"failed_login_attempts": 0, "locked_until": None}},
            )
            doc = self.users.find_one_and_update(
                {"_id": user_id},
                {"$inc": {"failed_login_attempts": 1}},
                return_document=ReturnDocument.AFTER,
            )
        return _to_user(doc) if doc else None

    def set_locked_until(self, user_id: str, locked_until: Optional[datetime]) -> None:
        with _translate_errors("lock update"):
            self.users.update_one({"_id": user_id}, {"$set": {"locked_until": locked_until}})

    def reset_failed_logins(self, user_id: str) -> None:
        with _translate_errors("failed login reset"):
            self.users.update_one(
                {"_id": user_id},
                {"$set": {"failed_login_attempts": 0, "locked_until": None}},
            )


class MongoAuditRecorder:
    def __init__(self, db: Database) -> None:
        self.records = db["audit_records"]

    def write_audit_record(self, entry: AuditEntry) -> None:
        with _translate_errors("audit write"):
            self.records.insert_one({**asdict(entry), "details": dict(entry.details)})


class MongoNotificationInbox:
    def __init__(self, db: Database) -> None:
        self.notifications = db["notifications"]

    def create_notification(self, user_id: str, payload: Mapping[str, Any]) -> Delivery:
        document = {**payload, "user_id": user_id, "read": False, "created_at": datetime.now(timezone.utc)}
        try:
            self.notifications.insert_one(document)
        except PyMongoError as exc:
            return Delivery(recipient=user_id, ok=False, error=str(exc))
        return Delivery(recipient=user_id, ok=True)


class EvaluationRepository:
    """MongoDB-backed store for evaluations run by background workers."""

    def __init__(self, db: Database) -> None:
        self.evaluations = db["evaluations"]
        self.evaluations.create_index("task_id", unique=True)

    def save_evaluation(
        self,
        task_id: str,
        request: Mapping[str, Any],
        result: SecurityRiskResult,
    ) -> None:
        document: MutableMapping[str, Any] = {
            "task_id": task_id,
            "request": dict(request),
            "result": serialize_result(result),
            "created_at": datetime.now(timezone.utc),
        }
        self.evaluations.replace_one({"task_id": task_id}, document, upsert=True)

    def get_evaluation(self, task_id: str) -> Optional[Dict[str, Any]]:
        document = self.evaluations.find_one({"task_id": task_id})
        if document is None:
            return None

        document.pop("_id", None)
        return document


def serialize_result(result: SecurityRiskResult) -> Dict[str, Any]:
    return {
        "user_id": result.user_id,
        "org_id": result.org_id,
        "risk_score": result.risk_score,
        "risk_level": result.risk_level.value,
        "requires_alert": result.requires_alert,
        "alert_triggered": result.alert_triggered,
        "failed_checks": list(result.failed_checks),
        "timestamp": result.timestamp,
        "violations": [_serialize_violation(v) for v in result.violations],
        "anomalies": [_serialize_anomaly(a) for a in result.anomalies],
    }


def _serialize_violation(violation: ThresholdViolation) -> Dict[str, Any]:
    return {
        "type": violation.type.value,
        "threshold": violation.threshold,
        "actual": violation.actual,
        "severity": violation.severity.value,
        "description": violation.description,
    }


def _serialize_anomaly(anomaly: AnomalyIndicator) -> Dict[str, Any]:
    return {
        "type": anomaly.type.value,
        "confidence": anomaly.confidence,
        "severity": anomaly.severity.value,
        "description": anomaly.description,
        "details": asdict(anomaly.details),
    }
