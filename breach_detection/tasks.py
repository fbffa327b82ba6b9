from __future__ import annotations

import logging
import os
from typing import Any, Mapping, MutableMapping, Optional
from uuid import uuid4

from celery import Celery
from pydantic import BaseModel, Field

from .channels import HttpEmailSender, LoggingEmailSender
from .config import EngineConfig
from .geolocation import GeoResolver, HttpCountryLookup
from .logging_config import setup_logger
from .persistence import (
    EvaluationRepository,
    MongoActivityLog,
    MongoAuditRecorder,
    MongoDirectory,
    MongoNotificationInbox,
    connect,
    serialize_result,
)
from .risk_engine import RiskEvaluator
from .stores import EmailSender

logger = logging.getLogger(__name__)


def _broker_url() -> str:
    return os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")


def _result_backend() -> str:
    return os.getenv("CELERY_RESULT_BACKEND", _broker_url())


def _mongodb_uri() -> str:
    return os.getenv("MONGODB_URI", "mongodb://mongo:27017/")


def _mongodb_database() -> str:
    return os.getenv("MONGODB_DATABASE", "breach_detection")


_CONFIG = EngineConfig.from_env()

celery_app = Celery("breach_detection", broker=_broker_url(), backend=_result_backend())
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "purge-alert-cooldowns": {
            "task": "breach_detection.purge_alert_cooldowns",
            "schedule": _CONFIG.alert_cooldown.total_seconds(),
        },
    },
)

_EVALUATOR: Optional[RiskEvaluator] = None
_REPOSITORY: Optional[EvaluationRepository] = None


class EvaluationRequest(BaseModel):
    user_id: str = Field(min_length=1)
    org_id: str = Field(min_length=1)
    action: str = Field(min_length=1)
    ip: str


def _email_sender() -> EmailSender:
    api_url = os.getenv("EMAIL_API_URL")
    if not api_url:
        return LoggingEmailSender()
    return HttpEmailSender(
        api_url=api_url,
        from_email=os.getenv("EMAIL_FROM", "alerts@scrybe.app"),
        api_key=os.getenv("EMAIL_API_KEY"),
    )


def _geo_resolver() -> GeoResolver:
    geoip_url = os.getenv("GEOIP_API_URL")
    return GeoResolver(HttpCountryLookup(geoip_url) if geoip_url else None)


def _get_evaluator() -> RiskEvaluator:
    global _EVALUATOR
    if _EVALUATOR is None:
        setup_logger()
        db = connect(_mongodb_uri(), _mongodb_database())
        _EVALUATOR = RiskEvaluator(
            activity_log=MongoActivityLog(db),
            directory=MongoDirectory(db),
            email=_email_sender(),
            inbox=MongoNotificationInbox(db),
            audit=MongoAuditRecorder(db),
            geo=_geo_resolver(),
            config=_CONFIG,
        )
    return _EVALUATOR


def _get_repository() -> EvaluationRepository:
    global _REPOSITORY
    if _REPOSITORY is None:
        _REPOSITORY = EvaluationRepository(connect(_mongodb_uri(), _mongodb_database()))
    return _REPOSITORY


@celery_app.task(name="breach_detection.process_evaluation")
def process_evaluation(task_id: str, request: Mapping[str, Any]) -> MutableMapping[str, Any]:
    payload = EvaluationRequest.model_validate(request)
    result = _get_evaluator().evaluate(payload.user_id, payload.org_id, payload.action, payload.ip)
    _get_repository().save_evaluation(task_id, payload.model_dump(), result)
    serialized = serialize_result(result)
    serialized["timestamp"] = result.timestamp.isoformat()
    return serialized


@celery_app.task(name="breach_detection.purge_alert_cooldowns")
def purge_alert_cooldowns() -> int:
    """Evict expired cooldown entries held by the worker process that runs this task.

    Cooldowns are per-process; a worker that has not evaluated anything yet has
    nothing to purge and does not connect to MongoDB.
    """
    if _EVALUATOR is None:
        return 0
    evicted = _EVALUATOR.alerts.purge_cooldowns()
    if evicted:
        logger.debug("Evicted %d expired alert cooldown entries", evicted)
    return evicted


def enqueue_evaluation(user_id: str, org_id: str, action: str, ip: str) -> str:
    request = EvaluationRequest(user_id=user_id, org_id=org_id, action=action, ip=ip)
    task_id = str(uuid4())
    process_evaluation.apply_async(args=[task_id, request.model_dump()], task_id=task_id)
    return task_id
