from datetime import timedelta

import pytest
from pydantic import ValidationError

from breach_detection import tasks
from breach_detection.risk_engine import RiskEvaluator

from conftest import NOW


class RecordingRepository:
    def __init__(self):
        self.saved = []

    def save_evaluation(self, task_id, request, result):
        self.saved.append((task_id, request, result))


def test_request_requires_identifiers():
    with pytest.raises(ValidationError):
        tasks.EvaluationRequest(user_id="", org_id="org-1", action="EXPORT", ip="1.2.3.4")


def test_process_evaluation_saves_result(monkeypatch, activity_log, directory, email, inbox, audit, geo, config, clock):
    evaluator = RiskEvaluator(activity_log, directory, email, inbox, audit, geo=geo, config=config, clock=clock)
    repository = RecordingRepository()
    monkeypatch.setattr(tasks, "_get_evaluator", lambda: evaluator)
    monkeypatch.setattr(tasks, "_get_repository", lambda: repository)

    output = tasks.process_evaluation(
        "task-1", {"user_id": "user-1", "org_id": "org-1", "action": "VIEW", "ip": "3.10.20.30"}
    )

    assert output["risk_level"] == "LOW"
    assert output["timestamp"] == NOW.isoformat()
    assert repository.saved[0][0] == "task-1"
    assert repository.saved[0][1]["action"] == "VIEW"


def test_purge_task_evicts_expired_cooldowns(monkeypatch, activity_log, directory, email, inbox, audit, config, clock):
    evaluator = RiskEvaluator(activity_log, directory, email, inbox, audit, config=config, clock=clock)
    evaluator.alerts.cooldowns.acquire("user-1:CRITICAL")
    clock.advance(timedelta(minutes=11))
    monkeypatch.setattr(tasks, "_EVALUATOR", evaluator)

    assert tasks.purge_alert_cooldowns() == 1


def test_purge_task_does_not_build_an_engine(monkeypatch):
    def unavailable():
        raise AssertionError("purge must not connect to MongoDB")

    monkeypatch.setattr(tasks, "_EVALUATOR", None)
    monkeypatch.setattr(tasks, "_get_evaluator", unavailable)

    assert tasks.purge_alert_cooldowns() == 0
