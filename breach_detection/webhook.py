from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

import httpx
from fastapi.encoders import jsonable_encoder

from .geolocation import mask_ip
from .models import DeliveryReport, SecurityAlert


logger = logging.getLogger(__name__)


def build_alert_payload(
    *,
    alert_id: str,
    alert: SecurityAlert,
    delivered: DeliveryReport,
    errors: list[str],
) -> MutableMapping[str, Any]:
    """Create a JSON-serializable SIEM payload describing a dispatched alert."""
    payload: MutableMapping[str, Any] = {
        "alert_id": alert_id,
        "alert_type": alert.type,
        "user_id": alert.user_id,
        "org_id": alert.org_id,
        "risk_score": alert.risk_score,
        "action": alert.action,
        "ip": mask_ip(alert.ip),
        "timestamp": alert.timestamp,
        "violations": [
            {"type": v.type, "severity": v.severity, "threshold": v.threshold, "actual": v.actual}
            for v in alert.violations
        ],
        "anomalies": [
            {"type": a.type, "severity": a.severity, "confidence": a.confidence, "details": a.details}
            for a in alert.anomalies
        ],
        "delivered": {
            "org_admin_count": len(delivered.org_admins),
            "ops": delivered.ops,
            "notification_count": len(delivered.in_app_notifications),
        },
        "error_count": len(errors),
    }
    return jsonable_encoder(payload)  # normalizes datetimes, enums and dataclasses


def deliver_webhook(webhook_url: Optional[str], payload: Mapping[str, Any], timeout: float = 5.0) -> Optional[str]:
    """Send the payload to the SIEM endpoint if configured; returns an error message on failure."""
    if not webhook_url:
        return None

    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(str(webhook_url), json=payload)
            response.raise_for_status()
    except Exception as exc:  # malformed URLs raise ValueError or UnicodeError, not HTTPError
        logger.warning("Failed to deliver alert webhook to %s: %s", webhook_url, exc)
        return f"Failed to deliver SIEM webhook: {exc}"
    return None
