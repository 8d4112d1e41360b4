# backend/delivery_hub/routes/system.py
"""
System health endpoint.

Reports database reachability plus two operational signals: processing
claims that have been held a long time (claims never expire on their own)
and requests whose status lags behind their delivery (a failed best-effort
propagation, fixed by `flask deliveries reconcile`).
"""

import time
from datetime import timedelta

from flask import Blueprint, current_app
from ..extensions import db
from ..models import Branch, Delivery, DeliveryRequest, RequestProcessing, User
from ..models.deliveries import DELIVERY_STATUS_DELIVERED
from ..models.requests import REQUEST_STATUS_DELIVERED
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)

# Claims older than this are reported as possibly abandoned
STALE_CLAIM_AGE = timedelta(hours=12)


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        user_count = db.session.query(User).count()

        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {
                "branches": branch_count,
                "users": user_count,
            }
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Database error"
        }


def check_workflow_health() -> dict:
    """
    Degraded when claims look abandoned or request statuses lag their deliveries.
    """
    start_time = time.time()
    try:
        stale_claims = db.session.query(RequestProcessing).filter(
            RequestProcessing.started_at < utcnow() - STALE_CLAIM_AGE
        ).count()

        lagging_requests = (
            db.session.query(DeliveryRequest)
            .join(Delivery, Delivery.request_id == DeliveryRequest.id)
            .filter(
                Delivery.status == DELIVERY_STATUS_DELIVERED,
                DeliveryRequest.request_status != REQUEST_STATUS_DELIVERED,
            )
            .count()
        )

        details = {
            "stale_processing_claims": stale_claims,
            "requests_behind_delivery": lagging_requests,
        }
        if stale_claims or lagging_requests:
            return {
                "status": "degraded",
                "latency_ms": _elapsed_ms(start_time),
                "details": details,
            }
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": details,
        }
    except Exception:
        current_app.logger.exception("Workflow health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Workflow check error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    workflow_health = check_workflow_health()

    all_checks = [database_health, workflow_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": _elapsed_ms(start_time),
        "checks": {
            "database": database_health,
            "workflow": workflow_health,
        }
    }

    return response, http_status
