# backend/backoffice/routes/system.py
"""
System health endpoint.

Reports database connectivity and the state of the day-close staging area
(stale PENDING stagings are the one thing an operator may need to sweep).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import LotteryDayCloseStaging, LotteryPack, Store
from ..models.day_close import STAGING_STATUS_PENDING
from backoffice.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        pack_count = db.session.query(LotteryPack).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stores": store_count,
                "lottery_packs": pack_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_day_close_health() -> dict:
    """Expired-but-unswept stagings degrade health; they never block work."""
    start_time = time.time()
    try:
        now = utcnow()
        pending = db.session.query(LotteryDayCloseStaging).filter(
            LotteryDayCloseStaging.status == STAGING_STATUS_PENDING
        ).count()
        expired = db.session.query(LotteryDayCloseStaging).filter(
            LotteryDayCloseStaging.status == STAGING_STATUS_PENDING,
            LotteryDayCloseStaging.expires_at <= now,
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pending_closes": pending,
                "expired_pending_cleanup": expired,
            }
        }
        if expired:
            result["status"] = "degraded"
            result["warning"] = "Run 'flask lottery expire-pending-closes'"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Day-close health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Day-close staging error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    day_close_health = check_day_close_health()

    all_checks = [database_health, day_close_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "day_close": day_close_health,
        }
    }

    return response, http_status
