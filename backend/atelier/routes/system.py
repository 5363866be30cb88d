# backend/atelier/routes/system.py
"""
System health and version endpoints.

Health checks the database and reports basic counts for deployment
debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Cloth, Order, Rent
from ..models.rentals import RENT_STATUS_ACTIVE
from atelier.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        cloth_count = db.session.query(Cloth).count()
        order_count = db.session.query(Order).count()
        active_rents = db.session.query(Rent).filter_by(status=RENT_STATUS_ACTIVE).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "clothes": cloth_count,
                "orders": order_count,
                "active_rents": active_rents,
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


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Database reachable
    - 503: Database unhealthy
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "rental_buffer_days": current_app.config.get("RENTAL_BUFFER_DAYS"),
        "checks": {
            "database": database_health,
        }
    }

    return response, http_status
