# Overview: Flask API routes for garment availability; booking-calendar queries.

# backend/atelier/routes/clothes.py
"""
Garment Availability API Routes

WHY: The booking calendar needs each garment's blocked days and a quick
yes/no for a candidate rental window before an order is written.
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import json_body
from ..extensions import db
from ..models import Cloth
from ..services import rental_service
from ..services.history_service import get_cloth_history
from ..validation import DomainError, NotFoundError, ValidationError, coerce_int
from ..time_utils import to_iso_date


clothes_bp = Blueprint("clothes", __name__, url_prefix="/api/clothes")


@clothes_bp.get("/<int:cloth_id>/unavailable-days")
def unavailable_days_route(cloth_id: int):
    """
    Blocked days for one garment.

    Returns:
        200: {"cloth_id", "unavailable_ranges", "unavailable_days", "available_from", ...}
        404: Garment not found
    """
    try:
        return jsonify(rental_service.unavailability_report(cloth_id)), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get unavailable days")
        return jsonify({"error": "Internal server error"}), 500


@clothes_bp.post("/unavailable-days")
def bulk_unavailable_days_route():
    """
    Blocked days for several garments.

    Request body:
    {
        "cloth_ids": [1, 2, 3]
    }
    """
    try:
        data = json_body()
        cloth_ids = data.get("cloth_ids")
        if not isinstance(cloth_ids, list):
            raise ValidationError("cloth_ids must be a list")
        return jsonify({"clothes": rental_service.bulk_unavailability(cloth_ids)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get bulk unavailable days")
        return jsonify({"error": "Internal server error"}), 500


@clothes_bp.get("/<int:cloth_id>/availability")
def availability_route(cloth_id: int):
    """
    Check a candidate rental window.

    Query params: delivery_date (YYYY-MM-DD), days_of_rent, exclude_order_id (optional)

    Returns:
        200: {"available": bool, "conflicts": [...]}
    """
    try:
        if db.session.get(Cloth, cloth_id) is None:
            raise NotFoundError(f"Cloth {cloth_id} not found")

        exclude = request.args.get("exclude_order_id")
        conflicts = rental_service.find_conflicts(
            cloth_id,
            request.args.get("delivery_date"),
            request.args.get("days_of_rent"),
            exclude_order_id=coerce_int(exclude, "exclude_order_id", minimum=1) if exclude else None,
        )
        return jsonify({
            "cloth_id": cloth_id,
            "available": not conflicts,
            "conflicts": [w.to_dict() for w in conflicts],
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to check availability")
        return jsonify({"error": "Internal server error"}), 500


@clothes_bp.get("/available-for-date")
def available_for_date_route():
    """
    Garments of one location bookable for a window.

    Query params: inventory_id, delivery_date, days_of_rent (default 1)
    """
    try:
        inventory_id = coerce_int(request.args.get("inventory_id"), "inventory_id", minimum=1)
        delivery_date = request.args.get("delivery_date")
        days_of_rent = request.args.get("days_of_rent", "1")
        clothes = rental_service.available_clothes_for_date(inventory_id, delivery_date, days_of_rent)
        return jsonify({
            "inventory_id": inventory_id,
            "delivery_date": delivery_date,
            "clothes": [c.to_dict() for c in clothes],
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list available clothes")
        return jsonify({"error": "Internal server error"}), 500


@clothes_bp.get("/<int:cloth_id>/history")
def cloth_history_route(cloth_id: int):
    try:
        cloth = db.session.get(Cloth, cloth_id)
        if cloth is None:
            raise NotFoundError(f"Cloth {cloth_id} not found")
        entries = get_cloth_history(cloth_id)
        return jsonify({
            "cloth": cloth.to_dict(),
            "history": [e.to_dict() for e in entries],
            "unavailable_days": [to_iso_date(d) for d in rental_service.unavailable_days(cloth_id)],
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get cloth history")
        return jsonify({"error": "Internal server error"}), 500
