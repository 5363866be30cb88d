# Overview: Flask API routes for payment operations; parses input and returns JSON responses.

# backend/atelier/routes/payments.py
"""
Payment API Routes

WHY: Record installments and fees against orders, settle pending payments
and cancel mistakes. Order paid/remaining/status are re-derived on every
payment event.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import with_actor, json_body
from ..services import payment_service
from ..models.payments import PAYMENT_STATUS_PAID, PAYMENT_TYPE_NORMAL
from ..validation import DomainError, coerce_int


payments_bp = Blueprint("payments", __name__, url_prefix="/api")


# =============================================================================
# ORDER PAYMENTS
# =============================================================================

@payments_bp.post("/orders/<int:order_id>/payments")
@with_actor
def add_payment_route(order_id: int):
    """
    Add a payment to an order.

    Request body:
    {
        "amount_cents": 5000,
        "payment_type": "normal",   (initial | normal | fee, default: normal)
        "status": "paid",           (paid | pending, default: paid)
        "payment_date": "2026-05-01T10:00:00Z",  (optional)
        "notes": "..."              (optional)
    }

    Returns:
        201: Payment created, with the updated payment summary
        400: Invalid amount/type/status
        404: Order not found
    """
    try:
        data = json_body()
        if data.get("amount_cents") is None:
            return jsonify({"error": "amount_cents required", "kind": "validation", "details": []}), 400

        payment = payment_service.add_payment(
            order_id=order_id,
            amount_cents=data.get("amount_cents"),
            payment_type=data.get("payment_type", PAYMENT_TYPE_NORMAL),
            status=data.get("status", PAYMENT_STATUS_PAID),
            payment_date=data.get("payment_date"),
            notes=data.get("notes"),
            user_id=g.actor_id,
        )
        return jsonify({
            "payment": payment.to_dict(),
            "summary": payment_service.get_payment_summary(order_id),
        }), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/orders/<int:order_id>/payments")
def list_payments_route(order_id: int):
    try:
        payments = payment_service.get_order_payments(order_id)
        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "summary": payment_service.get_payment_summary(order_id),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT ACTIONS
# =============================================================================

def _optional_order_id(data: dict):
    if data.get("order_id") is None:
        return None
    return coerce_int(data.get("order_id"), "order_id", minimum=1)


@payments_bp.post("/payments/<int:payment_id>/pay")
@with_actor
def pay_payment_route(payment_id: int):
    """
    Settle a pending payment.

    Request body (optional):
    {
        "payment_date": "2026-05-01T10:00:00Z",
        "order_id": 12   (reject if the payment belongs elsewhere)
    }

    Returns:
        200: Payment paid
        409: Payment already paid or canceled
    """
    try:
        data = json_body()
        payment = payment_service.pay_payment(
            payment_id,
            payment_date=data.get("payment_date"),
            user_id=g.actor_id,
            order_id=_optional_order_id(data),
        )
        return jsonify({
            "payment": payment.to_dict(),
            "summary": payment_service.get_payment_summary(payment.order_id),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to pay payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/payments/<int:payment_id>/cancel")
@with_actor
def cancel_payment_route(payment_id: int):
    """
    Cancel a pending or paid payment.

    Request body (optional):
    {
        "notes": "Entered twice",
        "order_id": 12
    }

    Returns:
        200: Payment canceled
        409: Payment already canceled
    """
    try:
        data = json_body()
        payment = payment_service.cancel_payment(
            payment_id,
            notes=data.get("notes"),
            user_id=g.actor_id,
            order_id=_optional_order_id(data),
        )
        return jsonify({
            "payment": payment.to_dict(),
            "summary": payment_service.get_payment_summary(payment.order_id),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel payment")
        return jsonify({"error": "Internal server error"}), 500
