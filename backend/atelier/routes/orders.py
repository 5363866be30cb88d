# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/atelier/routes/orders.py
"""
Order API Routes

WHY: Drive the order lifecycle over REST: create, edit items, deliver,
take garments back, finish and cancel.

Every domain failure is answered with its structured body
({"error", "kind", "details"}) and matching status code:
400 validation, 404 not found, 409 conflict/invalid state, 422 precondition.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import with_actor, json_body
from ..services import order_service
from ..services.history_service import get_order_history
from ..validation import DomainError, require_choice
from ..models.orders import ORDER_STATUSES


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# CREATE / READ
# =============================================================================

@orders_bp.post("/")
@with_actor
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "client_id": 1,
        "inventory_id": 1,
        "items": [
            {"cloth_id": 5, "type": "rent", "price_cents": 10000,
             "delivery_date": "2026-05-01", "days_of_rent": 3,
             "discount_type": "percentage", "discount_value": 1000}
        ],
        "discount_type": "fixed",   (optional)
        "discount_value": 500,      (optional)
        "paid_cents": 2000,         (optional initial payment)
        "notes": "..."              (optional)
    }

    Returns:
        201: Order snapshot
        400/404/409: Domain error
    """
    try:
        data = json_body()
        order = order_service.create_order(
            client_id=data.get("client_id"),
            inventory_id=data.get("inventory_id"),
            items=data.get("items"),
            discount_type=data.get("discount_type"),
            discount_value=data.get("discount_value", 0),
            paid_cents=data.get("paid_cents", 0),
            notes=data.get("notes"),
            user_id=g.actor_id,
        )
        return jsonify({"order": order_service.get_order_snapshot(order.id)}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
def list_orders_route():
    """List orders, optionally filtered by ?client_id= and ?status=."""
    try:
        client_id = request.args.get("client_id", type=int)
        status = request.args.get("status")
        if status is not None:
            require_choice(status, "status", ORDER_STATUSES)
        orders = order_service.list_orders(client_id=client_id, status=status)
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    """Order snapshot with items, payments, custodies and rents."""
    try:
        return jsonify({"order": order_service.get_order_snapshot(order_id)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/history")
def get_order_history_route(order_id: int):
    try:
        order_service.get_order(order_id)
        entries = get_order_history(order_id)
        return jsonify({"history": [e.to_dict() for e in entries]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get order history")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ITEM EDITS
# =============================================================================

@orders_bp.put("/<int:order_id>/items")
@with_actor
def update_items_route(order_id: int):
    """
    Replace the item set of a pre-delivery order.

    Request body:
    {
        "items": [...],            (same shape as create)
        "discount_type": "fixed",  (optional; omit to keep the current discount)
        "discount_value": 500      (optional)
    }

    Returns:
        200: Updated order snapshot
        409: Rental conflict, or order no longer editable
    """
    try:
        data = json_body()
        kwargs = {}
        if "discount_type" in data:
            kwargs["discount_type"] = data.get("discount_type")
        if "discount_value" in data:
            kwargs["discount_value"] = data.get("discount_value")

        order = order_service.update_items(order_id, data.get("items"), user_id=g.actor_id, **kwargs)
        return jsonify({"order": order_service.get_order_snapshot(order.id)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order items")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TRANSITIONS
# =============================================================================

@orders_bp.post("/<int:order_id>/deliver")
@with_actor
def deliver_order_route(order_id: int):
    """
    Deliver the order (requires >= 1 custody, all pending).

    Returns:
        200: Delivered order snapshot
        422: Custody precondition not met
        409: Rental conflict or wrong status
    """
    try:
        order = order_service.deliver_order(order_id, user_id=g.actor_id)
        return jsonify({"order": order_service.get_order_snapshot(order.id)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to deliver order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/return-items")
@with_actor
def return_items_route(order_id: int):
    """
    Take back rented garments.

    Request body:
    {
        "items": [
            {"cloth_id": 5, "status": "ready_for_rent", "notes": "clean",
             "photos": ["returns/5-front.jpg"]}
        ]
    }
    `status` defaults to "repairing"; `photos` is optional (up to 10 paths).

    Returns:
        200: Returned items, their photos, the order snapshot and
             `order_finished` (true when the return closed the order)
    """
    try:
        data = json_body()
        items, finished = order_service.return_items(order_id, data.get("items"), user_id=g.actor_id)
        returned_ids = {i.cloth_id for i in items}
        photos = [p for p in order_service.get_return_photos(order_id) if p.cloth_id in returned_ids]
        return jsonify({
            "items": [i.to_dict() for i in items],
            "photos": [p.to_dict() for p in photos],
            "order": order_service.get_order_snapshot(order_id),
            "order_finished": finished,
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to return order items")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/finish")
@with_actor
def finish_order_route(order_id: int):
    """
    Finish a delivered order.

    Returns:
        200: Finished order snapshot
        422: Custody/payment/return preconditions not met (reasons in details)
    """
    try:
        order = order_service.finish_order(order_id, user_id=g.actor_id)
        return jsonify({"order": order_service.get_order_snapshot(order.id)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to finish order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@with_actor
def cancel_order_route(order_id: int):
    """
    Cancel a pre-delivery or delivered order.

    Request body (optional):
    {
        "reason": "Customer changed plans"
    }
    """
    try:
        data = json_body()
        order = order_service.cancel_order(order_id, reason=data.get("reason"), user_id=g.actor_id)
        return jsonify({"order": order_service.get_order_snapshot(order.id)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
