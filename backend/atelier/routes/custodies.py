# Overview: Flask API routes for custody (deposit) operations; parses input and returns JSON responses.

# backend/atelier/routes/custodies.py
"""
Custody API Routes

WHY: Deposits are taken before delivery and settled (returned with proof,
or forfeited) after the garments come back.
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import with_actor, json_body
from ..services import custody_service
from ..validation import DomainError


custodies_bp = Blueprint("custodies", __name__, url_prefix="/api")


@custodies_bp.post("/orders/<int:order_id>/custodies")
@with_actor
def create_custody_route(order_id: int):
    """
    Record a deposit against a pre-delivery order.

    Request body:
    {
        "type": "money",            (money | physical_item | document)
        "description": "Cash deposit",
        "value_cents": 20000,       (required for money)
        "notes": "..."              (optional)
    }

    Returns:
        201: Custody created (status: pending)
        400: Invalid input
        409: Order already delivered/finished/canceled
    """
    try:
        data = json_body()
        custody = custody_service.create_custody(
            order_id,
            data.get("type"),
            data.get("description"),
            value_cents=data.get("value_cents"),
            notes=data.get("notes"),
            user_id=g.actor_id,
        )
        return jsonify({"custody": custody.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create custody")
        return jsonify({"error": "Internal server error"}), 500


@custodies_bp.get("/orders/<int:order_id>/custodies")
def list_custodies_route(order_id: int):
    try:
        custodies = custody_service.get_order_custodies(order_id)
        return jsonify({"custodies": [c.to_dict() for c in custodies]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list custodies")
        return jsonify({"error": "Internal server error"}), 500


@custodies_bp.post("/custodies/<int:custody_id>/decide")
@with_actor
def decide_custody_route(custody_id: int):
    """
    Settle a pending custody.

    Request body:
    {
        "outcome": "returned",        (returned | forfeited)
        "reason_of_kept": "...",      (optional, forfeited only)
        "notes": "...",               (optional)
        "proof": {                    (optional, returned only)
            "return_proof_photo": "uploads/proof/123.jpg",
            "customer_name": "...",
            "customer_national_id": "...",
            "returned_at": "2026-05-05T12:00:00Z"
        }
    }
    """
    try:
        data = json_body()
        proof = data.get("proof")
        if proof is not None and not isinstance(proof, dict):
            return jsonify({"error": "proof must be an object", "kind": "validation", "details": []}), 400

        custody = custody_service.decide_custody(
            custody_id,
            data.get("outcome"),
            reason_of_kept=data.get("reason_of_kept"),
            notes=data.get("notes"),
            proof=proof,
            user_id=g.actor_id,
        )
        return jsonify({"custody": custody.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to decide custody")
        return jsonify({"error": "Internal server error"}), 500


@custodies_bp.post("/custodies/<int:custody_id>/returns")
@with_actor
def attach_return_proof_route(custody_id: int):
    """
    Attach hand-back proof to a returned custody.

    Request body:
    {
        "return_proof_photo": "uploads/proof/123.jpg",
        "customer_name": "...",          (optional)
        "customer_national_id": "...",   (optional)
        "returned_at": "...",            (optional, default: now)
        "notes": "..."                   (optional)
    }
    """
    try:
        data = json_body()
        proof = custody_service.attach_return_proof(
            custody_id,
            data.get("return_proof_photo"),
            client_id=data.get("client_id"),
            customer_name=data.get("customer_name"),
            customer_national_id=data.get("customer_national_id"),
            returned_at=data.get("returned_at"),
            notes=data.get("notes"),
            user_id=g.actor_id,
        )
        return jsonify({"return": proof.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to attach custody return proof")
        return jsonify({"error": "Internal server error"}), 500


@custodies_bp.post("/custodies/<int:custody_id>/notes")
@with_actor
def add_custody_note_route(custody_id: int):
    try:
        data = json_body()
        custody = custody_service.add_custody_note(custody_id, data.get("note"), user_id=g.actor_id)
        return jsonify({"custody": custody.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add custody note")
        return jsonify({"error": "Internal server error"}), 500
