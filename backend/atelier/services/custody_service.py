# Overview: Service-layer operations for custodies (deposits); creation, decisions, return proofs and lifecycle gates.

"""
Custody Tracking Service

WHY: Before garments leave the shop the customer hands over a deposit
(cash, an item, or an identity document). After the garments come back the
deposit is either handed back (with photographic proof) or kept.

LIFECYCLE:
- created (pending) while the order is pre-delivery
- decided after delivery: returned or forfeited
- returned custodies need at least one CustodyReturn proof before the order
  can finish; forfeited is terminal with no further requirement

GATES:
- can_deliver: at least one custody, every custody pending
- can_finish: no custody pending, every returned custody has a proof
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Custody, CustodyReturn, Order
from ..models.custody import (
    CUSTODY_TYPE_MONEY,
    CUSTODY_TYPES,
    CUSTODY_STATUS_PENDING,
    CUSTODY_STATUS_RETURNED,
    CUSTODY_OUTCOMES,
)
from ..models.orders import PRE_DELIVERY_STATUSES
from ..validation import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    coerce_cents,
    coerce_datetime,
    require_choice,
)
from atelier.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .history_service import log_order_event


# =============================================================================
# PURE GATES
# =============================================================================

def delivery_blockers(custodies) -> list[str]:
    """Reasons the order cannot be delivered yet (empty list = deliverable)."""
    custodies = list(custodies)
    if not custodies:
        return ["At least one custody is required before delivery"]
    return [
        f"Custody {c.id} is {c.status}, every custody must be pending at delivery"
        for c in custodies
        if c.status != CUSTODY_STATUS_PENDING
    ]


def finish_blockers(custodies) -> list[str]:
    """Reasons the custodies prevent finishing the order (empty list = ok)."""
    reasons = []
    for c in custodies:
        if c.status == CUSTODY_STATUS_PENDING:
            reasons.append(f"Custody {c.id} is still pending a decision")
        elif c.status == CUSTODY_STATUS_RETURNED and not c.returns:
            reasons.append(f"Custody {c.id} was returned without a return proof")
    return reasons


def can_deliver(order: Order) -> bool:
    return not delivery_blockers(order.custodies)


def can_finish(order: Order) -> bool:
    return not finish_blockers(order.custodies)


# =============================================================================
# HELPERS
# =============================================================================

def _get_custody_locked(custody_id: int, order_id: int | None = None) -> Custody:
    custody = lock_for_update(db.session.query(Custody).filter_by(id=custody_id)).first()
    if not custody:
        raise NotFoundError(f"Custody {custody_id} not found")
    if order_id is not None and custody.order_id != order_id:
        raise NotFoundError(f"Custody {custody_id} does not belong to order {order_id}")
    return custody


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def _build_return(custody: Custody, return_proof_photo, *, client_id=None, customer_name=None,
                  customer_national_id=None, returned_at=None, notes=None, user_id=None) -> CustodyReturn:
    if not return_proof_photo or not str(return_proof_photo).strip():
        raise ValidationError("return_proof_photo is required")

    when = coerce_datetime(returned_at, "returned_at")
    proof = CustodyReturn(
        custody_id=custody.id,
        client_id=client_id if client_id is not None else custody.order.client_id,
        returned_at=when or utcnow(),
        return_proof_photo=str(return_proof_photo).strip(),
        customer_name=customer_name,
        customer_national_id=customer_national_id,
        notes=notes,
        returned_by_user_id=user_id,
    )
    db.session.add(proof)
    return proof


# =============================================================================
# OPERATIONS
# =============================================================================

def create_custody(
    order_id: int,
    custody_type: str,
    description: str,
    value_cents=None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Custody:
    """
    Record a deposit against an order.

    Raises:
        NotFoundError: If the order does not exist
        InvalidStateError: If the order has already been delivered, finished or canceled
        ValidationError: If type/description is invalid or a money custody lacks a value
    """
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status not in PRE_DELIVERY_STATUSES:
            raise InvalidStateError(f"Cannot add custody to an order with status {order.status}")

        require_choice(custody_type, "custody type", CUSTODY_TYPES)
        if not description or not str(description).strip():
            raise ValidationError("description is required")

        value = None
        if value_cents is not None and value_cents != "":
            value = coerce_cents(value_cents, "value_cents")
        if custody_type == CUSTODY_TYPE_MONEY and not value:
            raise ValidationError("A money custody requires a positive value_cents")

        custody = Custody(
            order_id=order.id,
            type=custody_type,
            description=str(description).strip(),
            value_cents=value,
            status=CUSTODY_STATUS_PENDING,
            notes=notes,
        )
        db.session.add(custody)
        db.session.flush()

        log_order_event(
            order.id,
            "custody_added",
            field_changed="custodies",
            new_value=f"{custody.type}:{custody.id}",
            description=custody.description,
            user_id=user_id,
        )
        current_app.logger.info("Custody %s (%s) added to order %s", custody.id, custody.type, order.id)
        return custody

    return run_in_transaction(_op)


def decide_custody(
    custody_id: int,
    outcome: str,
    *,
    reason_of_kept: str | None = None,
    notes: str | None = None,
    proof: dict | None = None,
    user_id: int | None = None,
    order_id: int | None = None,
) -> Custody:
    """
    Settle a pending custody as returned or forfeited.

    `proof` (same fields as attach_return_proof) may accompany a `returned`
    outcome so the decision and its evidence land in one transaction.

    Raises:
        NotFoundError: If the custody is missing or not on order_id
        InvalidStateError: If the custody was already decided
        ValidationError: If outcome is unknown or proof is given for a forfeit
    """
    def _op():
        require_choice(outcome, "outcome", CUSTODY_OUTCOMES)
        custody = _get_custody_locked(custody_id, order_id)
        if custody.status != CUSTODY_STATUS_PENDING:
            raise InvalidStateError(f"Custody {custody.id} has already been {custody.status}")
        if proof and outcome != CUSTODY_STATUS_RETURNED:
            raise ValidationError("A return proof can only accompany a returned custody")

        custody.status = outcome
        custody.decided_at = utcnow()
        if outcome != CUSTODY_STATUS_RETURNED and reason_of_kept:
            custody.reason_of_kept = reason_of_kept
        if notes:
            custody.notes = _append_note(custody.notes, notes)

        if proof:
            _build_return(
                custody,
                proof.get("return_proof_photo"),
                client_id=proof.get("client_id"),
                customer_name=proof.get("customer_name"),
                customer_national_id=proof.get("customer_national_id"),
                returned_at=proof.get("returned_at"),
                notes=proof.get("notes"),
                user_id=user_id,
            )

        log_order_event(
            custody.order_id,
            "custody_decided",
            field_changed="custody_status",
            old_value=CUSTODY_STATUS_PENDING,
            new_value=outcome,
            description=f"Custody {custody.id} {outcome}",
            user_id=user_id,
        )
        db.session.flush()
        current_app.logger.info("Custody %s on order %s %s", custody.id, custody.order_id, outcome)
        return custody

    return run_in_transaction(_op)


def attach_return_proof(
    custody_id: int,
    return_proof_photo: str,
    *,
    client_id: int | None = None,
    customer_name: str | None = None,
    customer_national_id: str | None = None,
    returned_at=None,
    notes: str | None = None,
    user_id: int | None = None,
    order_id: int | None = None,
) -> CustodyReturn:
    """
    Attach the hand-back evidence for a returned custody.

    Raises:
        InvalidStateError: If the custody is not in `returned` status
        ValidationError: If the proof photo reference is missing
    """
    def _op():
        custody = _get_custody_locked(custody_id, order_id)
        if custody.status != CUSTODY_STATUS_RETURNED:
            raise InvalidStateError(
                f"Custody {custody.id} is {custody.status}; only returned custodies take a return proof"
            )
        proof = _build_return(
            custody,
            return_proof_photo,
            client_id=client_id,
            customer_name=customer_name,
            customer_national_id=customer_national_id,
            returned_at=returned_at,
            notes=notes,
            user_id=user_id,
        )
        db.session.flush()
        log_order_event(
            custody.order_id,
            "custody_return_proof",
            field_changed="custody_returns",
            new_value=proof.id,
            description=f"Return proof attached to custody {custody.id}",
            user_id=user_id,
        )
        return proof

    return run_in_transaction(_op)


def add_custody_note(custody_id: int, note: str, user_id: int | None = None, order_id: int | None = None) -> Custody:
    def _op():
        if not note or not str(note).strip():
            raise ValidationError("note is required")
        custody = _get_custody_locked(custody_id, order_id)
        custody.notes = _append_note(custody.notes, str(note).strip())
        log_order_event(
            custody.order_id,
            "custody_note",
            description=f"Note added to custody {custody.id}",
            user_id=user_id,
        )
        return custody

    return run_in_transaction(_op)


def get_order_custodies(order_id: int) -> list[Custody]:
    if db.session.get(Order, order_id) is None:
        raise NotFoundError(f"Order {order_id} not found")
    return db.session.query(Custody).filter_by(order_id=order_id).order_by(Custody.id).all()
