# Overview: Single writer of garment status; maps each lifecycle event to one status write.

"""
Garment Status Synchronisation

WHY: A garment's status (ready_for_rent, rented, sold, ...) must follow the
order lifecycle exactly. Every status write goes through this module so each
lifecycle event has one place that decides the resulting status.

EVENT -> STATUS:
- rent item delivered   -> rented
- buy item delivered    -> sold (terminal)
- rent item returned    -> caller-chosen (ready_for_rent, damaged, repairing, ...),
                          or stays rented while another order has it checked out
- item detached/canceled -> ready_for_rent (only when currently rented by nobody else)

Callers hold the transaction (and the garment row lock where booking is
involved). Nothing here commits.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Cloth, Rent
from ..models.inventory import (
    CLOTH_STATUS_READY_FOR_RENT,
    CLOTH_STATUS_RENTED,
    CLOTH_STATUS_SOLD,
    CLOTH_STATUS_DAMAGED,
    CLOTH_STATUS_REPAIRING,
    CLOTH_STATUS_DIE,
    CLOTH_STATUS_BURNED,
    CLOTH_STATUS_SCRATCHED,
    TERMINAL_CLOTH_STATUSES,
)
from ..models.rentals import RENT_STATUS_ACTIVE
from ..validation import ConflictError, ValidationError
from .history_service import record_cloth_event


# Statuses a caller may choose when a rented garment comes back
RETURN_STATUSES = [
    CLOTH_STATUS_READY_FOR_RENT,
    CLOTH_STATUS_DAMAGED,
    CLOTH_STATUS_REPAIRING,
    CLOTH_STATUS_DIE,
    CLOTH_STATUS_BURNED,
    CLOTH_STATUS_SCRATCHED,
]

DEFAULT_RETURN_STATUS = CLOTH_STATUS_REPAIRING

# Off the rental floor until staff put them back to ready_for_rent
NOT_RENTABLE_STATUSES = {CLOTH_STATUS_REPAIRING, CLOTH_STATUS_DAMAGED}


def _write_status(cloth: Cloth, new_status: str, action: str, order_id: int | None, user_id: int | None) -> bool:
    old_status = cloth.status
    if old_status == new_status:
        return False
    cloth.status = new_status
    record_cloth_event(
        cloth.id,
        action,
        old_status=old_status,
        new_status=new_status,
        order_id=order_id,
        user_id=user_id,
    )
    return True


def _ensure_not_terminal(cloth: Cloth, action: str) -> None:
    if cloth.status in TERMINAL_CLOTH_STATUSES:
        raise ConflictError(
            f"Cloth {cloth.code} is {cloth.status} and cannot be {action}",
            details=[f"cloth_id={cloth.id} status={cloth.status}"],
        )


def _ensure_rentable(cloth: Cloth) -> None:
    if cloth.status in NOT_RENTABLE_STATUSES:
        raise ConflictError(
            f"Cloth {cloth.code} is {cloth.status} and cannot be rented",
            details=[f"cloth_id={cloth.id} status={cloth.status}"],
        )


def has_active_rent_elsewhere(cloth_id: int, order_id: int | None) -> bool:
    """True when another order currently has this garment checked out."""
    query = db.session.query(Rent.id).filter(
        Rent.cloth_id == cloth_id,
        Rent.status == RENT_STATUS_ACTIVE,
    )
    if order_id is not None:
        query = query.filter(Rent.order_id != order_id)
    return db.session.query(query.exists()).scalar()


def ensure_orderable(cloth: Cloth, item_type: str, order_id: int | None = None) -> None:
    """
    Reject garments that can no longer join an order.

    Sold and terminally damaged garments never re-enter rental or sale flows;
    repairing or damaged garments cannot be rented; a garment cannot be sold
    while someone else has it out on rent.
    """
    _ensure_not_terminal(cloth, "ordered")
    if item_type == "rent":
        _ensure_rentable(cloth)
    if item_type == "buy" and has_active_rent_elsewhere(cloth.id, order_id):
        raise ConflictError(
            f"Cannot sell cloth {cloth.code} with an active rent",
            details=[f"cloth_id={cloth.id} is currently rented"],
        )


def mark_rented(cloth: Cloth, *, order_id: int, user_id: int | None = None) -> bool:
    _ensure_not_terminal(cloth, "rented")
    _ensure_rentable(cloth)
    return _write_status(cloth, CLOTH_STATUS_RENTED, "rented", order_id, user_id)


def mark_sold(cloth: Cloth, *, order_id: int, user_id: int | None = None) -> bool:
    ensure_orderable(cloth, "buy", order_id)
    return _write_status(cloth, CLOTH_STATUS_SOLD, "sold", order_id, user_id)


def mark_returned(cloth: Cloth, status: str | None = None, *, order_id: int, user_id: int | None = None) -> bool:
    """
    Apply the condition a rented garment came back in.

    When another order already has the garment checked out (back-to-back
    bookings), the status stays `rented` and the reported condition is only
    recorded in the garment history.
    """
    new_status = status or DEFAULT_RETURN_STATUS
    if new_status not in RETURN_STATUSES:
        raise ValidationError(
            f"Invalid return status: {new_status}. Must be one of {RETURN_STATUSES}"
        )
    if has_active_rent_elsewhere(cloth.id, order_id):
        record_cloth_event(
            cloth.id,
            "returned_while_booked",
            old_status=cloth.status,
            new_status=cloth.status,
            order_id=order_id,
            user_id=user_id,
            notes=f"Returned as {new_status}; still checked out under another order",
        )
        return False
    return _write_status(cloth, new_status, "returned", order_id, user_id)


def release(cloth: Cloth, *, order_id: int, user_id: int | None = None) -> bool:
    """
    Put a garment back on the shelf after its item was detached or canceled.

    Only a `rented` garment moves (to ready_for_rent), and only when no other
    order still has it checked out. Sold and damage statuses stay as they are.
    """
    if cloth.status != CLOTH_STATUS_RENTED:
        return False
    if has_active_rent_elsewhere(cloth.id, order_id):
        return False
    return _write_status(cloth, CLOTH_STATUS_READY_FOR_RENT, "released", order_id, user_id)


def is_sold(cloth: Cloth) -> bool:
    return cloth.status == CLOTH_STATUS_SOLD
