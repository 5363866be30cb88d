# Overview: Service-layer operations for rental scheduling; availability windows, booking and release.

"""
Rental Scheduling Service

WHY: A garment can only be rented for a window that does not collide with
any other booking of the same garment, plus turnaround time for cleaning
and fitting.

WINDOW MODEL:
- A booking covers [delivery_date, return_date], return_date = delivery_date + days_of_rent
- Every non-canceled Rent projects an unavailable window
  [delivery_date - buffer, return_date + buffer], buffer = RENTAL_BUFFER_DAYS (2)
- A candidate booking conflicts iff
  candidate.delivery <= window.end AND candidate.return >= window.start
  (boundary inclusive: a gap of exactly `buffer` days is still a conflict)
- Completed rents keep projecting their window; only canceled rents are ignored

Booking happens at delivery time only, under a row lock on the garment, and
re-checks availability so a stale read between validation and commit cannot
double-book.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from flask import current_app, has_app_context

from ..extensions import db
from ..models import Cloth, Order, OrderItem, Rent
from ..models.inventory import (
    CLOTH_STATUS_DAMAGED,
    CLOTH_STATUS_REPAIRING,
    TERMINAL_CLOTH_STATUSES,
)
from ..models.rentals import (
    RENT_STATUS_ACTIVE,
    RENT_STATUS_COMPLETED,
    RENT_STATUS_CANCELED,
)
from ..validation import ConflictError, InvalidStateError, NotFoundError, ValidationError, coerce_date, coerce_int
from atelier.time_utils import utcnow, iter_days, to_iso_date
from .concurrency import lock_for_update


BUFFER_DAYS = 2


def get_buffer_days() -> int:
    if has_app_context():
        return int(current_app.config.get("RENTAL_BUFFER_DAYS", BUFFER_DAYS))
    return BUFFER_DAYS


# =============================================================================
# PURE WINDOW ARITHMETIC
# =============================================================================

@dataclass(frozen=True)
class RentalWindow:
    """Unavailable window projected by one booking."""
    rent_id: int | None
    order_id: int | None
    delivery_date: date
    return_date: date
    start: date
    end: date

    def to_dict(self) -> dict:
        return {
            "rent_id": self.rent_id,
            "order_id": self.order_id,
            "delivery_date": to_iso_date(self.delivery_date),
            "return_date": to_iso_date(self.return_date),
            "start": to_iso_date(self.start),
            "end": to_iso_date(self.end),
        }


def compute_return_date(delivery_date: date, days_of_rent: int) -> date:
    return delivery_date + timedelta(days=days_of_rent)


def unavailable_window(delivery_date: date, return_date: date, buffer_days: int = BUFFER_DAYS,
                       rent_id: int | None = None, order_id: int | None = None) -> RentalWindow:
    return RentalWindow(
        rent_id=rent_id,
        order_id=order_id,
        delivery_date=delivery_date,
        return_date=return_date,
        start=delivery_date - timedelta(days=buffer_days),
        end=return_date + timedelta(days=buffer_days),
    )


def window_conflicts(new_delivery: date, new_return: date, window: RentalWindow) -> bool:
    return new_delivery <= window.end and new_return >= window.start


def _window_for(rent: Rent, buffer_days: int) -> RentalWindow:
    return unavailable_window(
        rent.delivery_date,
        rent.return_date,
        buffer_days,
        rent_id=rent.id,
        order_id=rent.order_id,
    )


def _normalize_request(delivery_date, days_of_rent) -> tuple[date, int]:
    delivery = coerce_date(delivery_date, "delivery_date")
    days = coerce_int(days_of_rent, "days_of_rent", minimum=1)
    return delivery, days


# =============================================================================
# QUERIES
# =============================================================================

def _blocking_rents(cloth_id: int, exclude_order_id: int | None = None) -> list[Rent]:
    query = db.session.query(Rent).filter(
        Rent.cloth_id == cloth_id,
        Rent.status != RENT_STATUS_CANCELED,
    )
    if exclude_order_id is not None:
        query = query.filter(Rent.order_id != exclude_order_id)
    return query.order_by(Rent.delivery_date, Rent.id).all()


def find_conflicts(
    cloth_id: int,
    delivery_date,
    days_of_rent,
    exclude_order_id: int | None = None,
) -> list[RentalWindow]:
    """
    Return the windows a candidate booking collides with.

    Args:
        cloth_id: Garment to check
        delivery_date: Candidate delivery date (date or ISO string)
        days_of_rent: Candidate length, at least 1
        exclude_order_id: Ignore rents of this order (editing an existing order)

    Returns:
        Conflicting windows, empty when the garment is free
    """
    delivery, days = _normalize_request(delivery_date, days_of_rent)
    new_return = compute_return_date(delivery, days)
    buffer_days = get_buffer_days()

    conflicts = []
    for rent in _blocking_rents(cloth_id, exclude_order_id):
        window = _window_for(rent, buffer_days)
        if window_conflicts(delivery, new_return, window):
            conflicts.append(window)
    return conflicts


def is_available(cloth_id: int, delivery_date, days_of_rent, exclude_order_id: int | None = None) -> bool:
    return not find_conflicts(cloth_id, delivery_date, days_of_rent, exclude_order_id)


def unavailable_days(cloth_id: int) -> list[date]:
    """Every blocked day of a garment, sorted and de-duplicated."""
    buffer_days = get_buffer_days()
    days: set[date] = set()
    for rent in _blocking_rents(cloth_id):
        window = _window_for(rent, buffer_days)
        days.update(iter_days(window.start, window.end))
    return sorted(days)


def unavailability_report(cloth_id: int) -> dict:
    """
    Booking-calendar payload for one garment.

    `available_from` is the day after the last blocked day, or None when
    nothing is blocked.
    """
    cloth = db.session.get(Cloth, cloth_id)
    if cloth is None:
        raise NotFoundError(f"Cloth {cloth_id} not found")

    buffer_days = get_buffer_days()
    windows = [_window_for(rent, buffer_days) for rent in _blocking_rents(cloth_id)]
    days = unavailable_days(cloth_id)
    available_from = days[-1] + timedelta(days=1) if days else None

    return {
        "cloth_id": cloth.id,
        "cloth_code": cloth.code,
        "cloth_status": cloth.status,
        "buffer_days": buffer_days,
        "unavailable_ranges": [w.to_dict() for w in windows],
        "unavailable_days": [to_iso_date(d) for d in days],
        "available_from": to_iso_date(available_from),
    }


def bulk_unavailability(cloth_ids) -> list[dict]:
    if not cloth_ids:
        raise ValidationError("cloth_ids must be a non-empty list")
    ids = [coerce_int(cid, "cloth_id", minimum=1) for cid in cloth_ids]
    return [unavailability_report(cid) for cid in dict.fromkeys(ids)]


def available_clothes_for_date(inventory_id: int, delivery_date, days_of_rent=1) -> list[Cloth]:
    """
    Garments of one location that can be booked for the requested window.

    Sold, terminally damaged, damaged and repairing garments are never offered.
    """
    delivery, days = _normalize_request(delivery_date, days_of_rent)
    excluded = set(TERMINAL_CLOTH_STATUSES) | {CLOTH_STATUS_REPAIRING, CLOTH_STATUS_DAMAGED}

    candidates = db.session.query(Cloth).filter(
        Cloth.inventory_id == inventory_id,
        Cloth.status.notin_(excluded),
    ).order_by(Cloth.id).all()

    return [c for c in candidates if is_available(c.id, delivery, days)]


def get_active_rent(order_id: int, cloth_id: int) -> Rent | None:
    return db.session.query(Rent).filter_by(
        order_id=order_id,
        cloth_id=cloth_id,
        status=RENT_STATUS_ACTIVE,
    ).order_by(Rent.id.desc()).first()


def count_active_rents(order_id: int) -> int:
    return db.session.query(Rent).filter_by(
        order_id=order_id,
        status=RENT_STATUS_ACTIVE,
    ).count()


# =============================================================================
# TRANSACTIONAL HELPERS (caller owns the transaction)
# =============================================================================

def book_rent(order: Order, item: OrderItem) -> Rent:
    """
    Create the active Rent for a rent item at delivery.

    Locks the garment row first so concurrent deliveries of the same garment
    serialise, then re-checks availability against the committed bookings.

    Raises:
        ValidationError: If the item has no rental window
        ConflictError: If the window collides with another booking
    """
    if item.delivery_date is None or not item.days_of_rent or item.days_of_rent < 1:
        raise ValidationError(
            f"Rent item for cloth {item.cloth_id} needs delivery_date and days_of_rent >= 1"
        )

    cloth = lock_for_update(db.session.query(Cloth).filter_by(id=item.cloth_id)).first()
    if cloth is None:
        raise NotFoundError(f"Cloth {item.cloth_id} not found")

    conflicts = find_conflicts(cloth.id, item.delivery_date, item.days_of_rent, exclude_order_id=order.id)
    if conflicts:
        raise ConflictError(
            f"Cloth {cloth.code} is not available from {to_iso_date(item.delivery_date)} "
            f"for {item.days_of_rent} days",
            details=[
                f"cloth_id={cloth.id} blocked {to_iso_date(w.start)}..{to_iso_date(w.end)} by order {w.order_id}"
                for w in conflicts
            ],
        )

    rent = Rent(
        cloth_id=cloth.id,
        order_id=order.id,
        order_item_id=item.id,
        delivery_date=item.delivery_date,
        days_of_rent=item.days_of_rent,
        return_date=compute_return_date(item.delivery_date, item.days_of_rent),
        status=RENT_STATUS_ACTIVE,
    )
    db.session.add(rent)
    db.session.flush()

    current_app.logger.info(
        "Rent %s booked: cloth %s order %s %s..%s",
        rent.id, cloth.id, order.id, rent.delivery_date, rent.return_date,
    )
    return rent


def complete_rent(rent: Rent, notes: str | None = None) -> Rent:
    if rent.status != RENT_STATUS_ACTIVE:
        raise InvalidStateError(f"Rent {rent.id} is {rent.status}, only active rents can be completed")
    rent.status = RENT_STATUS_COMPLETED
    rent.completed_at = utcnow()
    if notes:
        rent.notes = notes
    current_app.logger.info("Rent %s completed: cloth %s order %s", rent.id, rent.cloth_id, rent.order_id)
    return rent


def _cancel(rents: list[Rent]) -> list[Rent]:
    now = utcnow()
    for rent in rents:
        rent.status = RENT_STATUS_CANCELED
        rent.canceled_at = now
        current_app.logger.info("Rent %s canceled: cloth %s order %s", rent.id, rent.cloth_id, rent.order_id)
    return rents


def cancel_rents_for_order(order_id: int) -> list[Rent]:
    """Cancel every non-canceled rent of an order; the garments leave all future conflict checks."""
    rents = db.session.query(Rent).filter(
        Rent.order_id == order_id,
        Rent.status != RENT_STATUS_CANCELED,
    ).all()
    return _cancel(rents)


def cancel_rents_for_item(order_id: int, cloth_id: int) -> list[Rent]:
    rents = db.session.query(Rent).filter(
        Rent.order_id == order_id,
        Rent.cloth_id == cloth_id,
        Rent.status != RENT_STATUS_CANCELED,
    ).all()
    return _cancel(rents)
