# Overview: Service-layer operations for orders; pricing, item edits and the order lifecycle state machine.

"""
Order Lifecycle Service

WHY: An order ties together four independently mutable records: payments,
custodies, rental bookings and garment status. Every externally visible
transition goes through this module so their combined preconditions are
checked, and their side effects applied, in one transaction.

STATE MACHINE:
    created / partially_paid / paid   (driven by payment totals only)
        -> delivered   (deliver: custody gate, books rents, rented/sold garments)
        -> canceled    (cancel: rents canceled, garments released)
    delivered
        -> finished    (finish: custody, payment and return gates)
        -> canceled

Any failed precondition raises a DomainError and the whole transaction is
rolled back: no partial writes.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import Client, Cloth, ClothReturnPhoto, Inventory, Order, OrderItem, Payment, Rent
from ..models.orders import (
    ORDER_STATUS_CREATED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_FINISHED,
    ORDER_STATUS_CANCELED,
    PRE_DELIVERY_STATUSES,
    ITEM_TYPE_BUY,
    ITEM_TYPE_RENT,
    ITEM_TYPES,
    ITEM_STATUS_CREATED,
    ITEM_STATUS_DELIVERED,
    ITEM_STATUS_RETURNED,
    ITEM_STATUS_CANCELED,
    DISCOUNT_PERCENTAGE,
    DISCOUNT_FIXED,
)
from ..models.payments import PAYMENT_TYPE_FEE
from ..models.rentals import MAX_RETURN_PHOTOS, RENT_STATUS_ACTIVE
from ..validation import (
    MAX_PERCENTAGE_BPS,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    ValidationError,
    coerce_cents,
    coerce_date,
    coerce_int,
    require_choice,
    validate_discount,
)
from atelier.time_utils import utcnow, to_iso_date
from .concurrency import lock_for_update, run_in_transaction
from .history_service import log_order_event, log_status_change
from . import cloth_status_service as cloth_status
from . import custody_service
from . import payment_service
from . import rental_service


# Sentinel for "leave the order-level discount as it is" in update_items()
_UNCHANGED = object()


# =============================================================================
# PRICING
# =============================================================================

def apply_discount(amount_cents: int, discount_type: str | None, discount_value: int) -> int:
    """
    Apply one discount to an amount.

    - percentage: discount_value in basis points, rounded half-up to the cent
    - fixed: discount_value in cents
    Result is clamped at zero.
    """
    if not discount_type or not discount_value:
        return amount_cents
    if discount_type == DISCOUNT_PERCENTAGE:
        off = (Decimal(amount_cents) * Decimal(discount_value) / Decimal(MAX_PERCENTAGE_BPS)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return max(0, amount_cents - int(off))
    if discount_type == DISCOUNT_FIXED:
        return max(0, amount_cents - discount_value)
    raise ValidationError(f"Invalid discount type: {discount_type}")


def _field(item, name):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name)


def calculate_line_total(item) -> int:
    return apply_discount(
        _field(item, "price_cents"),
        _field(item, "discount_type"),
        _field(item, "discount_value") or 0,
    )


def calculate_totals(items, discount_type: str | None = None, discount_value: int = 0) -> tuple[int, int]:
    """
    Compute (subtotal, total) for an item list.

    subtotal = sum of item prices after item discounts
    total    = subtotal after the order-level discount
    """
    subtotal = sum(calculate_line_total(item) for item in items)
    total = apply_discount(subtotal, discount_type, discount_value or 0)
    return subtotal, total


# =============================================================================
# ITEM VALIDATION
# =============================================================================

def _normalize_items(raw_items) -> list[dict]:
    """Shape-check an incoming item list (no database access)."""
    if not isinstance(raw_items, (list, tuple)):
        raise ValidationError("items must be a list")
    if not raw_items:
        raise ValidationError("An order needs at least one item")

    normalized = []
    seen = set()
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        cloth_id = coerce_int(raw.get("cloth_id"), f"items[{idx}].cloth_id", minimum=1)
        if cloth_id in seen:
            raise ValidationError(f"Cloth {cloth_id} appears more than once in the item list")
        seen.add(cloth_id)

        item_type = require_choice(raw.get("type"), f"items[{idx}].type", ITEM_TYPES)
        price = coerce_cents(raw.get("price_cents"), f"items[{idx}].price_cents")
        d_type, d_value = validate_discount(
            raw.get("discount_type"), raw.get("discount_value"), field=f"items[{idx}].discount"
        )

        delivery_date = None
        days_of_rent = None
        if item_type == ITEM_TYPE_RENT:
            delivery_date = coerce_date(raw.get("delivery_date"), f"items[{idx}].delivery_date")
            if raw.get("days_of_rent") is None:
                raise ValidationError(f"items[{idx}].days_of_rent is required for rent items")
            days_of_rent = coerce_int(raw.get("days_of_rent"), f"items[{idx}].days_of_rent", minimum=1)

        normalized.append({
            "cloth_id": cloth_id,
            "type": item_type,
            "price_cents": price,
            "discount_type": d_type,
            "discount_value": d_value,
            "delivery_date": delivery_date,
            "days_of_rent": days_of_rent,
            "notes": raw.get("notes"),
        })
    return normalized


def _validate_items(items: list[dict], inventory_id: int, exclude_order_id: int | None = None) -> None:
    """
    Check every item against the garments and the rental calendar.

    Rental conflicts are collected across all items and reported together.

    Raises:
        NotFoundError: Garment does not exist
        ValidationError: Garment belongs to another location
        ConflictError: Garment sold/terminal, sold while rented, or window overlaps a booking
    """
    conflicts = []
    for item in items:
        cloth = db.session.get(Cloth, item["cloth_id"])
        if cloth is None:
            raise NotFoundError(f"Cloth {item['cloth_id']} not found")
        if cloth.inventory_id != inventory_id:
            raise ValidationError(
                f"Cloth {cloth.code} does not belong to inventory {inventory_id}"
            )
        cloth_status.ensure_orderable(cloth, item["type"], exclude_order_id)

        if item["type"] == ITEM_TYPE_RENT:
            for window in rental_service.find_conflicts(
                cloth.id, item["delivery_date"], item["days_of_rent"], exclude_order_id=exclude_order_id
            ):
                conflicts.append(
                    f"Cloth {cloth.code} is unavailable {to_iso_date(window.start)}..{to_iso_date(window.end)}"
                    f" (order {window.order_id})"
                )

    if conflicts:
        raise ConflictError("Requested rental dates overlap existing bookings", details=conflicts)


def _apply_item_fields(item: OrderItem, fields: dict) -> None:
    item.type = fields["type"]
    item.price_cents = fields["price_cents"]
    item.discount_type = fields["discount_type"]
    item.discount_value = fields["discount_value"]
    item.line_total_cents = calculate_line_total(fields)
    item.delivery_date = fields["delivery_date"]
    item.days_of_rent = fields["days_of_rent"]
    item.notes = fields["notes"]


# =============================================================================
# LOOKUPS
# =============================================================================

def _get_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _lock_cloth(cloth_id: int) -> Cloth:
    cloth = lock_for_update(db.session.query(Cloth).filter_by(id=cloth_id)).first()
    if not cloth:
        raise NotFoundError(f"Cloth {cloth_id} not found")
    return cloth


def _set_status(order: Order, new_status: str, user_id: int | None) -> None:
    old_status = order.status
    order.status = new_status
    order.updated_at = utcnow()
    log_status_change(order.id, old_status, new_status, user_id)
    current_app.logger.info("Order %s status %s -> %s", order.id, old_status, new_status)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_order_snapshot(order_id: int) -> dict:
    """Order with items, payments, custodies and rents."""
    order = get_order(order_id)
    data = order.to_dict(include_children=True)
    data["rents"] = [r.to_dict() for r in order.rents]
    return data


def list_orders(client_id: int | None = None, status: str | None = None) -> list[Order]:
    query = db.session.query(Order)
    if client_id is not None:
        query = query.filter_by(client_id=client_id)
    if status is not None:
        query = query.filter_by(status=status)
    return query.order_by(Order.id.desc()).all()


# =============================================================================
# CREATE / UPDATE ITEMS
# =============================================================================

def create_order(
    client_id: int,
    inventory_id: int,
    items,
    discount_type: str | None = None,
    discount_value=0,
    paid_cents=0,
    notes: str | None = None,
    user_id: int | None = None,
) -> Order:
    """
    Create an order in `created` state.

    Validates every item, prices the order and, when paid_cents > 0,
    records an `initial` payment so the status reflects it immediately.

    Raises:
        NotFoundError: Client, inventory or garment missing
        ValidationError: Malformed items, discount or amount
        ConflictError: Garment not orderable or rental window taken
    """
    def _op():
        client = db.session.get(Client, coerce_int(client_id, "client_id", minimum=1))
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        inventory = db.session.get(Inventory, coerce_int(inventory_id, "inventory_id", minimum=1))
        if inventory is None:
            raise NotFoundError(f"Inventory {inventory_id} not found")

        normalized = _normalize_items(items)
        d_type, d_value = validate_discount(discount_type, discount_value)
        initial_paid = coerce_cents(paid_cents or 0, "paid_cents")
        _validate_items(normalized, inventory.id)

        subtotal, total = calculate_totals(normalized, d_type, d_value)
        order = Order(
            client_id=client.id,
            inventory_id=inventory.id,
            status=ORDER_STATUS_CREATED,
            subtotal_cents=subtotal,
            total_price_cents=total,
            paid_cents=0,
            remaining_cents=total,
            discount_type=d_type,
            discount_value=d_value,
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.add(order)
        db.session.flush()

        for fields in normalized:
            item = OrderItem(order_id=order.id, cloth_id=fields["cloth_id"], status=ITEM_STATUS_CREATED)
            _apply_item_fields(item, fields)
            order.items.append(item)

        log_order_event(
            order.id,
            "created",
            new_value=total,
            description=f"Order created with {len(normalized)} item(s)",
            user_id=user_id,
        )

        payment_service.record_initial_payment(order, initial_paid, user_id)
        payment_service.recalculate_order(order, user_id)

        current_app.logger.info(
            "Order %s created for client %s: total %s cents, paid %s cents",
            order.id, client.id, order.total_price_cents, order.paid_cents,
        )
        return order

    return run_in_transaction(_op)


def update_items(
    order_id: int,
    items,
    *,
    discount_type=_UNCHANGED,
    discount_value=_UNCHANGED,
    user_id: int | None = None,
) -> Order:
    """
    Replace the item set of a pre-delivery order.

    Items are keyed by garment: garments present in both sets are updated in
    place, dropped garments are detached (their rents canceled, the garment
    released), new garments are added. Any rental conflict rejects the whole
    update. Totals and payment status are recomputed.

    Raises:
        NotFoundError: Order or garment missing
        InvalidStateError: Order already delivered, finished or canceled
        ValidationError / ConflictError: As for create_order
    """
    def _op():
        order = _get_order_locked(order_id)
        if order.status not in PRE_DELIVERY_STATUSES:
            raise InvalidStateError(f"Cannot update items of an order with status {order.status}")

        normalized = _normalize_items(items)
        new_type = order.discount_type if discount_type is _UNCHANGED else discount_type
        new_value = order.discount_value if discount_value is _UNCHANGED else discount_value
        d_type, d_value = validate_discount(new_type, new_value)
        _validate_items(normalized, order.inventory_id, exclude_order_id=order.id)

        existing = {item.cloth_id: item for item in order.items}
        incoming = {fields["cloth_id"]: fields for fields in normalized}

        for cloth_id, item in existing.items():
            if cloth_id in incoming:
                continue
            rental_service.cancel_rents_for_item(order.id, cloth_id)
            cloth_status.release(_lock_cloth(cloth_id), order_id=order.id, user_id=user_id)
            order.items.remove(item)
            log_order_event(
                order.id,
                "item_removed",
                field_changed="items",
                old_value=cloth_id,
                user_id=user_id,
            )

        for cloth_id, fields in incoming.items():
            item = existing.get(cloth_id)
            if item is None:
                item = OrderItem(order_id=order.id, cloth_id=cloth_id, status=ITEM_STATUS_CREATED)
                order.items.append(item)
                log_order_event(
                    order.id,
                    "item_added",
                    field_changed="items",
                    new_value=cloth_id,
                    user_id=user_id,
                )
            _apply_item_fields(item, fields)

        old_total = order.total_price_cents
        order.discount_type = d_type
        order.discount_value = d_value
        order.subtotal_cents, order.total_price_cents = calculate_totals(normalized, d_type, d_value)

        log_order_event(
            order.id,
            "items_updated",
            field_changed="total_price_cents",
            old_value=old_total,
            new_value=order.total_price_cents,
            description=f"Item set replaced ({len(normalized)} item(s))",
            user_id=user_id,
        )
        payment_service.recalculate_order(order, user_id)
        return order

    return run_in_transaction(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def deliver_order(order_id: int, user_id: int | None = None) -> Order:
    """
    Hand the garments to the customer.

    Requires at least one custody and every custody pending. Books a Rent
    for each rent item (garment -> rented) and marks each bought garment
    sold; every item becomes `delivered`.

    Raises:
        InvalidStateError: Order is not pre-delivery
        PreconditionError: Custody gate not met, or the order has no items
        ConflictError: A rental window was taken since the order was edited, or a
            garment is no longer rentable (sold, repairing, damaged)
    """
    def _op():
        order = _get_order_locked(order_id)
        if order.status not in PRE_DELIVERY_STATUSES:
            raise InvalidStateError(f"Cannot deliver an order with status {order.status}")
        if not order.items:
            raise PreconditionError("Cannot deliver an order without items")

        blockers = custody_service.delivery_blockers(order.custodies)
        if blockers:
            raise PreconditionError("Order cannot be delivered", details=blockers)

        for item in order.items:
            cloth = _lock_cloth(item.cloth_id)
            if item.type == ITEM_TYPE_RENT:
                rental_service.book_rent(order, item)
                cloth_status.mark_rented(cloth, order_id=order.id, user_id=user_id)
                item.returnable = True
            elif item.type == ITEM_TYPE_BUY:
                cloth_status.mark_sold(cloth, order_id=order.id, user_id=user_id)
            item.status = ITEM_STATUS_DELIVERED

        order.delivered_at = utcnow()
        _set_status(order, ORDER_STATUS_DELIVERED, user_id)
        log_order_event(order.id, "delivered", description="Order delivered", user_id=user_id)
        return order

    return run_in_transaction(_op)


def _normalize_photos(photos, cloth_id) -> list[str]:
    if photos is None:
        return []
    if not isinstance(photos, (list, tuple)):
        raise ValidationError(f"photos for cloth {cloth_id} must be a list")
    if len(photos) > MAX_RETURN_PHOTOS:
        raise ValidationError(f"Cannot attach more than {MAX_RETURN_PHOTOS} photos to cloth {cloth_id}")
    paths = []
    for photo in photos:
        if not isinstance(photo, str) or not photo.strip():
            raise ValidationError(f"photos for cloth {cloth_id} must be non-empty path strings")
        paths.append(photo.strip())
    return paths


def _return_item_locked(order: Order, cloth_id, status: str | None, notes: str | None,
                        user_id: int | None, photos=None) -> OrderItem:
    cloth_id = coerce_int(cloth_id, "cloth_id", minimum=1)
    item = next((i for i in order.items if i.cloth_id == cloth_id), None)
    if item is None:
        raise ValidationError(f"Cloth {cloth_id} is not part of order {order.id}")
    if item.type != ITEM_TYPE_RENT:
        raise ValidationError(f"Cloth {cloth_id} is a {item.type} item; only rent items can be returned")
    photo_paths = _normalize_photos(photos, cloth_id)

    rent = rental_service.get_active_rent(order.id, cloth_id)
    if rent is None:
        raise InvalidStateError(f"Cloth {cloth_id} has no active rent on order {order.id}")

    cloth = _lock_cloth(cloth_id)
    cloth_status.mark_returned(cloth, status, order_id=order.id, user_id=user_id)
    rental_service.complete_rent(rent, notes)

    for path in photo_paths:
        db.session.add(ClothReturnPhoto(
            order_id=order.id,
            cloth_id=cloth_id,
            rent_id=rent.id,
            photo_path=path,
            uploaded_by_user_id=user_id,
        ))

    item.status = ITEM_STATUS_RETURNED
    item.returnable = False
    log_order_event(
        order.id,
        "item_returned",
        field_changed="items",
        old_value=cloth_id,
        new_value=cloth.status,
        description=notes,
        user_id=user_id,
    )
    return item


def get_return_photos(order_id: int, cloth_id: int | None = None) -> list[ClothReturnPhoto]:
    query = db.session.query(ClothReturnPhoto).filter_by(order_id=order_id)
    if cloth_id is not None:
        query = query.filter_by(cloth_id=cloth_id)
    return query.order_by(ClothReturnPhoto.id).all()


def _finish_if_ready(order: Order, user_id: int | None) -> bool:
    """Finish a delivered order once its last garment is back and every gate holds."""
    if finish_blockers(order):
        return False
    _finish_locked(order, user_id)
    return True


def return_item(order_id: int, cloth_id: int, status: str | None = None, notes: str | None = None,
                user_id: int | None = None, photos=None) -> OrderItem:
    """
    Take back one rented garment.

    `status` is the condition the garment came back in (default repairing);
    `photos` is an optional list of up to 10 stored photo paths. When the
    return clears the last finish gate the order is finished in the same
    transaction.

    Raises:
        InvalidStateError: Order not delivered, or the item was already returned
        ValidationError: Garment not on the order, not a rent item, or bad status/photos
    """
    def _op():
        order = _get_order_locked(order_id)
        if order.status != ORDER_STATUS_DELIVERED:
            raise InvalidStateError(f"Cannot return items of an order with status {order.status}")
        item = _return_item_locked(order, cloth_id, status, notes, user_id, photos)
        db.session.flush()
        _finish_if_ready(order, user_id)
        return item

    return run_in_transaction(_op)


def return_items(order_id: int, returns, user_id: int | None = None) -> tuple[list[OrderItem], bool]:
    """
    Take back several garments at once; all or none are applied.

    Returns:
        (returned items, whether the order was finished automatically)
    """
    def _op():
        if not isinstance(returns, (list, tuple)) or not returns:
            raise ValidationError("items must be a non-empty list")
        order = _get_order_locked(order_id)
        if order.status != ORDER_STATUS_DELIVERED:
            raise InvalidStateError(f"Cannot return items of an order with status {order.status}")
        returned = []
        for idx, entry in enumerate(returns):
            if not isinstance(entry, dict):
                raise ValidationError(f"items[{idx}] must be an object")
            returned.append(_return_item_locked(
                order,
                entry.get("cloth_id"),
                entry.get("status"),
                entry.get("notes"),
                user_id,
                entry.get("photos"),
            ))
        db.session.flush()
        return returned, _finish_if_ready(order, user_id)

    return run_in_transaction(_op)


def finish_blockers(order: Order) -> list[str]:
    """Every reason the order cannot be finished yet (empty list = finishable)."""
    reasons = list(custody_service.finish_blockers(order.custodies))

    for p in payment_service.pending_payments(order.id):
        label = "Fee payment" if p.payment_type == PAYMENT_TYPE_FEE else "Payment"
        reasons.append(f"{label} {p.id} is still pending")

    payments = db.session.query(Payment).filter_by(order_id=order.id).all()
    state = payment_service.derive_payment_state(order.total_price_cents, payments)
    if state["paid_cents"] < order.total_price_cents:
        reasons.append(
            f"Order is not fully paid: {state['paid_cents']} of {order.total_price_cents} cents"
        )

    active = db.session.query(Rent).filter_by(order_id=order.id, status=RENT_STATUS_ACTIVE).all()
    for rent in active:
        reasons.append(f"Cloth {rent.cloth_id} has not been returned")
    return reasons


def _finish_locked(order: Order, user_id: int | None) -> None:
    payment_service.recalculate_order(order, user_id)
    order.finished_at = utcnow()
    _set_status(order, ORDER_STATUS_FINISHED, user_id)
    log_order_event(order.id, "finished", description="Order finished", user_id=user_id)


def finish_order(order_id: int, user_id: int | None = None) -> Order:
    """
    Close a delivered order.

    Raises:
        InvalidStateError: Order is not delivered
        PreconditionError: Custody, payment or return gate not met (all reasons in details)
    """
    def _op():
        order = _get_order_locked(order_id)
        if order.status != ORDER_STATUS_DELIVERED:
            raise InvalidStateError(f"Cannot finish an order with status {order.status}")

        reasons = finish_blockers(order)
        if reasons:
            raise PreconditionError("Order cannot be finished", details=reasons)

        _finish_locked(order, user_id)
        return order

    return run_in_transaction(_op)


def cancel_order(order_id: int, reason: str | None = None, user_id: int | None = None) -> Order:
    """
    Cancel a pre-delivery or delivered order.

    Every rent of the order is canceled (freeing the dates), every item is
    marked canceled and rented garments go back to ready_for_rent. Sold
    garments stay sold.

    Raises:
        InvalidStateError: Order already finished or canceled
    """
    def _op():
        order = _get_order_locked(order_id)
        if order.status not in PRE_DELIVERY_STATUSES and order.status != ORDER_STATUS_DELIVERED:
            raise InvalidStateError(f"Cannot cancel an order with status {order.status}")

        rental_service.cancel_rents_for_order(order.id)
        for item in order.items:
            item.status = ITEM_STATUS_CANCELED
            item.returnable = False
            cloth_status.release(_lock_cloth(item.cloth_id), order_id=order.id, user_id=user_id)

        if reason:
            line = f"Canceled: {reason}"
            order.notes = f"{order.notes}\n{line}" if order.notes else line
        order.canceled_at = utcnow()
        _set_status(order, ORDER_STATUS_CANCELED, user_id)
        log_order_event(order.id, "canceled", description=reason, user_id=user_id)
        return order

    return run_in_transaction(_op)
