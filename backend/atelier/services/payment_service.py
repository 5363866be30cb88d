# Overview: Service-layer operations for payments; ledger rows and derived order totals/status.

"""
Payment Ledger Service

WHY: Orders are settled over several installments and may accrue fees.
The order's paid/remaining figures and its pre-delivery status are derived
from the payment rows, never edited by hand.

DERIVATION:
- non_fee_paid = sum(amount | status=paid AND type != fee)
- remaining = max(0, total_price - non_fee_paid)
- derived status: paid if non_fee_paid >= total_price,
  partially_paid if 0 < non_fee_paid < total_price, else created
- Status is only rewritten while the order is created/partially_paid/paid.
  After delivery, finish or cancel, payment activity updates the
  bookkeeping figures only.

Fee payments are recorded for audit and reporting but never count toward
`remaining`; all of them must be non-pending before an order can finish.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, Payment
from ..models.orders import (
    ORDER_STATUS_CREATED,
    ORDER_STATUS_PARTIALLY_PAID,
    ORDER_STATUS_PAID,
    PRE_DELIVERY_STATUSES,
)
from ..models.payments import (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_CANCELED,
    PAYMENT_TYPE_INITIAL,
    PAYMENT_TYPE_NORMAL,
    PAYMENT_TYPE_FEE,
    PAYMENT_TYPES,
)
from ..validation import InvalidStateError, NotFoundError, coerce_cents, coerce_datetime, require_choice
from atelier.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .history_service import log_order_event, log_status_change


# =============================================================================
# PURE DERIVATION
# =============================================================================

def derive_payment_state(total_price_cents: int, payments) -> dict:
    """
    Compute paid/remaining/status from a set of payments.

    Args:
        total_price_cents: Order total after discounts
        payments: Iterable of objects with amount_cents, status, payment_type

    Returns:
        Dict with paid_cents (non-fee), fee_paid_cents, remaining_cents, status
    """
    paid = 0
    fee_paid = 0
    for p in payments:
        if p.status != PAYMENT_STATUS_PAID:
            continue
        if p.payment_type == PAYMENT_TYPE_FEE:
            fee_paid += p.amount_cents
        else:
            paid += p.amount_cents

    if paid >= total_price_cents:
        status = ORDER_STATUS_PAID
        remaining = 0
    elif paid > 0:
        status = ORDER_STATUS_PARTIALLY_PAID
        remaining = total_price_cents - paid
    else:
        status = ORDER_STATUS_CREATED
        remaining = total_price_cents

    return {
        "paid_cents": paid,
        "fee_paid_cents": fee_paid,
        "remaining_cents": max(0, remaining),
        "status": status,
    }


def recalculate_order(order: Order, user_id: int | None = None) -> Order:
    """
    Refresh paid/remaining (and, pre-delivery, status) from the order's payments.

    Runs inside the caller's transaction.
    """
    db.session.flush()
    payments = db.session.query(Payment).filter_by(order_id=order.id).all()
    state = derive_payment_state(order.total_price_cents, payments)

    order.paid_cents = state["paid_cents"]
    order.remaining_cents = state["remaining_cents"]

    if order.status in PRE_DELIVERY_STATUSES and order.status != state["status"]:
        old_status = order.status
        order.status = state["status"]
        log_status_change(order.id, old_status, order.status, user_id)
        current_app.logger.info("Order %s status %s -> %s", order.id, old_status, order.status)

    order.updated_at = utcnow()
    return order


def _get_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _get_payment_locked(payment_id: int, order_id: int | None = None) -> Payment:
    payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    if order_id is not None and payment.order_id != order_id:
        raise NotFoundError(f"Payment {payment_id} does not belong to order {order_id}")
    return payment


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

def record_payment(
    order: Order,
    amount_cents: int,
    payment_type: str = PAYMENT_TYPE_NORMAL,
    status: str = PAYMENT_STATUS_PAID,
    payment_date=None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Payment:
    """Insert a payment row for an already-loaded order. Caller owns the transaction."""
    amount = coerce_cents(amount_cents, "amount_cents", allow_zero=False)
    require_choice(payment_type, "payment_type", PAYMENT_TYPES)
    require_choice(status, "status", [PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PAID])

    when = coerce_datetime(payment_date, "payment_date")
    if status == PAYMENT_STATUS_PAID and when is None:
        when = utcnow()

    payment = Payment(
        order_id=order.id,
        amount_cents=amount,
        status=status,
        payment_type=payment_type,
        payment_date=when,
        notes=notes,
        created_by_user_id=user_id,
    )
    db.session.add(payment)
    db.session.flush()

    log_order_event(
        order.id,
        "payment_added",
        field_changed="payments",
        new_value=f"{payment_type}:{status}:{amount}",
        description=f"Payment {payment.id} added",
        user_id=user_id,
    )
    recalculate_order(order, user_id)
    return payment


def add_payment(
    order_id: int,
    amount_cents: int,
    payment_type: str = PAYMENT_TYPE_NORMAL,
    status: str = PAYMENT_STATUS_PAID,
    payment_date=None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Payment:
    """
    Add a payment to an order.

    A `paid` payment contributes immediately; a `pending` one waits for
    pay_payment(). Allowed in any order state, but after delivery only the
    bookkeeping figures move.

    Raises:
        NotFoundError: If the order does not exist
        ValidationError: If amount, type or status is invalid
    """
    def _op():
        order = _get_order_locked(order_id)
        payment = record_payment(
            order,
            amount_cents,
            payment_type=payment_type,
            status=status,
            payment_date=payment_date,
            notes=notes,
            user_id=user_id,
        )
        current_app.logger.info(
            "Payment %s added to order %s: %s %s cents (%s)",
            payment.id, order.id, payment.payment_type, payment.amount_cents, payment.status,
        )
        return payment

    return run_in_transaction(_op)


def record_initial_payment(order: Order, amount_cents: int, user_id: int | None = None) -> Payment | None:
    """Amount collected at order creation; nothing is recorded for zero."""
    if not amount_cents:
        return None
    return record_payment(
        order,
        amount_cents,
        payment_type=PAYMENT_TYPE_INITIAL,
        status=PAYMENT_STATUS_PAID,
        notes="Initial payment",
        user_id=user_id,
    )


def pay_payment(payment_id: int, payment_date=None, user_id: int | None = None, order_id: int | None = None) -> Payment:
    """
    Settle a pending payment.

    Raises:
        NotFoundError: If the payment (or its association with order_id) is missing
        InvalidStateError: If the payment is already paid or canceled
    """
    def _op():
        payment = _get_payment_locked(payment_id, order_id)
        if payment.status == PAYMENT_STATUS_PAID:
            raise InvalidStateError(f"Payment {payment.id} is already paid")
        if payment.status == PAYMENT_STATUS_CANCELED:
            raise InvalidStateError(f"Payment {payment.id} is canceled and cannot be paid")

        order = _get_order_locked(payment.order_id)
        payment.status = PAYMENT_STATUS_PAID
        when = coerce_datetime(payment_date, "payment_date")
        payment.payment_date = when or utcnow()

        log_order_event(
            order.id,
            "payment_paid",
            field_changed="payments",
            old_value=PAYMENT_STATUS_PENDING,
            new_value=PAYMENT_STATUS_PAID,
            description=f"Payment {payment.id} paid",
            user_id=user_id,
        )
        recalculate_order(order, user_id)
        current_app.logger.info("Payment %s paid on order %s", payment.id, order.id)
        return payment

    return run_in_transaction(_op)


def cancel_payment(payment_id: int, notes: str | None = None, user_id: int | None = None,
                   order_id: int | None = None) -> Payment:
    """
    Cancel a pending or paid payment.

    Notes are appended to any existing notes. Payments are never deleted.

    Raises:
        NotFoundError: If the payment (or its association with order_id) is missing
        InvalidStateError: If the payment is already canceled
    """
    def _op():
        payment = _get_payment_locked(payment_id, order_id)
        if payment.status == PAYMENT_STATUS_CANCELED:
            raise InvalidStateError(f"Payment {payment.id} is already canceled")

        order = _get_order_locked(payment.order_id)
        old_status = payment.status
        payment.status = PAYMENT_STATUS_CANCELED
        payment.canceled_at = utcnow()
        if notes:
            line = f"Canceled: {notes}"
            payment.notes = f"{payment.notes}\n{line}" if payment.notes else line

        log_order_event(
            order.id,
            "payment_canceled",
            field_changed="payments",
            old_value=old_status,
            new_value=PAYMENT_STATUS_CANCELED,
            description=f"Payment {payment.id} canceled",
            user_id=user_id,
        )
        recalculate_order(order, user_id)
        current_app.logger.info("Payment %s canceled on order %s", payment.id, order.id)
        return payment

    return run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_order_payments(order_id: int) -> list[Payment]:
    if db.session.get(Order, order_id) is None:
        raise NotFoundError(f"Order {order_id} not found")
    return db.session.query(Payment).filter_by(order_id=order_id).order_by(Payment.id).all()


def pending_payments(order_id: int, payment_type: str | None = None) -> list[Payment]:
    query = db.session.query(Payment).filter_by(order_id=order_id, status=PAYMENT_STATUS_PENDING)
    if payment_type is not None:
        query = query.filter_by(payment_type=payment_type)
    return query.order_by(Payment.id).all()


def get_payment_summary(order_id: int) -> dict:
    """Totals for an order's ledger (fees reported separately)."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")

    payments = db.session.query(Payment).filter_by(order_id=order_id).all()
    state = derive_payment_state(order.total_price_cents, payments)
    pending = [p for p in payments if p.status == PAYMENT_STATUS_PENDING]

    return {
        "order_id": order.id,
        "order_status": order.status,
        "total_price_cents": order.total_price_cents,
        "paid_cents": state["paid_cents"],
        "remaining_cents": state["remaining_cents"],
        "fee_paid_cents": state["fee_paid_cents"],
        "pending_count": len(pending),
        "pending_cents": sum(p.amount_cents for p in pending),
        "payment_count": len(payments),
        "derived_status": state["status"],
    }
