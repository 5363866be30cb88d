# Overview: Pytest coverage for the payment ledger and derived order totals/status.

"""
Payment Ledger Tests

Covers:
- remaining = max(0, total - non-fee paid) after every payment event
- Derived pre-delivery status (created / partially_paid / paid)
- Fees excluded from remaining and status
- Double-pay / pay-canceled / double-cancel rejection
- Status frozen once the order leaves the pre-delivery states
"""

from types import SimpleNamespace

import pytest

from atelier.models import Order, OrderHistory, Payment
from atelier.services import order_service, payment_service
from atelier.services.payment_service import derive_payment_state
from atelier.validation import InvalidStateError, NotFoundError, ValidationError
from conftest import rent_item


def _p(amount, status="paid", payment_type="normal"):
    return SimpleNamespace(amount_cents=amount, status=status, payment_type=payment_type)


@pytest.fixture
def order(db_session, customer, inventory, dress):
    """Order with total 10000 cents and nothing paid."""
    return order_service.create_order(customer.id, inventory.id, [rent_item(dress, price_cents=10000)])


class TestDerivePaymentState:
    def test_nothing_paid(self):
        state = derive_payment_state(10000, [])
        assert state == {"paid_cents": 0, "fee_paid_cents": 0, "remaining_cents": 10000, "status": "created"}

    def test_partial(self):
        state = derive_payment_state(10000, [_p(4000)])
        assert state["status"] == "partially_paid"
        assert state["remaining_cents"] == 6000

    def test_overpayment_clamps_remaining(self):
        state = derive_payment_state(10000, [_p(8000), _p(5000)])
        assert state["status"] == "paid"
        assert state["remaining_cents"] == 0
        assert state["paid_cents"] == 13000

    def test_fees_and_non_paid_excluded(self):
        state = derive_payment_state(10000, [
            _p(10000, payment_type="fee"),
            _p(3000, status="pending"),
            _p(3000, status="canceled"),
            _p(2000, payment_type="initial"),
        ])
        assert state["paid_cents"] == 2000
        assert state["fee_paid_cents"] == 10000
        assert state["remaining_cents"] == 8000
        assert state["status"] == "partially_paid"

    def test_zero_total_is_paid(self):
        assert derive_payment_state(0, [])["status"] == "paid"


class TestAddPayment:
    def test_paid_payment_updates_order(self, db_session, order):
        payment_service.add_payment(order.id, 4000)

        db_session.refresh(order)
        assert order.paid_cents == 4000
        assert order.remaining_cents == 6000
        assert order.status == "partially_paid"

    def test_full_payment_marks_paid(self, db_session, order):
        payment_service.add_payment(order.id, 10000)

        db_session.refresh(order)
        assert order.status == "paid"
        assert order.remaining_cents == 0

    def test_pending_payment_does_not_count(self, db_session, order):
        payment = payment_service.add_payment(order.id, 10000, status="pending")

        db_session.refresh(order)
        assert payment.payment_date is None
        assert order.paid_cents == 0
        assert order.status == "created"

    def test_fee_never_reduces_remaining(self, db_session, order):
        payment_service.add_payment(order.id, 2500, payment_type="fee")

        db_session.refresh(order)
        assert order.remaining_cents == 10000
        assert order.status == "created"

    def test_invalid_inputs(self, db_session, order):
        with pytest.raises(ValidationError):
            payment_service.add_payment(order.id, 0)
        with pytest.raises(ValidationError):
            payment_service.add_payment(order.id, 100, payment_type="tip")
        with pytest.raises(ValidationError):
            payment_service.add_payment(order.id, 100, status="canceled")
        with pytest.raises(ValidationError):
            payment_service.add_payment(order.id, 10.5)

        assert db_session.query(Payment).filter_by(order_id=order.id).count() == 0

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            payment_service.add_payment(99999, 100)

    def test_payment_date_parsed_or_rejected(self, db_session, order):
        payment = payment_service.add_payment(order.id, 1000, payment_date="2030-05-01T09:30:00+02:00")
        assert payment.payment_date.isoformat() == "2030-05-01T07:30:00"

        with pytest.raises(ValidationError):
            payment_service.add_payment(order.id, 1000, payment_date="yesterday")

    def test_history_written(self, db_session, order):
        payment_service.add_payment(order.id, 4000, user_id=3)

        types = [h.change_type for h in db_session.query(OrderHistory).filter_by(order_id=order.id)]
        assert "payment_added" in types
        assert "status_changed" in types


class TestPayPayment:
    def test_pay_pending(self, db_session, order):
        payment = payment_service.add_payment(order.id, 10000, status="pending")

        paid = payment_service.pay_payment(payment.id)

        db_session.refresh(order)
        assert paid.status == "paid"
        assert paid.payment_date is not None
        assert order.status == "paid"

    def test_double_pay_rejected(self, db_session, order):
        payment = payment_service.add_payment(order.id, 5000)

        with pytest.raises(InvalidStateError):
            payment_service.pay_payment(payment.id)

    def test_pay_canceled_rejected(self, db_session, order):
        payment = payment_service.add_payment(order.id, 5000, status="pending")
        payment_service.cancel_payment(payment.id)

        with pytest.raises(InvalidStateError):
            payment_service.pay_payment(payment.id)

    def test_payment_on_other_order_not_found(self, db_session, order, customer, inventory, suit):
        other = order_service.create_order(customer.id, inventory.id, [rent_item(suit)])
        payment = payment_service.add_payment(order.id, 5000, status="pending")

        with pytest.raises(NotFoundError):
            payment_service.pay_payment(payment.id, order_id=other.id)


class TestCancelPayment:
    def test_cancel_paid_payment_restores_remaining(self, db_session, order):
        payment = payment_service.add_payment(order.id, 10000, notes="cash")

        canceled = payment_service.cancel_payment(payment.id, notes="entered twice")

        db_session.refresh(order)
        assert canceled.status == "canceled"
        assert canceled.notes == "cash\nCanceled: entered twice"
        assert order.remaining_cents == 10000
        assert order.status == "created"

    def test_double_cancel_rejected(self, db_session, order):
        payment = payment_service.add_payment(order.id, 1000)
        payment_service.cancel_payment(payment.id)

        with pytest.raises(InvalidStateError):
            payment_service.cancel_payment(payment.id)

    def test_payments_never_deleted(self, db_session, order):
        payment = payment_service.add_payment(order.id, 1000)
        payment_service.cancel_payment(payment.id)

        assert db_session.get(Payment, payment.id) is not None


class TestStatusFrozenAfterDelivery:
    def test_payment_after_delivery_keeps_status(self, db_session, order):
        from atelier.services import custody_service

        custody_service.create_custody(order.id, "document", "Passport")
        order_service.deliver_order(order.id)

        payment_service.add_payment(order.id, 10000)

        db_session.refresh(order)
        assert order.status == "delivered"
        assert order.paid_cents == 10000
        assert order.remaining_cents == 0

    def test_cancel_after_cancel_order_keeps_status(self, db_session, order):
        payment = payment_service.add_payment(order.id, 4000)
        order_service.cancel_order(order.id)

        payment_service.cancel_payment(payment.id)

        db_session.refresh(order)
        assert order.status == "canceled"
        assert order.paid_cents == 0
        assert order.remaining_cents == 10000


class TestPaymentSummary:
    def test_summary(self, db_session, order):
        payment_service.add_payment(order.id, 6000)
        payment_service.add_payment(order.id, 1500, payment_type="fee")
        payment_service.add_payment(order.id, 4000, status="pending")

        summary = payment_service.get_payment_summary(order.id)

        assert summary["paid_cents"] == 6000
        assert summary["remaining_cents"] == 4000
        assert summary["fee_paid_cents"] == 1500
        assert summary["pending_count"] == 1
        assert summary["pending_cents"] == 4000
        assert summary["payment_count"] == 3
        assert summary["order_status"] == "partially_paid"

    def test_remaining_invariant_across_events(self, db_session, order):
        p1 = payment_service.add_payment(order.id, 3000)
        p2 = payment_service.add_payment(order.id, 9000, status="pending")
        payment_service.pay_payment(p2.id)
        payment_service.cancel_payment(p1.id)
        payment_service.add_payment(order.id, 700, payment_type="fee")

        db_session.refresh(order)
        payments = db_session.query(Payment).filter_by(order_id=order.id).all()
        non_fee_paid = sum(p.amount_cents for p in payments if p.status == "paid" and p.payment_type != "fee")
        assert order.remaining_cents == max(0, order.total_price_cents - non_fee_paid)
        assert order.remaining_cents == 1000
        assert db_session.get(Order, order.id).status == "partially_paid"
