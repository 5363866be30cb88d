# Overview: Pytest coverage for the order lifecycle state machine and pricing.

"""
Order Lifecycle Tests

Covers:
- Pricing (item discounts, order discount, half-up rounding)
- Item validation on create and update-items
- deliver / return / finish / cancel preconditions and side effects
- Atomicity: a rejected transition leaves no partial writes
"""

from datetime import timedelta

import pytest

from atelier.models import Cloth, ClothHistory, ClothReturnPhoto, Order, OrderHistory, OrderItem, Payment, Rent
from atelier.services import custody_service, order_service, payment_service, rental_service
from atelier.services.order_service import apply_discount, calculate_totals
from atelier.validation import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from conftest import D, buy_item, rent_item


def days(n):
    return timedelta(days=n)


@pytest.fixture
def create(db_session, customer, inventory):
    def _create(items, **kwargs):
        return order_service.create_order(customer.id, inventory.id, items, **kwargs)
    return _create


def _deliverable(order_id, custody_type="document"):
    custody_service.create_custody(order_id, custody_type, "ID card")
    return order_service.deliver_order(order_id)


class TestPricing:
    def test_percentage_rounds_half_up(self):
        # 50% of 999 = 499.5 -> 500 off
        assert apply_discount(999, "percentage", 5000) == 499

    def test_fixed_clamped_at_zero(self):
        assert apply_discount(1000, "fixed", 5000) == 0

    def test_no_discount(self):
        assert apply_discount(1000, None, 0) == 1000

    def test_item_then_order_discount(self):
        items = [
            {"price_cents": 10000, "discount_type": "percentage", "discount_value": 1000},
            {"price_cents": 5000, "discount_type": "fixed", "discount_value": 500},
        ]
        subtotal, total = calculate_totals(items, "percentage", 1000)

        assert subtotal == 9000 + 4500
        assert total == 13500 - 1350


class TestCreateOrder:
    def test_create_prices_and_defaults(self, db_session, create, dress, suit):
        order = create(
            [rent_item(dress, price_cents=10000, discount_type="percentage", discount_value=2000),
             buy_item(suit, price_cents=50000)],
            discount_type="fixed", discount_value=1000,
        )

        assert order.status == "created"
        assert order.subtotal_cents == 58000
        assert order.total_price_cents == 57000
        assert order.remaining_cents == 57000
        assert order.order_type == "mixed"
        rent_line = next(i for i in order.items if i.type == "rent")
        assert rent_line.line_total_cents == 8000
        assert rent_line.return_date == D + days(3)
        assert rent_line.status == "created"

    def test_initial_payment_recorded(self, db_session, create, dress):
        order = create([rent_item(dress, price_cents=10000)], paid_cents=4000)

        payments = db_session.query(Payment).filter_by(order_id=order.id).all()
        assert [(p.payment_type, p.status, p.amount_cents) for p in payments] == [("initial", "paid", 4000)]
        assert order.status == "partially_paid"
        assert order.remaining_cents == 6000

    def test_full_initial_payment_marks_paid(self, db_session, create, dress):
        order = create([rent_item(dress, price_cents=10000)], paid_cents=10000)

        assert order.status == "paid"
        assert order.order_type == "rent"

    def test_missing_cloth(self, db_session, create, dress):
        with pytest.raises(NotFoundError):
            create([{"cloth_id": 99999, "type": "buy", "price_cents": 100}])

    def test_cloth_from_other_inventory(self, db_session, create, make_cloth, other_inventory):
        foreign = make_cloth("FOREIGN", inventory_id=other_inventory.id)

        with pytest.raises(ValidationError):
            create([buy_item(foreign)])

    def test_sold_cloth_rejected(self, db_session, create, make_cloth):
        sold = make_cloth("SOLD", status="sold")

        with pytest.raises(ConflictError):
            create([rent_item(sold)])

    def test_duplicate_cloth_rejected(self, db_session, create, dress):
        with pytest.raises(ValidationError):
            create([rent_item(dress), rent_item(dress, delivery_date=D + days(30))])

    def test_rent_item_needs_window(self, db_session, create, dress):
        with pytest.raises(ValidationError):
            create([{"cloth_id": dress.id, "type": "rent", "price_cents": 100, "days_of_rent": 2}])
        with pytest.raises(ValidationError):
            create([{"cloth_id": dress.id, "type": "rent", "price_cents": 100,
                     "delivery_date": D.isoformat(), "days_of_rent": 0}])

    def test_empty_items_rejected(self, db_session, create):
        with pytest.raises(ValidationError):
            create([])

    def test_rental_conflicts_collected(self, db_session, create, dress, suit):
        first = create([rent_item(dress), rent_item(suit)])
        _deliverable(first.id)

        with pytest.raises(ConflictError) as exc:
            create([rent_item(dress, delivery_date=D + days(4)), rent_item(suit, delivery_date=D + days(1))])

        assert len(exc.value.details) == 2
        assert db_session.query(Order).count() == 1

    def test_buy_of_rented_garment_rejected(self, db_session, create, dress):
        first = create([rent_item(dress)])
        _deliverable(first.id)

        with pytest.raises(ConflictError):
            create([buy_item(dress)])

    @pytest.mark.parametrize("status", ["repairing", "damaged"])
    def test_garment_off_the_floor_cannot_be_rented(self, db_session, create, make_cloth, status):
        cloth = make_cloth("REPAIR", status=status)

        with pytest.raises(ConflictError):
            create([rent_item(cloth)])

        assert db_session.query(Order).count() == 0


class TestUpdateItems:
    def test_replace_item_set(self, db_session, create, dress, suit):
        order = create([rent_item(dress, price_cents=10000)], discount_type="percentage", discount_value=1000)

        updated = order_service.update_items(order.id, [buy_item(suit, price_cents=20000)])

        assert [i.cloth_id for i in updated.items] == [suit.id]
        assert updated.discount_type == "percentage"
        assert updated.total_price_cents == 18000
        assert db_session.query(OrderItem).filter_by(order_id=order.id, cloth_id=dress.id).count() == 0

    def test_update_in_place_keeps_item(self, db_session, create, dress):
        order = create([rent_item(dress, price_cents=10000)])
        item_id = order.items[0].id

        updated = order_service.update_items(
            order.id, [rent_item(dress, price_cents=12000, days=5)], discount_type=None,
        )

        assert updated.items[0].id == item_id
        assert updated.items[0].days_of_rent == 5
        assert updated.total_price_cents == 12000

    def test_price_drop_recalculates_status(self, db_session, create, dress):
        order = create([rent_item(dress, price_cents=10000)], paid_cents=6000)
        assert order.status == "partially_paid"

        updated = order_service.update_items(order.id, [rent_item(dress, price_cents=5000)])

        assert updated.status == "paid"
        assert updated.remaining_cents == 0

    def test_conflict_rejects_whole_update(self, db_session, create, dress, suit, make_cloth):
        blocker = create([rent_item(suit)])
        _deliverable(blocker.id)
        order = create([rent_item(dress, price_cents=10000)])
        third = make_cloth("THIRD")

        with pytest.raises(ConflictError):
            order_service.update_items(order.id, [buy_item(third), rent_item(suit, delivery_date=D + days(2))])

        db_session.expire_all()
        order = db_session.get(Order, order.id)
        assert [i.cloth_id for i in order.items] == [dress.id]
        assert order.total_price_cents == 10000

    def test_not_after_delivery(self, db_session, create, dress):
        order = create([rent_item(dress)])
        _deliverable(order.id)

        with pytest.raises(InvalidStateError):
            order_service.update_items(order.id, [rent_item(dress, days=5)])


class TestDeliver:
    def test_deliver_requires_custody(self, db_session, create, dress):
        order = create([rent_item(dress)])

        with pytest.raises(PreconditionError):
            order_service.deliver_order(order.id)

        assert order_service.get_order(order.id).status == "created"

    def test_deliver_requires_all_custodies_pending(self, db_session, create, dress):
        order = create([rent_item(dress)])
        c1 = custody_service.create_custody(order.id, "document", "ID card")
        custody_service.create_custody(order.id, "money", "Cash", value_cents=1000)
        custody_service.decide_custody(c1.id, "forfeited")

        with pytest.raises(PreconditionError):
            order_service.deliver_order(order.id)

    def test_deliver_books_rents_and_sells(self, db_session, create, dress, suit):
        order = create([rent_item(dress), buy_item(suit)])

        delivered = _deliverable(order.id)

        assert delivered.status == "delivered"
        assert delivered.delivered_at is not None
        assert all(i.status == "delivered" for i in delivered.items)
        assert db_session.get(Cloth, dress.id).status == "rented"
        assert db_session.get(Cloth, suit.id).status == "sold"
        rent = db_session.query(Rent).filter_by(order_id=order.id).one()
        assert (rent.cloth_id, rent.status, rent.return_date) == (dress.id, "active", D + days(3))
        assert next(i for i in delivered.items if i.type == "rent").returnable is True

    def test_deliver_twice_rejected(self, db_session, create, dress):
        order = create([rent_item(dress)])
        _deliverable(order.id)

        with pytest.raises(InvalidStateError):
            order_service.deliver_order(order.id)

    def test_garment_sent_to_repair_blocks_delivery(self, db_session, create, dress):
        order = create([rent_item(dress)])
        dress.status = "repairing"
        db_session.commit()

        with pytest.raises(ConflictError):
            _deliverable(order.id)

        db_session.expire_all()
        assert db_session.get(Cloth, dress.id).status == "repairing"
        assert db_session.get(Order, order.id).status == "created"
        assert db_session.query(Rent).filter_by(order_id=order.id).count() == 0

    def test_stale_booking_rejected_atomically(self, db_session, create, dress, suit):
        """Two orders validated before either delivered: the second delivery must fail cleanly."""
        first = create([rent_item(dress)])
        second = create([buy_item(suit), rent_item(dress, delivery_date=D + days(1))])
        custody_service.create_custody(second.id, "document", "ID card")
        _deliverable(first.id)

        with pytest.raises(ConflictError):
            order_service.deliver_order(second.id)

        db_session.expire_all()
        assert db_session.get(Order, second.id).status == "created"
        assert db_session.get(Cloth, suit.id).status == "ready_for_rent"
        assert db_session.query(Rent).filter_by(order_id=second.id).count() == 0


class TestReturnItems:
    def test_return_completes_rent(self, db_session, create, dress):
        order = create([rent_item(dress)])
        _deliverable(order.id)

        item = order_service.return_item(order.id, dress.id, status="ready_for_rent", notes="clean")

        assert item.status == "returned"
        assert item.returnable is False
        assert db_session.get(Cloth, dress.id).status == "ready_for_rent"
        rent = db_session.query(Rent).filter_by(order_id=order.id).one()
        assert rent.status == "completed"
        assert rent.completed_at is not None

    def test_return_default_status_is_repairing(self, db_session, create, dress):
        order = create([rent_item(dress)])
        _deliverable(order.id)

        order_service.return_items(order.id, [{"cloth_id": dress.id}])

        assert db_session.get(Cloth, dress.id).status == "repairing"

    def test_return_not_in_order(self, db_session, create, dress, suit):
        order = create([rent_item(dress)])
        _deliverable(order.id)

        with pytest.raises(ValidationError):
            order_service.return_item(order.id, suit.id)

    def test_return_buy_item_rejected(self, db_session, create, dress, suit):
        order = create([rent_item(dress), buy_item(suit)])
        _deliverable(order.id)

        with pytest.raises(ValidationError):
            order_service.return_item(order.id, suit.id)

    def test_return_before_delivery(self, db_session, create, dress):
        order = create([rent_item(dress)])

        with pytest.raises(InvalidStateError):
            order_service.return_item(order.id, dress.id)

    def test_return_twice(self, db_session, create, dress):
        order = create([rent_item(dress)])
        _deliverable(order.id)
        order_service.return_item(order.id, dress.id)

        with pytest.raises(InvalidStateError):
            order_service.return_item(order.id, dress.id)

    def test_batch_return_is_all_or_nothing(self, db_session, create, dress, make_cloth):
        gown = make_cloth("GOWN")
        order = create([rent_item(dress), rent_item(gown)])
        _deliverable(order.id)

        with pytest.raises(ValidationError):
            order_service.return_items(order.id, [
                {"cloth_id": dress.id, "status": "ready_for_rent"},
                {"cloth_id": gown.id, "status": "lost"},
            ])

        db_session.expire_all()
        assert db_session.get(Cloth, dress.id).status == "rented"
        assert rental_service.count_active_rents(order.id) == 2

    def test_return_keeps_garment_rented_for_next_booking(self, db_session, create, make_cloth):
        gown = make_cloth("GOWN")
        first = create([rent_item(gown, delivery_date=D, days=3)])
        second = create([rent_item(gown, delivery_date=D + days(6), days=2)])
        _deliverable(first.id)
        _deliverable(second.id)

        order_service.return_item(first.id, gown.id, status="ready_for_rent")

        db_session.expire_all()
        assert db_session.get(Cloth, gown.id).status == "rented"
        assert rental_service.count_active_rents(second.id) == 1
        entry = (
            db_session.query(ClothHistory)
            .filter_by(cloth_id=gown.id, action="returned_while_booked")
            .one()
        )
        assert entry.order_id == first.id
        assert "ready_for_rent" in entry.notes

    def test_return_photos_stored_per_item(self, db_session, create, dress, suit):
        order = create([rent_item(dress), rent_item(suit)])
        _deliverable(order.id)

        items, finished = order_service.return_items(order.id, [
            {"cloth_id": dress.id, "status": "ready_for_rent",
             "photos": ["returns/dress-front.jpg", "returns/dress-back.jpg"]},
            {"cloth_id": suit.id},
        ])

        assert [i.cloth_id for i in items] == [dress.id, suit.id]
        assert finished is False
        photos = order_service.get_return_photos(order.id)
        rent = db_session.query(Rent).filter_by(order_id=order.id, cloth_id=dress.id).one()
        assert [p.photo_path for p in photos] == ["returns/dress-front.jpg", "returns/dress-back.jpg"]
        assert all(p.cloth_id == dress.id and p.rent_id == rent.id for p in photos)
        assert all(p.photo_type == "return_photo" for p in photos)

    @pytest.mark.parametrize("photos", [
        [f"returns/{n}.jpg" for n in range(11)],
        ["returns/ok.jpg", "  "],
        "returns/one.jpg",
    ])
    def test_bad_return_photos_rejected(self, db_session, create, dress, photos):
        order = create([rent_item(dress)])
        _deliverable(order.id)

        with pytest.raises(ValidationError):
            order_service.return_items(order.id, [{"cloth_id": dress.id, "photos": photos}])

        db_session.expire_all()
        assert db_session.query(ClothReturnPhoto).count() == 0
        assert db_session.get(Cloth, dress.id).status == "rented"

    def test_last_return_finishes_settled_order(self, db_session, create, dress, suit):
        order = create([rent_item(dress, price_cents=6000), rent_item(suit, price_cents=4000)], paid_cents=10000)
        custody = custody_service.create_custody(order.id, "document", "ID card")
        order_service.deliver_order(order.id)
        custody_service.decide_custody(custody.id, "forfeited")

        _, finished = order_service.return_items(order.id, [{"cloth_id": dress.id}])
        assert finished is False
        assert order_service.get_order(order.id).status == "delivered"

        _, finished = order_service.return_items(order.id, [{"cloth_id": suit.id}])

        assert finished is True
        order = order_service.get_order(order.id)
        assert order.status == "finished"
        assert order.finished_at is not None
        change_types = [h.change_type for h in db_session.query(OrderHistory).filter_by(order_id=order.id)]
        assert change_types[-1] == "finished"

    def test_single_return_finishes_settled_order(self, db_session, create, dress):
        order = create([rent_item(dress)], paid_cents=10000)
        custody = custody_service.create_custody(order.id, "document", "ID card")
        order_service.deliver_order(order.id)
        custody_service.decide_custody(custody.id, "forfeited")

        order_service.return_item(order.id, dress.id, status="ready_for_rent")

        assert order_service.get_order(order.id).status == "finished"

    def test_return_does_not_finish_with_open_blockers(self, db_session, create, dress):
        order = create([rent_item(dress)], paid_cents=10000)
        _deliverable(order.id)

        _, finished = order_service.return_items(order.id, [{"cloth_id": dress.id}])

        assert finished is False
        assert order_service.get_order(order.id).status == "delivered"
        assert order_service.finish_blockers(order_service.get_order(order.id))


class TestFinish:
    def _delivered_and_returned(self, create, dress, price_cents=10000):
        order = create([rent_item(dress, price_cents=price_cents)])
        custody = custody_service.create_custody(order.id, "money", "Cash", value_cents=5000)
        order_service.deliver_order(order.id)
        order_service.return_item(order.id, dress.id, status="ready_for_rent")
        return order, custody

    def test_scenario_paid_with_fee_and_forfeit(self, db_session, create, dress):
        order, custody = self._delivered_and_returned(create, dress)
        payment_service.add_payment(order.id, 10000)
        payment_service.add_payment(order.id, 2500, payment_type="fee")
        custody_service.decide_custody(custody.id, "forfeited")

        finished = order_service.finish_order(order.id)

        assert finished.status == "finished"
        assert finished.remaining_cents == 0
        assert finished.finished_at is not None

    def test_overpayment_permitted(self, db_session, create, dress):
        order, custody = self._delivered_and_returned(create, dress)
        payment_service.add_payment(order.id, 12000)
        custody_service.decide_custody(
            custody.id, "returned", proof={"return_proof_photo": "proofs/ok.jpg"}
        )

        assert order_service.finish_order(order.id).status == "finished"

    def test_pending_custody_blocks(self, db_session, create, dress):
        order, _ = self._delivered_and_returned(create, dress)
        payment_service.add_payment(order.id, 10000)

        with pytest.raises(PreconditionError) as exc:
            order_service.finish_order(order.id)

        assert any("pending a decision" in d for d in exc.value.details)

    def test_returned_custody_without_proof_blocks(self, db_session, create, dress):
        order, custody = self._delivered_and_returned(create, dress)
        payment_service.add_payment(order.id, 10000)
        custody_service.decide_custody(custody.id, "returned")

        with pytest.raises(PreconditionError):
            order_service.finish_order(order.id)

        custody_service.attach_return_proof(custody.id, "proofs/late.jpg")
        assert order_service.finish_order(order.id).status == "finished"

    def test_pending_fee_blocks(self, db_session, create, dress):
        order, custody = self._delivered_and_returned(create, dress)
        payment_service.add_payment(order.id, 10000)
        payment_service.add_payment(order.id, 500, payment_type="fee", status="pending")
        custody_service.decide_custody(custody.id, "forfeited")

        with pytest.raises(PreconditionError) as exc:
            order_service.finish_order(order.id)

        assert any("Fee payment" in d for d in exc.value.details)

    def test_underpaid_blocks(self, db_session, create, dress):
        order, custody = self._delivered_and_returned(create, dress)
        payment_service.add_payment(order.id, 9999)
        payment_service.add_payment(order.id, 5000, payment_type="fee")
        custody_service.decide_custody(custody.id, "forfeited")

        with pytest.raises(PreconditionError):
            order_service.finish_order(order.id)

        assert order_service.get_order(order.id).status == "delivered"

    def test_unreturned_item_blocks(self, db_session, create, dress):
        order = create([rent_item(dress, price_cents=10000)], paid_cents=10000)
        custody = custody_service.create_custody(order.id, "document", "ID card")
        order_service.deliver_order(order.id)
        custody_service.decide_custody(custody.id, "forfeited")

        with pytest.raises(PreconditionError) as exc:
            order_service.finish_order(order.id)

        assert exc.value.details == [f"Cloth {dress.id} has not been returned"]

    def test_finish_requires_delivered(self, db_session, create, dress):
        order = create([rent_item(dress)], paid_cents=10000)

        with pytest.raises(InvalidStateError):
            order_service.finish_order(order.id)


class TestCancel:
    def test_cancel_frees_garment_and_dates(self, db_session, create, dress):
        order = create([rent_item(dress)])
        _deliverable(order.id)
        assert db_session.get(Cloth, dress.id).status == "rented"

        canceled = order_service.cancel_order(order.id, reason="Wedding postponed")

        assert canceled.status == "canceled"
        assert canceled.notes.endswith("Canceled: Wedding postponed")
        assert all(i.status == "canceled" for i in canceled.items)
        assert db_session.get(Cloth, dress.id).status == "ready_for_rent"
        assert db_session.query(Rent).filter_by(order_id=order.id).one().status == "canceled"

        rebook = create([rent_item(dress)])
        assert _deliverable(rebook.id).status == "delivered"

    def test_cancel_pre_delivery(self, db_session, create, dress):
        order = create([rent_item(dress)], paid_cents=2000)

        canceled = order_service.cancel_order(order.id)

        assert canceled.status == "canceled"
        assert db_session.get(Cloth, dress.id).status == "ready_for_rent"

    def test_sold_garment_stays_sold(self, db_session, create, dress, suit):
        order = create([rent_item(dress), buy_item(suit)])
        _deliverable(order.id)

        order_service.cancel_order(order.id)

        assert db_session.get(Cloth, suit.id).status == "sold"
        assert db_session.get(Cloth, dress.id).status == "ready_for_rent"

    def test_cancel_finished_rejected(self, db_session, create, dress):
        order = create([rent_item(dress)], paid_cents=10000)
        custody = custody_service.create_custody(order.id, "document", "ID card")
        order_service.deliver_order(order.id)
        order_service.return_item(order.id, dress.id)
        custody_service.decide_custody(custody.id, "forfeited")
        order_service.finish_order(order.id)

        with pytest.raises(InvalidStateError):
            order_service.cancel_order(order.id)

    def test_cancel_twice_rejected(self, db_session, create, dress):
        order = create([rent_item(dress)])
        order_service.cancel_order(order.id)

        with pytest.raises(InvalidStateError):
            order_service.cancel_order(order.id)


class TestSnapshotAndHistory:
    def test_snapshot_contains_children(self, db_session, create, dress):
        order = create([rent_item(dress)], paid_cents=1000)
        custody_service.create_custody(order.id, "document", "ID card")
        order_service.deliver_order(order.id)

        snap = order_service.get_order_snapshot(order.id)

        assert snap["status"] == "delivered"
        assert len(snap["items"]) == 1
        assert len(snap["payments"]) == 1
        assert len(snap["custodies"]) == 1
        assert snap["rents"][0]["delivery_date"] == D.isoformat()

    def test_history_tracks_lifecycle(self, db_session, create, dress):
        order = create([rent_item(dress)])
        _deliverable(order.id)
        order_service.cancel_order(order.id)

        change_types = [h.change_type for h in db_session.query(OrderHistory).filter_by(order_id=order.id)]
        assert change_types[0] == "created"
        assert "delivered" in change_types
        assert change_types[-1] == "canceled"

    def test_history_module_docstring(self):
        from atelier.services import history_service

        assert history_service.__doc__.strip().startswith("History invariants")

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.get_order_snapshot(99999)
