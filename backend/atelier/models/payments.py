from __future__ import annotations

from ..extensions import db
from atelier.time_utils import to_utc_z


PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_CANCELED = "canceled"

PAYMENT_STATUSES = [PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PAID, PAYMENT_STATUS_CANCELED]

PAYMENT_TYPE_INITIAL = "initial"
PAYMENT_TYPE_NORMAL = "normal"
PAYMENT_TYPE_FEE = "fee"

PAYMENT_TYPES = [PAYMENT_TYPE_INITIAL, PAYMENT_TYPE_NORMAL, PAYMENT_TYPE_FEE]


class Payment(db.Model):
    """
    Payment recorded against an order.

    WHY: Orders are settled in several installments (deposit at booking,
    balance at pickup) and may accrue fees (late return, cleaning, damage).

    PAYMENT TYPES:
    - initial: Amount collected when the order was created
    - normal: Any later installment
    - fee: Extra charge; audited but never counted toward the order total

    Payments are never deleted. Mistakes are corrected by canceling.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PAID)
    payment_type = db.Column(db.String(16), nullable=False, default=PAYMENT_TYPE_NORMAL)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship(
        "Order",
        backref=db.backref("payments", lazy=True, order_by="Payment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "payment_type": self.payment_type,
            "payment_date": to_utc_z(self.payment_date),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "canceled_at": to_utc_z(self.canceled_at),
        }
