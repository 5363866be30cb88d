from __future__ import annotations

from ..extensions import db
from atelier.time_utils import to_utc_z


CUSTODY_TYPE_MONEY = "money"
CUSTODY_TYPE_PHYSICAL_ITEM = "physical_item"
CUSTODY_TYPE_DOCUMENT = "document"

CUSTODY_TYPES = [CUSTODY_TYPE_MONEY, CUSTODY_TYPE_PHYSICAL_ITEM, CUSTODY_TYPE_DOCUMENT]

CUSTODY_STATUS_PENDING = "pending"
CUSTODY_STATUS_RETURNED = "returned"
CUSTODY_STATUS_FORFEITED = "forfeited"

CUSTODY_OUTCOMES = [CUSTODY_STATUS_RETURNED, CUSTODY_STATUS_FORFEITED]


class Custody(db.Model):
    """
    Deposit held against an order while garments are out.

    LIFECYCLE:
    - pending: held, created before delivery
    - returned: handed back to the customer (requires a CustodyReturn proof)
    - forfeited: kept by the shop (terminal, no proof needed)
    """
    __tablename__ = "custodies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)  # money, physical_item, document
    description = db.Column(db.String(255), nullable=False)
    value_cents = db.Column(db.Integer, nullable=True)  # required for money
    status = db.Column(db.String(16), nullable=False, default=CUSTODY_STATUS_PENDING, index=True)

    reason_of_kept = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship(
        "Order",
        backref=db.backref("custodies", lazy=True, order_by="Custody.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "type": self.type,
            "description": self.description,
            "value_cents": self.value_cents,
            "status": self.status,
            "reason_of_kept": self.reason_of_kept,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "decided_at": to_utc_z(self.decided_at),
            "returns": [r.to_dict() for r in self.returns],
        }


class CustodyReturn(db.Model):
    """Proof that a custody was physically handed back (photo + customer identity)."""
    __tablename__ = "custody_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    custody_id = db.Column(db.Integer, db.ForeignKey("custodies.id"), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True)

    returned_at = db.Column(db.DateTime(timezone=True), nullable=False)
    return_proof_photo = db.Column(db.String(512), nullable=False)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_national_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    returned_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    custody = db.relationship(
        "Custody",
        backref=db.backref("returns", lazy=True, order_by="CustodyReturn.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "custody_id": self.custody_id,
            "client_id": self.client_id,
            "returned_at": to_utc_z(self.returned_at),
            "return_proof_photo": self.return_proof_photo,
            "customer_name": self.customer_name,
            "customer_national_id": self.customer_national_id,
            "notes": self.notes,
            "returned_by_user_id": self.returned_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
