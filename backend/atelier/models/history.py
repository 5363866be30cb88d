from __future__ import annotations

from ..extensions import db
from atelier.time_utils import to_utc_z


class OrderHistory(db.Model):
    """
    Append-only change log for an order.

    Rows are written in the same transaction as the change they describe and
    never updated or deleted.
    """
    __tablename__ = "order_history"
    __table_args__ = (
        db.Index("ix_order_history_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    change_type = db.Column(db.String(32), nullable=False)  # created, delivered, payment_added, ...
    field_changed = db.Column(db.String(64), nullable=True)
    old_value = db.Column(db.String(255), nullable=True)
    new_value = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "change_type": self.change_type,
            "field_changed": self.field_changed,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "description": self.description,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class ClothHistory(db.Model):
    """Append-only trace of garment status writes."""
    __tablename__ = "cloth_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cloth_id = db.Column(db.Integer, db.ForeignKey("clothes.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    action = db.Column(db.String(32), nullable=False)  # rented, sold, returned, released, returned_while_booked
    old_status = db.Column(db.String(32), nullable=True)
    new_status = db.Column(db.String(32), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cloth_id": self.cloth_id,
            "order_id": self.order_id,
            "action": self.action,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "user_id": self.user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
