from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from atelier.time_utils import to_utc_z, to_iso_date


# Order lifecycle
ORDER_STATUS_CREATED = "created"
ORDER_STATUS_PARTIALLY_PAID = "partially_paid"
ORDER_STATUS_PAID = "paid"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_FINISHED = "finished"
ORDER_STATUS_CANCELED = "canceled"

ORDER_STATUSES = [
    ORDER_STATUS_CREATED,
    ORDER_STATUS_PARTIALLY_PAID,
    ORDER_STATUS_PAID,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_FINISHED,
    ORDER_STATUS_CANCELED,
]

# Statuses driven purely by payment totals (before the garments leave the shop)
PRE_DELIVERY_STATUSES = {
    ORDER_STATUS_CREATED,
    ORDER_STATUS_PARTIALLY_PAID,
    ORDER_STATUS_PAID,
}

# Item types
ITEM_TYPE_BUY = "buy"
ITEM_TYPE_RENT = "rent"
ITEM_TYPE_TAILORING = "tailoring"

ITEM_TYPES = [ITEM_TYPE_BUY, ITEM_TYPE_RENT, ITEM_TYPE_TAILORING]

# Item statuses
ITEM_STATUS_CREATED = "created"
ITEM_STATUS_DELIVERED = "delivered"
ITEM_STATUS_RETURNED = "returned"
ITEM_STATUS_CANCELED = "canceled"

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"


class Order(db.Model):
    """
    Customer order for renting and/or buying garments.

    Money is tracked in cents. `paid_cents` is the sum of paid non-fee
    payments; `remaining_cents` is never negative. Both are maintained by
    the payment service, never written directly.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_client_status", "client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventories.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_CREATED, index=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)  # Items after item discounts
    total_price_cents = db.Column(db.Integer, nullable=False, default=0)  # After order discount
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_cents = db.Column(db.Integer, nullable=False, default=0)

    # Order-level discount: percentage in basis points, fixed in cents
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("orders", lazy=True))
    inventory = db.relationship("Inventory")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.status}>"

    @property
    def order_type(self) -> str:
        types = {item.type for item in self.items}
        if not types:
            return "unknown"
        if len(types) == 1:
            return types.pop()
        return "mixed"

    def to_dict(self, include_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "inventory_id": self.inventory_id,
            "status": self.status,
            "order_type": self.order_type,
            "subtotal_cents": self.subtotal_cents,
            "total_price_cents": self.total_price_cents,
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "finished_at": to_utc_z(self.finished_at),
            "canceled_at": to_utc_z(self.canceled_at),
            "version_id": self.version_id,
        }
        if include_children:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
            data["custodies"] = [c.to_dict() for c in self.custodies]
        return data


class OrderItem(db.Model):
    """
    A garment on an order, with its own price, discount and rental window.

    One row per (order, garment). Rent items carry delivery_date and
    days_of_rent; `returnable` stays True until a delivered rent item is
    handed back.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "cloth_id", name="uq_order_items_order_cloth"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    cloth_id = db.Column(db.Integer, db.ForeignKey("clothes.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)  # buy, rent, tailoring
    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_CREATED)

    price_cents = db.Column(db.Integer, nullable=False)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)  # price after item discount

    # Rental window (rent items only)
    delivery_date = db.Column(db.Date, nullable=True)
    days_of_rent = db.Column(db.Integer, nullable=True)
    returnable = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("items", lazy=True, cascade="all, delete-orphan", order_by="OrderItem.id"),
    )
    cloth = db.relationship("Cloth")

    @property
    def return_date(self):
        if self.delivery_date is None or self.days_of_rent is None:
            return None
        return self.delivery_date + timedelta(days=self.days_of_rent)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "cloth_id": self.cloth_id,
            "cloth_code": self.cloth.code if self.cloth else None,
            "type": self.type,
            "status": self.status,
            "price_cents": self.price_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "line_total_cents": self.line_total_cents,
            "delivery_date": to_iso_date(self.delivery_date),
            "days_of_rent": self.days_of_rent,
            "return_date": to_iso_date(self.return_date),
            "returnable": self.returnable,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
