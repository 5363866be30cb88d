from __future__ import annotations

from ..extensions import db
from atelier.time_utils import to_utc_z, to_iso_date


RENT_STATUS_ACTIVE = "active"
RENT_STATUS_COMPLETED = "completed"
RENT_STATUS_CANCELED = "canceled"


class Rent(db.Model):
    """
    Booking of one garment for one delivered rent item.

    Created (active) at delivery, completed when the garment comes back,
    canceled when the order is canceled. Every non-canceled rent projects an
    unavailable window of buffer days around [delivery_date, return_date].
    """
    __tablename__ = "rents"
    __table_args__ = (
        # Conflict checks scan all non-canceled rents of one garment
        db.Index("ix_rents_cloth_status", "cloth_id", "status"),
        db.Index("ix_rents_cloth_window", "cloth_id", "delivery_date", "return_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cloth_id = db.Column(db.Integer, db.ForeignKey("clothes.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True)

    delivery_date = db.Column(db.Date, nullable=False)
    days_of_rent = db.Column(db.Integer, nullable=False)
    return_date = db.Column(db.Date, nullable=False)  # delivery_date + days_of_rent

    status = db.Column(db.String(16), nullable=False, default=RENT_STATUS_ACTIVE, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cloth = db.relationship("Cloth", backref=db.backref("rents", lazy=True))
    order = db.relationship("Order", backref=db.backref("rents", lazy=True, order_by="Rent.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cloth_id": self.cloth_id,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "delivery_date": to_iso_date(self.delivery_date),
            "days_of_rent": self.days_of_rent,
            "return_date": to_iso_date(self.return_date),
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "canceled_at": to_utc_z(self.canceled_at),
        }


# Photos attached to one returned garment
MAX_RETURN_PHOTOS = 10
PHOTO_TYPE_RETURN = "return_photo"


class ClothReturnPhoto(db.Model):
    """Condition photo taken when a rented garment comes back (stored path, not the image)."""
    __tablename__ = "cloth_return_photos"
    __table_args__ = (
        db.Index("ix_cloth_return_photos_order_cloth", "order_id", "cloth_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    cloth_id = db.Column(db.Integer, db.ForeignKey("clothes.id"), nullable=False, index=True)
    rent_id = db.Column(db.Integer, db.ForeignKey("rents.id"), nullable=True)
    photo_path = db.Column(db.String(512), nullable=False)
    photo_type = db.Column(db.String(32), nullable=False, default=PHOTO_TYPE_RETURN)
    uploaded_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    rent = db.relationship("Rent", backref=db.backref("photos", lazy=True, order_by="ClothReturnPhoto.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "cloth_id": self.cloth_id,
            "rent_id": self.rent_id,
            "photo_path": self.photo_path,
            "photo_type": self.photo_type,
            "uploaded_by_user_id": self.uploaded_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
