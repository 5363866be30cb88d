from __future__ import annotations

from ..extensions import db
from atelier.time_utils import to_utc_z


# Garment statuses. Exactly one holds at any instant.
CLOTH_STATUS_READY_FOR_RENT = "ready_for_rent"
CLOTH_STATUS_RENTED = "rented"
CLOTH_STATUS_SOLD = "sold"
CLOTH_STATUS_DAMAGED = "damaged"
CLOTH_STATUS_REPAIRING = "repairing"
CLOTH_STATUS_DIE = "die"
CLOTH_STATUS_BURNED = "burned"
CLOTH_STATUS_SCRATCHED = "scratched"

CLOTH_STATUSES = [
    CLOTH_STATUS_READY_FOR_RENT,
    CLOTH_STATUS_RENTED,
    CLOTH_STATUS_SOLD,
    CLOTH_STATUS_DAMAGED,
    CLOTH_STATUS_REPAIRING,
    CLOTH_STATUS_DIE,
    CLOTH_STATUS_BURNED,
    CLOTH_STATUS_SCRATCHED,
]

# Garments in these statuses never re-enter rental or sale flows
TERMINAL_CLOTH_STATUSES = {
    CLOTH_STATUS_SOLD,
    CLOTH_STATUS_DIE,
    CLOTH_STATUS_BURNED,
    CLOTH_STATUS_SCRATCHED,
}


class Client(db.Model):
    """Customer placing orders. Managed elsewhere; referenced by orders."""
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    national_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "national_id": self.national_id,
            "created_at": to_utc_z(self.created_at),
        }


class Inventory(db.Model):
    """
    Stock location (branch, workshop or factory) that owns garments.

    Orders are placed against one inventory; every garment on the order
    must belong to it.
    """
    __tablename__ = "inventories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    entity_type = db.Column(db.String(16), nullable=False, default="branch")  # branch, workshop, factory
    entity_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "created_at": to_utc_z(self.created_at),
        }


class Cloth(db.Model):
    """
    A single physical garment.

    `status` is written only by the cloth status service as a side effect of
    order lifecycle transitions. `version_id` guards against lost updates
    between concurrent transitions touching the same garment.
    """
    __tablename__ = "clothes"
    __table_args__ = (
        db.Index("ix_clothes_inventory_status", "inventory_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(32), nullable=False, default=CLOTH_STATUS_READY_FOR_RENT, index=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventories.id"), nullable=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory = db.relationship("Inventory", backref=db.backref("clothes", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Cloth {self.id} {self.code} {self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "inventory_id": self.inventory_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
