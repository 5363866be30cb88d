# Overview: Append-only order and garment history, written inside the caller's transaction.

"""
History invariants

- Append-only: rows are never updated or deleted.
- Written in the same DB transaction as the change they record; no commit here.
- No business logic: callers decide what happened, this module only records it.
"""

from __future__ import annotations

from ..extensions import db
from ..models import OrderHistory, ClothHistory


def _as_text(value) -> str | None:
    if value is None:
        return None
    return str(value)[:255]


def log_order_event(
    order_id: int,
    change_type: str,
    *,
    field_changed: str | None = None,
    old_value=None,
    new_value=None,
    description: str | None = None,
    user_id: int | None = None,
) -> OrderHistory:
    entry = OrderHistory(
        order_id=order_id,
        change_type=change_type,
        field_changed=field_changed,
        old_value=_as_text(old_value),
        new_value=_as_text(new_value),
        description=description,
        user_id=user_id,
    )
    db.session.add(entry)
    return entry


def log_status_change(order_id: int, old_status: str, new_status: str, user_id: int | None = None) -> OrderHistory | None:
    if old_status == new_status:
        return None
    return log_order_event(
        order_id,
        "status_changed",
        field_changed="status",
        old_value=old_status,
        new_value=new_status,
        user_id=user_id,
    )


def record_cloth_event(
    cloth_id: int,
    action: str,
    *,
    old_status: str | None = None,
    new_status: str | None = None,
    order_id: int | None = None,
    user_id: int | None = None,
    notes: str | None = None,
) -> ClothHistory:
    entry = ClothHistory(
        cloth_id=cloth_id,
        order_id=order_id,
        action=action,
        old_status=old_status,
        new_status=new_status,
        user_id=user_id,
        notes=_as_text(notes),
    )
    db.session.add(entry)
    return entry


def get_order_history(order_id: int) -> list[OrderHistory]:
    return db.session.query(OrderHistory).filter_by(
        order_id=order_id
    ).order_by(OrderHistory.id).all()


def get_cloth_history(cloth_id: int) -> list[ClothHistory]:
    return db.session.query(ClothHistory).filter_by(
        cloth_id=cloth_id
    ).order_by(ClothHistory.id).all()
