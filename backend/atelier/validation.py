from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable

from atelier.time_utils import parse_iso_date, parse_iso_datetime


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Percentages are carried in basis points (10000 = 100%)
MAX_PERCENTAGE_BPS = 10_000


class DomainError(ValueError):
    """
    Base class for caller-facing business-rule failures.

    Carries a machine-readable kind plus human-readable reasons. The HTTP
    layer answers with `http_status` and `to_dict()`.
    """
    kind = "domain"
    http_status = 400

    def __init__(self, message: str, details: Iterable[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class ValidationError(DomainError):
    """400-level input problem."""
    kind = "validation"
    http_status = 400


class PreconditionError(DomainError):
    """422-level lifecycle gate not satisfied (custody, payments, returns)."""
    kind = "precondition"
    http_status = 422


class ConflictError(DomainError):
    """409-level conflict with existing state (overlapping rental, sold garment)."""
    kind = "conflict"
    http_status = 409


class NotFoundError(DomainError):
    """404-level missing or unassociated record."""
    kind = "not_found"
    http_status = 404


class InvalidStateError(DomainError):
    """409-level action not allowed from the record's current status."""
    kind = "invalid_state"
    http_status = 409


def coerce_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion.

    Rejects booleans, floats, decimal strings and scientific notation.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return result


def coerce_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    cents = coerce_int(value, field, minimum=0)
    if not allow_zero and cents == 0:
        raise ValidationError(f"{field} must be positive")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE_CENTS} cents")
    return cents


def coerce_date(value: Any, field: str, *, required: bool = True) -> date | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    try:
        parsed = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date")
    if parsed is None and required:
        raise ValidationError(f"{field} is required")
    return parsed


def coerce_datetime(value: Any, field: str) -> datetime | None:
    """Optional ISO-8601 timestamp; None/empty passes through."""
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = list(choices)
    if value not in allowed:
        raise ValidationError(f"Invalid {field}: {value}. Must be one of {allowed}")
    return value


def validate_discount(discount_type: str | None, discount_value: Any, field: str = "discount") -> tuple[str | None, int]:
    """
    Normalize a (type, value) discount pair.

    - None type means no discount (value forced to 0)
    - "percentage" values are basis points, capped at 10000
    - "fixed" values are cents
    """
    if discount_type in (None, ""):
        return None, 0
    require_choice(discount_type, f"{field}_type", ("percentage", "fixed"))
    value = coerce_int(discount_value if discount_value is not None else 0, f"{field}_value", minimum=0)
    if discount_type == "percentage" and value > MAX_PERCENTAGE_BPS:
        raise ValidationError(f"{field}_value cannot exceed {MAX_PERCENTAGE_BPS} basis points")
    if discount_type == "fixed" and value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field}_value exceeds maximum of {MAX_PRICE_CENTS} cents")
    return discount_type, value
