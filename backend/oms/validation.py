from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Optional


# Upper bound for a single order line; prevents nonsensical quantities from typos
MAX_LINE_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level conflict (e.g., duplicate order number); the caller may resubmit."""


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def parse_quantity(value: Any, field: str = "quantity") -> int:
    qty = coerce_int(value, field)
    if qty <= 0:
        raise ValidationError(f"{field} must be > 0")
    if qty > MAX_LINE_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_LINE_QUANTITY}")
    return qty


def parse_business_date(
    value: Any,
    field: str,
    *,
    to_business_date: Optional[Callable[[datetime], date]] = None,
) -> Optional[date]:
    """
    Normalize a date-ish input to a business date.

    - None -> None
    - date -> itself
    - datetime -> truncated to its business date (via to_business_date when given)
    - "YYYY-MM-DD" or an ISO datetime string -> its date part
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if to_business_date is not None:
            return to_business_date(value)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return date.fromisoformat(s[:10])
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date")
    raise ValidationError(f"{field} must be a date")


def parse_order_lines(items: Any) -> list[dict]:
    """
    Validate and normalize order line input.

    Each line is a mapping with product_id, quantity and optional notes.
    Returns a new list of cleaned dicts in input order.
    """
    if not items:
        raise ValidationError("Order must have at least one item")
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list")

    cleaned = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index} must be an object")
        if raw.get("product_id") is None:
            raise ValidationError(f"Item {index}: product_id is required")
        product_id = coerce_int(raw["product_id"], f"items[{index}].product_id")
        quantity = parse_quantity(raw.get("quantity"), f"items[{index}].quantity")
        notes = raw.get("notes")
        cleaned.append({
            "product_id": product_id,
            "quantity": quantity,
            "notes": str(notes).strip() if notes else None,
        })
    return cleaned
