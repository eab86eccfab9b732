from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# 99,99,999.99 in the store currency; keeps prices and payments sane
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(LookupError):
    """404-level missing record."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "instance_id", "firm_id", "name", "nickname", "phone", "city", "state",
        "address", "market", "customer_type", "balance_cents",
    },
    required_on_create={"name"},
)

INVENTORY_POLICY = ModelValidationPolicy(
    writable_fields={
        "instance_id", "brand", "model", "quality", "category", "warehouse",
        "location", "price_cents", "quantity",
    },
    required_on_create={"brand", "model", "quality"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer parsing: rejects floats, decimals and scientific notation."""
    # bool is a subclass of int
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool = False,
) -> dict:
    """
    Validates + normalizes incoming JSON against the model's columns and a
    policy allowlist. Returns a cleaned dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def require_json(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_amount_cents(value: Any, field: str = "amount_cents", *, allow_zero: bool = False) -> int:
    amount = coerce_int(value, field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return amount


def parse_order_lines(raw_items: Any) -> list[dict]:
    """
    Normalize order line payloads.

    Each line needs brand, model and quality; quantities and prices default
    to 0 and must not be negative.
    """
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")

    lines = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        line = {}
        for key in ("brand", "model", "quality"):
            value = str(raw.get(key) or "").strip()
            if not value:
                raise ValidationError(f"items[{idx}].{key} is required")
            line[key] = value
        line["category"] = raw.get("category")
        for key in ("ordered_qty", "fulfill_qty", "display_price_cents", "final_price_cents"):
            if key == "final_price_cents" and raw.get(key) is None:
                # Falls back to display_price_cents when the order is created
                continue
            value = coerce_int(raw.get(key, 0), f"items[{idx}].{key}")
            if value < 0:
                raise ValidationError(f"items[{idx}].{key} must be >= 0")
            line[key] = value
        if raw.get("inventory_item_id") is not None:
            line["inventory_item_id"] = coerce_int(raw["inventory_item_id"], f"items[{idx}].inventory_item_id")
        lines.append(line)
    return lines


def parse_item_overrides(raw_items: Any) -> list[dict] | None:
    """
    Freshest item values sent with a status change: [{id, fulfill_qty?, final_price_cents?}].
    Negative values are clamped to 0.
    """
    if raw_items is None:
        return None
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")

    overrides = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict) or raw.get("id") is None:
            raise ValidationError(f"items[{idx}] must be an object with an id")
        entry = {"id": coerce_int(raw["id"], f"items[{idx}].id")}
        for key in ("fulfill_qty", "final_price_cents"):
            if raw.get(key) is not None:
                entry[key] = max(0, coerce_int(raw[key], f"items[{idx}].{key}"))
        overrides.append(entry)
    return overrides
