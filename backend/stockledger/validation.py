from __future__ import annotations
from datetime import date

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Date, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import to_calendar_day
from .ledger.entries import AUTO_NOTE_PREFIX, BATCH_KINDS, KIND_ADJUSTMENT, VALID_KINDS


# Largest single movement accepted; guards against typos like 10000000
MAX_MOVEMENT_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., a second real entry on the same day)."""


class NotFoundError(ValueError):
    """404-level missing month or entry."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - field_map: payload key -> model column key, for API names that differ from columns
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    field_map: dict[str, str] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any, name: str):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{name} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{name} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{name} must be an integer")
        # Reject floats explicitly
        if isinstance(value, float):
            raise ValidationError(f"{name} must be an integer, not a decimal")
        # Other types
        raise ValidationError(f"{name} must be an integer")

    # Calendar days (accept "YYYY-MM-DD" or a full ISO datetime)
    if isinstance(coltype, Date):
        if not isinstance(value, (str, date)):
            raise ValidationError(f"{name} must be an ISO-8601 date")
        try:
            day = to_calendar_day(value)
        except ValueError:
            raise ValidationError(f"{name} must be an ISO-8601 date")
        if day is None:
            raise ValidationError(f"{name} must be an ISO-8601 date")
        return day

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by model column names.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if policy.field_map.get(k, k) not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        key = policy.field_map.get(k, k)
        col = cols[key]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[key] = None
            continue

        val = _coerce_value(col, raw, k)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        # Optional text fields: blank means "not supplied"
        if isinstance(val, str) and val == "" and col.nullable:
            val = None

        patch[key] = val

    return patch


def enforce_rules_stock_movement(fields: dict) -> None:
    """
    Business rules for a complete movement (create payload, or an existing
    entry merged with an update patch). Keys are model column names.
    """
    kind = fields.get("kind")
    if kind is None or kind == "":
        raise ValidationError("type is required")
    kind = str(kind).upper()
    if kind not in VALID_KINDS:
        raise ValidationError(f"type must be one of {', '.join(sorted(VALID_KINDS))}")
    fields["kind"] = kind

    if fields.get("entry_date") is None:
        raise ValidationError("date is required")

    quantity = fields.get("quantity")
    if quantity is None:
        raise ValidationError("quantity is required")
    if kind == KIND_ADJUSTMENT:
        if quantity == 0:
            raise ValidationError("quantity must be non-zero for ADJUSTMENT")
    elif quantity <= 0:
        raise ValidationError(f"quantity must be > 0 for {kind}")
    if abs(quantity) > MAX_MOVEMENT_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_MOVEMENT_QUANTITY}")

    for name in ("reported_used_stock", "reported_damage_stock", "reported_expired_old_stock"):
        value = fields.get(name)
        if value is None:
            continue
        label = name.replace("reported_", "")
        if kind not in BATCH_KINDS:
            raise ValidationError(f"{label} can only be reported with ADDED or RETURNED")
        if value < 0:
            raise ValidationError(f"{label} must be >= 0")

    expire_date = fields.get("expire_date")
    if expire_date is not None:
        if kind not in BATCH_KINDS:
            raise ValidationError("expire_date can only be set on ADDED or RETURNED")
        if expire_date < fields["entry_date"]:
            raise ValidationError("expire_date cannot be before the entry date")

    notes = fields.get("notes")
    if notes and notes.startswith(AUTO_NOTE_PREFIX):
        raise ValidationError(f"notes cannot start with the reserved {AUTO_NOTE_PREFIX!r} prefix")
