# Overview: Flask API routes for the perishable-stock ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services import stock_ledger_service
from ..services.concurrency import ConcurrencyConflict
from ..time_utils import utcnow
from ..validation import ValidationError, ConflictError, NotFoundError

"""
Time semantics:
- Movement dates are calendar days ("YYYY-MM-DD"); a full ISO datetime is
  accepted and truncated to its day.
- Months are addressed with ?year=&month= query parameters.
- Entries dated after today are stored but left out of every response.
"""

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _month_args(*, default_to_current: bool = False) -> tuple[int, int]:
    year = request.args.get("year", type=int)
    month = request.args.get("month", type=int)
    if year is None and month is None and default_to_current:
        today = utcnow().date()
        return today.year, today.month
    if year is None or month is None:
        raise ValidationError("year and month query parameters are required")
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    if not 1900 <= year <= 9999:
        raise ValidationError("year is out of range")
    return year, month


def _error_response(e: Exception, action: str):
    db.session.rollback()
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, NotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, (ConflictError, ConcurrencyConflict)):
        return jsonify({"error": str(e)}), 409
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/<int:theater_id>/<int:product_id>")
def get_month_route(theater_id: int, product_id: int):
    """
    Month view for one product. Defaults to the current month.

    Runs the auto-expire sweep first, so the view always reflects expiries
    that came due since the last request.
    """
    try:
        year, month = _month_args(default_to_current=True)
        view = stock_ledger_service.get_month_view(
            theater_id=theater_id,
            product_id=product_id,
            year=year,
            month=month,
        )
    except Exception as e:
        return _error_response(e, "load stock month")
    return jsonify(view), 200


@stock_bp.post("/<int:theater_id>/<int:product_id>")
def record_movement_route(theater_id: int, product_id: int):
    """
    Record one day's movement.

    Request body:
    {
        "date": "2024-03-01",
        "type": "ADDED" | "RETURNED" | "SOLD" | "EXPIRED" | "DAMAGED" | "ADJUSTMENT",
        "quantity": int,
        "expire_date": "2024-03-05",   (ADDED/RETURNED only)
        "batch_number": str,
        "notes": str,
        "used_stock": int, "damage_stock": int, "expired_old_stock": int
    }

    Returns:
        201: Movement recorded
        400: Invalid request
        409: Day already holds a different entry
    """
    payload = request.get_json(silent=True)
    try:
        result = stock_ledger_service.record_movement(
            theater_id=theater_id,
            product_id=product_id,
            payload=payload,
        )
    except Exception as e:
        return _error_response(e, "record stock movement")
    return jsonify(result.to_dict()), 201


@stock_bp.put("/<int:theater_id>/<int:product_id>/<int:entry_id>")
def update_movement_route(theater_id: int, product_id: int, entry_id: int):
    payload = request.get_json(silent=True)
    try:
        year, month = _month_args()
        result = stock_ledger_service.update_movement(
            theater_id=theater_id,
            product_id=product_id,
            year=year,
            month=month,
            entry_id=entry_id,
            patch=payload,
        )
    except Exception as e:
        return _error_response(e, "update stock movement")
    return jsonify(result.to_dict()), 200


@stock_bp.delete("/<int:theater_id>/<int:product_id>/<int:entry_id>")
def delete_movement_route(theater_id: int, product_id: int, entry_id: int):
    try:
        year, month = _month_args()
        result = stock_ledger_service.delete_movement(
            theater_id=theater_id,
            product_id=product_id,
            year=year,
            month=month,
            entry_id=entry_id,
        )
    except Exception as e:
        return _error_response(e, "delete stock movement")
    return jsonify(result.to_dict()), 200


@stock_bp.post("/<int:theater_id>/<int:product_id>/regenerate")
def regenerate_month_route(theater_id: int, product_id: int):
    """Rebuild the month's auto-generated entries from its real entries."""
    try:
        year, month = _month_args()
        result = stock_ledger_service.regenerate_month(
            theater_id=theater_id,
            product_id=product_id,
            year=year,
            month=month,
        )
    except Exception as e:
        return _error_response(e, "regenerate stock month")
    return jsonify(result.to_dict()), 200


@stock_bp.delete("/<int:theater_id>/<int:product_id>/clear-month")
def clear_month_route(theater_id: int, product_id: int):
    try:
        year, month = _month_args()
        result = stock_ledger_service.clear_month(
            theater_id=theater_id,
            product_id=product_id,
            year=year,
            month=month,
        )
    except Exception as e:
        return _error_response(e, "clear stock month")
    return jsonify(result.to_dict()), 200


@stock_bp.post("/<int:theater_id>/<int:product_id>/sweep")
def sweep_route(theater_id: int, product_id: int):
    try:
        summary = stock_ledger_service.run_sweep(theater_id=theater_id, product_id=product_id)
    except Exception as e:
        return _error_response(e, "sweep stock ledger")
    return jsonify(summary), 200
