# Overview: Product collaborator; keeps the catalog's displayed current stock in step with the ledger.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product


class ProductSyncError(Exception):
    """Raised when a product's current stock cannot be updated."""
    pass


class DownstreamSyncWarning(Warning):
    """
    Non-fatal: the ledger write succeeded but the product's displayed stock
    could not be updated. The ledger stays authoritative.
    """

    def __init__(self, product_id: int, theater_id: int, balance: int, reason: str):
        self.product_id = product_id
        self.theater_id = theater_id
        self.balance = balance
        self.reason = reason
        super().__init__(
            f"current stock for product {product_id} not updated to {balance}: {reason}"
        )

    def to_dict(self) -> dict:
        return {
            "type": "downstream_sync",
            "product_id": self.product_id,
            "theater_id": self.theater_id,
            "balance": self.balance,
            "message": str(self),
        }


def get_product(product_id: int, theater_id: int) -> Product | None:
    return db.session.query(Product).filter_by(id=product_id, theater_id=theater_id).first()


def set_current_stock(product_id: int, theater_id: int, balance: int) -> Product:
    """
    Copy the ledger's closing balance onto the product and commit.

    Raises ProductSyncError when the product is missing or the write fails.
    """
    product = get_product(product_id, theater_id)
    if product is None:
        raise ProductSyncError(f"product {product_id} not found in theater {theater_id}")

    if product.current_stock == balance:
        return product

    product.current_stock = max(0, balance)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise ProductSyncError(str(exc)) from exc
    return product


def sync_current_stock(product_id: int, theater_id: int, balance: int) -> DownstreamSyncWarning | None:
    """
    Best-effort wrapper around set_current_stock for use after a ledger commit.

    Failures are logged and returned as a warning instead of raised.
    """
    try:
        set_current_stock(product_id, theater_id, balance)
    except ProductSyncError as exc:
        current_app.logger.warning(
            "Failed to update current stock for product %s (theater %s): %s",
            product_id, theater_id, exc,
        )
        return DownstreamSyncWarning(product_id, theater_id, balance, str(exc))
    return None


def low_stock_threshold(product: Product | None) -> int:
    if product is not None and product.low_stock_alert is not None:
        return product.low_stock_alert
    return current_app.config.get("STOCK_LOW_STOCK_THRESHOLD", 5)


def is_low_stock(balance: int, threshold: int) -> bool:
    """Low means some stock is left but no more than the alert level."""
    return 0 < balance <= threshold
