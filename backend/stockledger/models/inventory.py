from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Concession product as the ledger sees it.

    The catalog owns everything about a product except current_stock, which is
    a display copy of the ledger's latest closing balance. The ledger is the
    authoritative source; current_stock may lag if a sync fails.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_theater_name", "theater_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    theater_id = db.Column(db.Integer, nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)

    # Display copy of the ledger closing balance
    current_stock = db.Column(db.Integer, nullable=False, default=0)

    # Per-product low-stock threshold; falls back to STOCK_LOW_STOCK_THRESHOLD
    low_stock_alert = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} theater_id={self.theater_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "theater_id": self.theater_id,
            "name": self.name,
            "current_stock": self.current_stock,
            "low_stock_alert": self.low_stock_alert,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
