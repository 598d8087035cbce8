from __future__ import annotations

from ..extensions import db


class MonthlyStock(db.Model):
    """
    Stored form of one MonthlyLedger aggregate.

    KEY: (theater_id, product_id, year, month) is unique; a concurrent lazy
    create of the same month fails on this constraint.

    CONCURRENCY: version_id is SQLAlchemy's optimistic lock. Every save bumps
    it; a save against a stale version raises StaleDataError.

    The total_* and closing_balance columns are derived on every save and
    exist for readers (reports, exports) that do not load entries.
    """
    __tablename__ = "monthly_stock"
    __table_args__ = (
        db.UniqueConstraint("theater_id", "product_id", "year", "month", name="uq_monthly_stock_key"),
        db.Index("ix_monthly_stock_theater_period", "theater_id", "year", "month"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    theater_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)

    # Opening balance inherited from the previous month
    carry_forward = db.Column(db.Integer, nullable=False, default=0)

    total_stock_added = db.Column(db.Integer, nullable=False, default=0)
    total_used_stock = db.Column(db.Integer, nullable=False, default=0)
    total_expired_stock = db.Column(db.Integer, nullable=False, default=0)
    total_expired_old_stock = db.Column(db.Integer, nullable=False, default=0)
    total_damage_stock = db.Column(db.Integer, nullable=False, default=0)
    closing_balance = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    entries = db.relationship(
        "StockEntry",
        back_populates="monthly_stock",
        cascade="all, delete-orphan",
        order_by="StockEntry.entry_date",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<MonthlyStock id={self.id} theater_id={self.theater_id} product_id={self.product_id} "
            f"{self.year}-{self.month:02d}>"
        )


class StockEntry(db.Model):
    """
    One ledger day inside a MonthlyStock.

    At most one row per (monthly_stock_id, entry_date). Rows whose notes start
    with "Auto:" were synthesized by the expiry expander.
    """
    __tablename__ = "stock_entries"
    __table_args__ = (
        db.UniqueConstraint("monthly_stock_id", "entry_date", name="uq_stock_entries_month_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    monthly_stock_id = db.Column(
        db.Integer,
        db.ForeignKey("monthly_stock.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    entry_date = db.Column(db.Date, nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    carry_forward = db.Column(db.Integer, nullable=False, default=0)
    stock_added = db.Column(db.Integer, nullable=False, default=0)
    used_stock = db.Column(db.Integer, nullable=False, default=0)
    expired_old_stock = db.Column(db.Integer, nullable=False, default=0)
    expired_stock = db.Column(db.Integer, nullable=False, default=0)
    damage_stock = db.Column(db.Integer, nullable=False, default=0)
    balance = db.Column(db.Integer, nullable=False, default=0)

    # Same-day figures reported with an ADDED/RETURNED movement; NULL = not reported
    reported_used_stock = db.Column(db.Integer, nullable=True)
    reported_damage_stock = db.Column(db.Integer, nullable=True)
    reported_expired_old_stock = db.Column(db.Integer, nullable=True)

    # batch_key -> quantity written off on this day
    expiry_deductions = db.Column(db.JSON, nullable=False, default=dict)

    expire_date = db.Column(db.Date, nullable=True)
    batch_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    monthly_stock = db.relationship("MonthlyStock", back_populates="entries")

    def __repr__(self) -> str:
        return f"<StockEntry id={self.id} {self.entry_date} {self.kind} qty={self.quantity} balance={self.balance}>"
