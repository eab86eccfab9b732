from __future__ import annotations

from ..extensions import db
from apexflow.time_utils import to_utc_z


class GoodsReturn(db.Model):
    """
    Goods return (GR) document.

    Finalizing a GR credits the customer and puts the returned pieces back
    into stock. Returns are final on creation; there is no approval step.

    MODES:
    - LINES: itemized return, stock restored per line
    - DIRECT: amount-only credit adjustment, no stock movement

    Deleting a GR removes this record (and its ledger entry) only. The
    balance credit and restored stock stay where they are.
    """
    __tablename__ = "goods_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_goods_returns_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(db.String(64), nullable=True, index=True)
    return_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    ledger_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    mode = db.Column(db.String(16), nullable=False, default="LINES")
    total_credit_cents = db.Column(db.Integer, nullable=False, default=0)
    remarks = db.Column(db.Text, nullable=True)

    created_by_name = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer")
    lines = db.relationship(
        "GoodsReturnLine",
        backref="goods_return",
        lazy=True,
        order_by="GoodsReturnLine.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "return_number": self.return_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "ledger_order_id": self.ledger_order_id,
            "mode": self.mode,
            "total_credit_cents": self.total_credit_cents,
            "remarks": self.remarks,
            "created_by_name": self.created_by_name,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class GoodsReturnLine(db.Model):
    """Returned pieces of one stock item at the credited unit price."""
    __tablename__ = "goods_return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("goods_returns.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True)

    brand = db.Column(db.String(128), nullable=False)
    model = db.Column(db.String(128), nullable=False)
    quality = db.Column(db.String(128), nullable=False)
    category = db.Column(db.String(128), nullable=True)
    warehouse = db.Column(db.String(128), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "inventory_item_id": self.inventory_item_id,
            "brand": self.brand,
            "model": self.model,
            "quality": self.quality,
            "category": self.category,
            "warehouse": self.warehouse,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class StockRoomRemoval(db.Model):
    """
    Physical removal of returned goods from the stock room
    (e.g. sent back to the manufacturer or a repair vendor).

    identity_key is the upper-cased "BRAND-MODEL-QUALITY" key the stock-room
    projection groups by.
    """
    __tablename__ = "stock_room_removals"
    __table_args__ = (
        db.Index("ix_stock_room_removals_instance_key", "instance_id", "identity_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(db.String(64), nullable=True, index=True)
    identity_key = db.Column(db.String(400), nullable=False)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    remarks = db.Column(db.Text, nullable=True)
    created_by_name = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "identity_key": self.identity_key,
            "inventory_item_id": self.inventory_item_id,
            "quantity": self.quantity,
            "remarks": self.remarks,
            "created_by_name": self.created_by_name,
            "created_at": to_utc_z(self.created_at),
        }
