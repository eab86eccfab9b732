from __future__ import annotations

from ..extensions import db
from apexflow.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order moving through the fulfillment pipeline.

    STATUS PIPELINE:
        fresh -> assigned -> packed -> checked -> dispatched
        any non-terminal -> rejected (admin only)

    Orders in status 'Payment' or 'Return' are not physical orders. They are
    ledger entries written when a manual payment or a goods return changes a
    customer balance, so the customer ledger reads from a single table.

    BILLING BASELINE:
    billed_amount_cents is the amount currently reflected in the customer's
    balance. It is non-zero only while status is 'checked' or 'dispatched' and
    is the baseline every post-billing edit is reconciled against.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_instance_status", "instance_id", "status"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)
    instance_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="fresh", index=True)

    # customer_id is authoritative; name/subtext only feed the legacy text lookup
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_subtext = db.Column(db.String(255), nullable=True)

    warehouse = db.Column(db.String(128), nullable=True)
    order_mode = db.Column(db.String(16), nullable=False, default="Offline")  # Online, Offline, Cash
    invoice_status = db.Column(db.String(16), nullable=False, default="Pending")

    assigned_to_id = db.Column(db.Integer, db.ForeignKey("staff_members.id"), nullable=True)
    assigned_to_name = db.Column(db.String(128), nullable=True)
    checked_by = db.Column(db.String(128), nullable=True)
    cargo_name = db.Column(db.String(128), nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    # All amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    billed_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def fulfilled_total_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "instance_id": self.instance_id,
            "status": self.status,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_subtext": self.customer_subtext,
            "warehouse": self.warehouse,
            "order_mode": self.order_mode,
            "invoice_status": self.invoice_status,
            "assigned_to_id": self.assigned_to_id,
            "assigned_to_name": self.assigned_to_name,
            "checked_by": self.checked_by,
            "cargo_name": self.cargo_name,
            "remarks": self.remarks,
            "total_amount_cents": self.total_amount_cents,
            "billed_amount_cents": self.billed_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Individual line on an order.

    ordered_qty / display_price_cents are what the customer asked for at
    catalog price. fulfill_qty / final_price_cents are what is actually
    shipped and billed; only these two feed the ledgers.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Optional hard link to stock; identity tuple is the fallback match
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True, index=True)
    brand = db.Column(db.String(128), nullable=False)
    model = db.Column(db.String(128), nullable=False)
    quality = db.Column(db.String(128), nullable=False)
    category = db.Column(db.String(128), nullable=True)

    ordered_qty = db.Column(db.Integer, nullable=False, default=0)
    fulfill_qty = db.Column(db.Integer, nullable=False, default=0)
    display_price_cents = db.Column(db.Integer, nullable=False, default=0)
    final_price_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def line_total_cents(self) -> int:
        return (self.fulfill_qty or 0) * (self.final_price_cents or 0)

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.brand, self.model, self.quality)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "inventory_item_id": self.inventory_item_id,
            "brand": self.brand,
            "model": self.model,
            "quality": self.quality,
            "category": self.category,
            "ordered_qty": self.ordered_qty,
            "fulfill_qty": self.fulfill_qty,
            "display_price_cents": self.display_price_cents,
            "final_price_cents": self.final_price_cents,
            "line_total_cents": self.line_total_cents,
        }
