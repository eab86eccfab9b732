from __future__ import annotations

from ..extensions import db
from apexflow.time_utils import to_utc_z, format_log_timestamp


class InventoryItem(db.Model):
    """
    Stock item identified by its brand/model/quality tuple.

    quantity is a stored, mutable on-hand count. It is only ever changed
    through inventory_service.apply_delta, which clamps it at zero.

    MATCHING:
    Order and return lines reference stock by inventory_item_id when they
    have one. Legacy lines carry only the identity tuple, which is matched
    case-insensitively after trimming whitespace.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.Index("ix_inventory_items_identity", "instance_id", "brand", "model", "quality"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(db.String(64), nullable=True, index=True)

    brand = db.Column(db.String(128), nullable=False)
    model = db.Column(db.String(128), nullable=False)
    quality = db.Column(db.String(128), nullable=False)
    category = db.Column(db.String(128), nullable=True)
    warehouse = db.Column(db.String(128), nullable=True)
    location = db.Column(db.String(128), nullable=True)

    price_cents = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="Active")  # Active, Inactive

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_name(self) -> str:
        return f"{self.brand} {self.model} {self.quality}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "brand": self.brand,
            "model": self.model,
            "quality": self.quality,
            "category": self.category,
            "warehouse": self.warehouse,
            "location": self.location,
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class InventoryLog(db.Model):
    """
    Stock movement audit row.

    ID SCHEME:
    - sale-{order_id}-{inventory_item_id}: deduction when an order is billed.
      Deleted by direct lookup when the order is rejected.
    - edit-*, bulk-*, gr-in-*, gr-out-*: corrections and goods-return movements.
      Never deleted automatically.

    quantity_change is signed: negative removes stock, positive adds it.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.Index("ix_inventory_logs_instance_created", "instance_id", "created_at"),
    )

    id = db.Column(db.String(160), primary_key=True)
    instance_id = db.Column(db.String(64), nullable=True, index=True)

    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, nullable=True, index=True)
    effect_kind = db.Column(db.String(16), nullable=False)  # sale, edit, bulk, gr-in, gr-out

    model_name = db.Column(db.String(255), nullable=True)
    shop_name = db.Column(db.String(255), nullable=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    current_stock = db.Column(db.Integer, nullable=True)
    remarks = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def movement(self) -> str:
        return "Added" if self.quantity_change > 0 else "Removed"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "item_id": self.item_id,
            "order_id": self.order_id,
            "effect_kind": self.effect_kind,
            "model_name": self.model_name,
            "shop_name": self.shop_name,
            "movement": self.movement,
            "quantity_change": self.quantity_change,
            "current_stock": self.current_stock,
            "remarks": self.remarks,
            "created_at": to_utc_z(self.created_at),
            "created_date": format_log_timestamp(self.created_at) if self.created_at else None,
        }


class PortalLink(db.Model):
    """
    Customer-facing catalog link.

    Each link whitelists the inventory items it shows. Items that run out of
    stock are removed from every whitelist by the visibility sync.
    """
    __tablename__ = "portal_links"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_portal_links_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(db.String(64), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(16), nullable=False)
    warehouse = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="Enabled")  # Enabled, Disabled

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    allowed_items = db.relationship(
        "PortalLinkItem",
        backref="link",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "title": self.title,
            "code": self.code,
            "warehouse": self.warehouse,
            "status": self.status,
            "allowed_item_ids": sorted(a.inventory_item_id for a in self.allowed_items),
            "created_at": to_utc_z(self.created_at),
        }


class PortalLinkItem(db.Model):
    """Whitelist row: inventory item visible through a portal link."""
    __tablename__ = "portal_link_items"
    __table_args__ = (
        db.UniqueConstraint("link_id", "inventory_item_id", name="uq_portal_link_items_link_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    link_id = db.Column(db.Integer, db.ForeignKey("portal_links.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
