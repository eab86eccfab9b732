from __future__ import annotations

from ..extensions import db
from apexflow.time_utils import to_utc_z


class Firm(db.Model):
    """
    Group of customer records that share a displayed credit balance.

    Balances are never merged: each member keeps its own balance_cents and
    the firm total is computed when it is displayed.
    """
    __tablename__ = "firms"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text, nullable=True)
    gstin = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "name": self.name,
            "address": self.address,
            "gstin": self.gstin,
            "created_at": to_utc_z(self.created_at),
        }


class Customer(db.Model):
    """
    Customer with a signed credit balance.

    balance_cents < 0 means the customer owes money. The balance is only
    changed by customer_service.apply_delta.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_instance_name", "instance_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(db.String(64), nullable=True, index=True)
    firm_id = db.Column(db.Integer, db.ForeignKey("firms.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    nickname = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(128), nullable=True)
    address = db.Column(db.Text, nullable=True)
    market = db.Column(db.String(128), nullable=True)
    customer_type = db.Column(db.String(16), nullable=False, default="Owner")  # Owner, Agent
    status = db.Column(db.String(16), nullable=False, default="Approved")  # Approved, Pending, Rejected

    total_orders = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    firm = db.relationship("Firm", backref=db.backref("members", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "firm_id": self.firm_id,
            "name": self.name,
            "nickname": self.nickname,
            "phone": self.phone,
            "city": self.city,
            "state": self.state,
            "address": self.address,
            "market": self.market,
            "customer_type": self.customer_type,
            "status": self.status,
            "total_orders": self.total_orders,
            "balance_cents": self.balance_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
