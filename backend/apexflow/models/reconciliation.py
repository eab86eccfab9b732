from __future__ import annotations

import json

from ..extensions import db
from apexflow.time_utils import to_utc_z


class ReconciliationIntent(db.Model):
    """
    Write-ahead record of one reconciliation.

    The plan (balance delta, stock movements, log ids) is stored before any
    ledger is touched. Applying it and flipping status to APPLIED happen in a
    single DB transaction, so an intent is either fully applied or not at all.

    STATUS:
    - PENDING: recorded, not yet applied
    - APPLIED: all effects committed
    - FAILED:  apply raised; safe to retry
    - STALE:   order changed since the plan was computed; must be re-planned

    intent_key is content-addressed (order id, kind, order version, plan digest)
    so re-submitting the same plan against the same order version reuses the
    row instead of applying twice.
    """
    __tablename__ = "reconciliation_intents"
    __table_args__ = (
        db.UniqueConstraint("intent_key", name="uq_reconciliation_intents_key"),
        db.Index("ix_reconciliation_intents_status", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    intent_key = db.Column(db.String(160), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)  # BILL, REVERSE, ADJUST, FULFILL_ALL, BULK_PRICE
    status = db.Column(db.String(16), nullable=False, default="PENDING")
    order_version = db.Column(db.Integer, nullable=False)

    balance_delta_cents = db.Column(db.Integer, nullable=False, default=0)
    plan_json = db.Column(db.Text, nullable=False)
    error = db.Column(db.Text, nullable=True)

    actor_role = db.Column(db.String(32), nullable=True)
    actor_name = db.Column(db.String(128), nullable=True)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def plan(self) -> dict:
        return json.loads(self.plan_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "intent_key": self.intent_key,
            "order_id": self.order_id,
            "kind": self.kind,
            "status": self.status,
            "order_version": self.order_version,
            "balance_delta_cents": self.balance_delta_cents,
            "plan": self.plan,
            "error": self.error,
            "actor_role": self.actor_role,
            "actor_name": self.actor_name,
            "attempts": self.attempts,
            "created_at": to_utc_z(self.created_at),
            "applied_at": to_utc_z(self.applied_at) if self.applied_at else None,
        }
