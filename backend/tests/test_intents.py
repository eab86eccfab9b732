# Overview: Pytest coverage for reconciliation intents; failure atomicity, retry and staleness.

"""
Reconciliation Intent Tests

- A failed apply leaves no partial ledger effects and a FAILED intent
- Retrying a FAILED intent applies it exactly once
- An intent whose order moved on is STALE and is never applied
"""

import pytest
from sqlalchemy import inspect

from apexflow.extensions import db
from apexflow.models import Customer, InventoryItem, InventoryLog, Order, ReconciliationIntent
from apexflow.services import inventory_service, reconciliation_service
from apexflow.services.concurrency import StaleOrderError
from apexflow.services.reconciliation_service import (
    INTENT_APPLIED,
    INTENT_FAILED,
    INTENT_STALE,
    KIND_BILL,
    ReconciliationError,
)


@pytest.fixture
def packed_order(db_session, make_customer, make_stock, make_order, advance):
    customer = make_customer()
    stock = make_stock(quantity=50)
    order = make_order(customer, [(stock, 10, 100)])
    advance(order, "packed")
    return order, customer, stock


def _boom(item_id, quantity_delta):
    raise RuntimeError("stock ledger unavailable")


def _check(order, admin):
    return reconciliation_service.update_status(
        order.id, "checked", admin,
        explicit_items=[{"id": order.items[0].id, "fulfill_qty": 10}],
    )


class TestIntentFailure:
    """Apply failures roll back everything."""

    def test_failure_leaves_no_partial_effects(self, db_session, admin, packed_order, monkeypatch):
        order, customer, stock = packed_order
        monkeypatch.setattr(inventory_service, "apply_delta", _boom)

        with pytest.raises(ReconciliationError) as exc_info:
            _check(order, admin)

        intent = db_session.get(ReconciliationIntent, exc_info.value.intent_id)
        assert intent.status == INTENT_FAILED
        assert intent.kind == KIND_BILL
        assert "stock ledger unavailable" in intent.error
        assert intent.attempts == 1

        assert db_session.get(Customer, customer.id).balance_cents == 0
        assert db_session.get(InventoryItem, stock.id).quantity == 50
        assert db_session.get(Order, order.id).status == "packed"
        assert db_session.get(Order, order.id).billed_amount_cents == 0
        assert db_session.query(InventoryLog).count() == 0

    def test_retry_applies_failed_intent_once(self, db_session, admin, packed_order, monkeypatch):
        order, customer, stock = packed_order
        monkeypatch.setattr(inventory_service, "apply_delta", _boom)
        with pytest.raises(ReconciliationError) as exc_info:
            _check(order, admin)
        intent_id = exc_info.value.intent_id
        monkeypatch.undo()

        result = reconciliation_service.retry_intent(intent_id)

        assert result.intent.status == INTENT_APPLIED
        assert result.order.status == "checked"
        assert db_session.get(Customer, customer.id).balance_cents == -1000
        assert db_session.get(InventoryItem, stock.id).quantity == 40

        again = reconciliation_service.retry_intent(intent_id)

        assert again.messages == ["Already applied"]
        assert db_session.get(Customer, customer.id).balance_cents == -1000
        assert db_session.get(InventoryItem, stock.id).quantity == 40

    def test_repeating_the_request_reuses_the_intent(self, db_session, admin, packed_order, monkeypatch):
        order, customer, stock = packed_order
        monkeypatch.setattr(inventory_service, "apply_delta", _boom)
        with pytest.raises(ReconciliationError) as exc_info:
            _check(order, admin)
        monkeypatch.undo()

        result = _check(order, admin)

        assert result.intent.id == exc_info.value.intent_id
        assert db_session.query(ReconciliationIntent).count() == 1
        assert db_session.get(Customer, customer.id).balance_cents == -1000

    def test_list_intents_by_status(self, db_session, admin, packed_order, monkeypatch):
        order, _, _ = packed_order
        monkeypatch.setattr(inventory_service, "apply_delta", _boom)
        with pytest.raises(ReconciliationError):
            _check(order, admin)

        assert len(reconciliation_service.list_intents(INTENT_FAILED)) == 1
        assert reconciliation_service.list_intents(INTENT_APPLIED) == []


class TestStaleIntents:
    """Plans built on an old order version are never applied."""

    def test_stale_intent_is_not_applied(self, db_session, admin, packed_order, monkeypatch):
        order, customer, stock = packed_order
        monkeypatch.setattr(inventory_service, "apply_delta", _boom)
        with pytest.raises(ReconciliationError) as exc_info:
            _check(order, admin)
        intent_id = exc_info.value.intent_id
        monkeypatch.undo()

        # Any committed edit moves the order to a new version
        reconciliation_service.update_item(order.id, order.items[0].id, "ordered_qty", 12, admin)

        with pytest.raises(StaleOrderError):
            reconciliation_service.retry_intent(intent_id)

        assert db_session.get(ReconciliationIntent, intent_id).status == INTENT_STALE
        assert db_session.get(Customer, customer.id).balance_cents == 0
        assert db_session.get(InventoryItem, stock.id).quantity == 50

        with pytest.raises(StaleOrderError):
            reconciliation_service.retry_intent(intent_id)

    def test_billed_intent_records_plan(self, db_session, admin, packed_order):
        order, customer, stock = packed_order

        result = _check(order, admin)

        plan = result.intent.plan
        assert plan["balance_delta_cents"] == -1000
        assert plan["customer_id"] == customer.id
        assert plan["movements"][0]["inventory_item_id"] == stock.id
        assert plan["movements"][0]["quantity_delta"] == -10
        assert result.intent.order_version < result.order.version_id


class TestIntentSchema:
    """The intents table builds with one index per name."""

    def test_status_index_covers_created_at(self, db_session):
        indexes = inspect(db.engine).get_indexes("reconciliation_intents")
        by_name = {index["name"]: index["column_names"] for index in indexes}

        assert len(by_name) == len(indexes)
        assert by_name["ix_reconciliation_intents_status"] == ["status", "created_at"]

    def test_every_model_index_exists(self, db_session):
        inspector = inspect(db.engine)
        names = [index["name"] for table in inspector.get_table_names() for index in inspector.get_indexes(table)]

        assert "ix_orders_instance_status" in names
        assert "ix_reconciliation_intents_order_id" in names

        assert len(names) == len(set(names))
