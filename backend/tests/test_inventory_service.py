# Overview: Pytest coverage for the stock ledger, movement log ids and portal visibility.

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query

from apexflow.extensions import db
from apexflow.models import Customer, InventoryItem, InventoryLog, PortalLinkItem
from apexflow.services import audit_log_service, inventory_service
from apexflow.services.inventory_service import InventoryError


class TestStockLedger:
    """apply_delta is the only writer of InventoryItem.quantity."""

    def test_signed_deltas(self, db_session, make_stock):
        item = make_stock(quantity=10)

        assert inventory_service.apply_delta(item.id, -4) == 6
        assert inventory_service.apply_delta(item.id, 3) == 9
        db.session.commit()
        assert item.quantity == 9

    def test_clamps_at_zero(self, db_session, make_stock):
        item = make_stock(quantity=2)

        assert inventory_service.apply_delta(item.id, -5) == 0
        db.session.commit()
        assert item.quantity == 0

    def test_unknown_item(self, db_session):
        with pytest.raises(InventoryError):
            inventory_service.apply_delta(99999, 1)

    def test_create_rejects_negative_quantity(self, db_session):
        with pytest.raises(InventoryError):
            inventory_service.create_inventory_item(brand="X", model="M1", quality="OG", quantity=-1)


class TestIdentityMatching:
    """Lines without an inventory id fall back to the identity tuple."""

    def test_case_and_whitespace_insensitive(self, db_session, make_stock):
        item = make_stock(brand="Samsung", model="A52", quality="OG")

        found = inventory_service.find_inventory_item("main", "  SAMSUNG", "a52 ", "og")

        assert found.id == item.id

    def test_scoped_by_instance(self, db_session, make_stock):
        make_stock(brand="Samsung", model="A52", quality="OG", instance_id="other")

        assert inventory_service.find_inventory_item("main", "Samsung", "A52", "OG") is None

    def test_identity_key(self):
        assert inventory_service.identity_key(" samsung", "a52", "Og ") == "SAMSUNG-A52-OG"


class TestPortalVisibility:
    """Out-of-stock items disappear from every portal whitelist."""

    def test_zero_stock_removes_item_from_all_links(self, db_session, make_stock):
        item = make_stock(quantity=1)
        other = make_stock(model="M2", quantity=5)
        first = inventory_service.create_portal_link("Retail")
        second = inventory_service.create_portal_link("Wholesale")
        for link in (first, second):
            inventory_service.allow_item_on_link(link.id, item.id)
            inventory_service.allow_item_on_link(link.id, other.id)

        inventory_service.apply_delta(item.id, -1)
        db.session.commit()

        assert db_session.query(PortalLinkItem).filter_by(inventory_item_id=item.id).count() == 0
        assert [i.id for i in inventory_service.visible_items_for_link(first.code)] == [other.id]
        assert [i.id for i in inventory_service.visible_items_for_link(second.code)] == [other.id]

    def test_restock_does_not_restore_visibility(self, db_session, make_stock):
        item = make_stock(quantity=1)
        link = inventory_service.create_portal_link("Retail")
        inventory_service.allow_item_on_link(link.id, item.id)

        inventory_service.apply_delta(item.id, -1)
        inventory_service.apply_delta(item.id, 5)
        db.session.commit()

        assert inventory_service.visible_items_for_link(link.code) == []

    def test_allow_item_is_idempotent(self, db_session, make_stock):
        item = make_stock()
        link = inventory_service.create_portal_link("Retail")

        inventory_service.allow_item_on_link(link.id, item.id)
        inventory_service.allow_item_on_link(link.id, item.id)

        assert db_session.query(PortalLinkItem).filter_by(link_id=link.id).count() == 1

    def test_unknown_link_code(self, db_session):
        assert inventory_service.visible_items_for_link("NOPE") == []


class TestPortalSyncFailure:
    """A failing whitelist cleanup is logged and never blocks the stock write."""

    @pytest.fixture
    def failing_delete(self, monkeypatch):
        def _raise(self, *args, **kwargs):
            raise SQLAlchemyError("portal table locked")

        monkeypatch.setattr(Query, "delete", _raise)

    def test_apply_delta_still_persists(self, db_session, make_stock, failing_delete, caplog):
        item = make_stock(quantity=1)
        link = inventory_service.create_portal_link("Retail")
        inventory_service.allow_item_on_link(link.id, item.id)

        assert inventory_service.apply_delta(item.id, -3) == 0
        db.session.commit()

        assert db_session.get(InventoryItem, item.id).quantity == 0
        assert db_session.query(PortalLinkItem).filter_by(inventory_item_id=item.id).count() == 1
        assert "Portal visibility sync failed" in caplog.text

    def test_billing_still_commits(self, db_session, make_customer, make_stock, make_order, advance, failing_delete):
        customer = make_customer()
        stock = make_stock(quantity=5)
        link = inventory_service.create_portal_link("Retail")
        inventory_service.allow_item_on_link(link.id, stock.id)
        order = make_order(customer, [(stock, 10, 100)])

        result = advance(order, "checked")

        assert result.order.status == "checked"
        assert result.intent.status == "APPLIED"
        assert db_session.get(InventoryItem, stock.id).quantity == 0
        assert db_session.get(Customer, customer.id).balance_cents == -1000
        assert db_session.query(PortalLinkItem).filter_by(inventory_item_id=stock.id).count() == 1


class TestMovementLog:
    """Deterministic log ids."""

    def test_effect_keys(self):
        assert audit_log_service.sale_log_id(7, 3) == "sale-7-3"
        assert audit_log_service.effect_key("edit", 7, 3, "v4") == "edit-7-3-v4"
        assert audit_log_service.effect_key("gr-in", 2, 3) == "gr-in-2-3"

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            audit_log_service.effect_key("refund", 1, 1)

    def test_same_id_is_recorded_once(self, db_session, make_stock):
        item = make_stock()

        first = audit_log_service.record_movement(
            log_id="sale-1-%s" % item.id, item=item, quantity_change=-2, current_stock=48, remarks="first",
        )
        second = audit_log_service.record_movement(
            log_id="sale-1-%s" % item.id, item=item, quantity_change=-2, current_stock=46, remarks="second",
        )
        db.session.commit()

        assert first is second
        assert db_session.query(InventoryLog).count() == 1
        assert db_session.query(InventoryLog).first().remarks == "first"

    def test_delete_sale_log(self, db_session, make_stock):
        item = make_stock()
        audit_log_service.record_movement(
            log_id=audit_log_service.sale_log_id(5, item.id),
            item=item, quantity_change=-1, current_stock=49, remarks="sale",
        )
        db.session.commit()

        assert audit_log_service.delete_sale_log(5, item.id) is True
        assert audit_log_service.delete_sale_log(5, item.id) is False

    def test_list_logs_by_item(self, db_session, make_stock):
        item = make_stock()
        other = make_stock(model="M2")
        for log_id, stock in (("gr-in-1-%s" % item.id, item), ("gr-in-1-%s" % other.id, other)):
            audit_log_service.record_movement(
                log_id=log_id, item=stock, quantity_change=1, current_stock=51, remarks="return",
            )
        db.session.commit()

        logs = audit_log_service.list_logs("main", item_id=item.id)

        assert [log.item_id for log in logs] == [item.id]
        assert logs[0].to_dict()["movement"] == "Added"
