# Overview: Pytest coverage for the order change feed and client snapshot merging.

from apexflow.services import order_feed, reconciliation_service
from apexflow.services.order_feed import merge_order_snapshot


class TestSubscriptions:
    """Subscribers get committed snapshots until they unsubscribe."""

    def test_list_subscriber_receives_scope(self, db_session, make_customer, make_stock, make_order):
        customer = make_customer()
        stock = make_stock()
        received = []
        unsubscribe = order_feed.listen_to_orders("main", received.append)
        try:
            order = make_order(customer, [(stock, 2, 100)])
        finally:
            unsubscribe()

        assert len(received) == 1
        assert [o["id"] for o in received[0]] == [order.id]

    def test_other_scopes_are_ignored(self, db_session, make_customer, make_stock, make_order):
        customer = make_customer(instance_id="branch")
        received = []
        unsubscribe = order_feed.listen_to_orders("main", received.append)
        try:
            make_order(customer, [(make_stock(instance_id="branch"), 1, 100)])
        finally:
            unsubscribe()

        assert received == []

    def test_detail_subscriber_and_unsubscribe(self, db_session, admin, make_customer, make_stock, make_order):
        customer = make_customer()
        order = make_order(customer, [(make_stock(), 3, 100)])
        other = make_order(customer, [(make_stock(model="M2"), 1, 100)])
        received = []

        unsubscribe = order_feed.listen_to_order_details(order.id, received.append)
        reconciliation_service.update_item(order.id, order.items[0].id, "fulfill_qty", 2, admin)
        reconciliation_service.update_item(other.id, other.items[0].id, "fulfill_qty", 1, admin)
        unsubscribe()
        reconciliation_service.update_item(order.id, order.items[0].id, "fulfill_qty", 1, admin)

        assert len(received) == 1
        assert received[0]["items"][0]["fulfill_qty"] == 2

    def test_failing_subscriber_does_not_break_publisher(self, db_session, admin, make_customer, make_stock, make_order):
        customer = make_customer()
        order = make_order(customer, [(make_stock(), 3, 100)])
        received = []

        def _broken(snapshot):
            raise RuntimeError("subscriber down")

        unsubscribes = [
            order_feed.listen_to_order_details(order.id, _broken),
            order_feed.listen_to_order_details(order.id, received.append),
        ]
        try:
            result = reconciliation_service.update_item(order.id, order.items[0].id, "fulfill_qty", 2, admin)
        finally:
            for unsubscribe in unsubscribes:
                unsubscribe()

        assert result.order.items[0].fulfill_qty == 2
        assert len(received) == 1


class TestMergeOrderSnapshot:
    """Client-side merge of server snapshots with in-progress edits."""

    def _snapshot(self, *items):
        return {"id": 1, "status": "packed", "items": [dict(i) for i in items]}

    def test_pending_edit_wins_over_server(self):
        snapshot = self._snapshot({"id": 10, "fulfill_qty": 1, "final_price_cents": 100})

        merged, remaining = merge_order_snapshot([], {10: {"fulfill_qty": 3}}, snapshot)

        assert merged["items"][0]["fulfill_qty"] == 3
        assert merged["items"][0]["final_price_cents"] == 100
        assert remaining == {10: {"fulfill_qty": 3}}

    def test_confirmed_edit_is_dropped(self):
        snapshot = self._snapshot({"id": 10, "fulfill_qty": 3, "final_price_cents": 100})

        merged, remaining = merge_order_snapshot([], {10: {"fulfill_qty": 3}}, snapshot)

        assert merged["items"][0]["fulfill_qty"] == 3
        assert remaining == {}

    def test_edit_for_removed_item_is_dropped(self):
        snapshot = self._snapshot({"id": 10, "fulfill_qty": 1})

        _, remaining = merge_order_snapshot([], {11: {"fulfill_qty": 5}}, snapshot)

        assert remaining == {}

    def test_snapshot_without_items_keeps_local_items(self):
        local = [{"id": 10, "fulfill_qty": 2}]
        pending = {10: {"fulfill_qty": 2}}

        merged, remaining = merge_order_snapshot(local, pending, {"id": 1, "status": "checked", "items": []})

        assert merged["status"] == "checked"
        assert merged["items"] == local
        assert remaining == pending

    def test_inputs_are_not_modified(self):
        snapshot = self._snapshot({"id": 10, "fulfill_qty": 1})
        pending = {10: {"fulfill_qty": 3}}

        merge_order_snapshot([], pending, snapshot)

        assert snapshot["items"][0]["fulfill_qty"] == 1
        assert pending == {10: {"fulfill_qty": 3}}
