# Overview: Pytest coverage for the HTTP API; actor headers, status codes and payloads.

"""
API Route Tests

Exercises the blueprints through the Flask test client:
- X-Actor-Role is required on writes and role-restricted routes return 403
- Domain errors map to 400/404/409
- A full order walk through HTTP moves both ledgers
"""

from apexflow.models import Customer, InventoryItem
from apexflow.services.order_lifecycle_service import ROLE_CHECKER, ROLE_PICKER


def actor_headers(role, name, actor_id):
    return {"X-Actor-Role": role, "X-Actor-Name": name, "X-Actor-Id": str(actor_id)}


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "ok"
        assert body["checks"]["database"]["details"]["open_reconciliation_intents"] == 0


class TestActorHeaders:

    def test_missing_role(self, client, db_session):
        response = client.post("/api/orders", json={"items": []})

        assert response.status_code == 400
        assert "allowed_roles" in response.get_json()

    def test_unknown_role(self, client, db_session):
        response = client.post("/api/orders", json={}, headers={"X-Actor-Role": "Owner"})

        assert response.status_code == 400

    def test_role_restricted_route(self, client, db_session, make_customer, make_stock, make_order):
        order = make_order(make_customer(), [(make_stock(), 2, 100)])

        response = client.post(
            f"/api/orders/{order.id}/fulfill-all", json={}, headers=actor_headers(ROLE_PICKER, "Pia", 2),
        )

        assert response.status_code == 403


class TestOrderRoutes:

    def test_create_order(self, client, db_session, admin_headers, make_customer, make_stock):
        customer = make_customer()
        stock = make_stock()

        response = client.post("/api/orders", headers=admin_headers, json={
            "customer_id": customer.id,
            "items": [{
                "brand": "X", "model": "M1", "quality": "OG",
                "ordered_qty": 4, "display_price_cents": 250, "inventory_item_id": stock.id,
            }],
        })

        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["order_number"] == f"ORD-{order['id']:06d}"
        assert order["status"] == "fresh"
        assert order["customer_name"] == customer.name
        assert order["items"][0]["final_price_cents"] == 250

    def test_create_order_validation(self, client, db_session, admin_headers, make_customer):
        customer = make_customer()

        response = client.post("/api/orders", headers=admin_headers, json={
            "customer_id": customer.id,
            "items": [{"brand": "X", "model": "M1", "quality": "OG", "ordered_qty": 1.5}],
        })

        assert response.status_code == 400

    def test_get_unknown_order(self, client, db_session):
        assert client.get("/api/orders/99999").status_code == 404

    def test_full_walk(self, client, db_session, admin_headers, picker, make_customer, make_stock, make_order):
        customer = make_customer()
        stock = make_stock(quantity=50)
        order = make_order(customer, [(stock, 10, 100)])
        order_id, item_id = order.id, order.items[0].id
        url = f"/api/orders/{order_id}/status"

        response = client.post(url, headers=admin_headers, json={"status": "assigned", "assigned_to_id": picker.id})
        assert response.status_code == 200
        assert response.get_json()["order"]["assigned_to_name"] == picker.name

        response = client.post(url, headers=actor_headers(ROLE_PICKER, "Pia", picker.id), json={"status": "packed"})
        assert response.status_code == 200

        response = client.post(url, headers=actor_headers(ROLE_CHECKER, "Chetan", 3), json={
            "status": "checked",
            "items": [{"id": item_id, "fulfill_qty": 10}],
        })
        assert response.status_code == 200
        body = response.get_json()
        assert body["order"]["billed_amount_cents"] == 1000
        assert body["intent"]["status"] == "APPLIED"
        assert db_session.get(Customer, customer.id).balance_cents == -1000
        assert db_session.get(InventoryItem, stock.id).quantity == 40

        response = client.patch(
            f"/api/orders/{order_id}/items/{item_id}", headers=admin_headers,
            json={"field": "fulfill_qty", "value": 8},
        )
        assert response.status_code == 200
        assert db_session.get(Customer, customer.id).balance_cents == -800

        response = client.post(url, headers=admin_headers, json={"status": "rejected"})
        assert response.status_code == 200
        assert db_session.get(Customer, customer.id).balance_cents == 0
        assert db_session.get(InventoryItem, stock.id).quantity == 50

    def test_staff_item_edits_are_refused(self, client, db_session, admin_headers, picker, make_customer, make_stock, make_order):
        order = make_order(make_customer(), [(make_stock(), 10, 1000)])
        order_id, item_id = order.id, order.items[0].id
        url = f"/api/orders/{order_id}/status"
        client.post(url, headers=admin_headers, json={"status": "assigned", "assigned_to_id": picker.id})
        client.post(url, headers=admin_headers, json={"status": "packed"})

        response = client.patch(
            f"/api/orders/{order_id}/items/{item_id}", headers=actor_headers(ROLE_PICKER, "Pia", picker.id),
            json={"field": "final_price_cents", "value": 1},
        )
        assert response.status_code == 403

        response = client.post(url, headers=actor_headers(ROLE_CHECKER, "Chetan", 3), json={
            "status": "checked",
            "items": [{"id": item_id, "fulfill_qty": 10, "final_price_cents": 1}],
        })
        assert response.status_code == 409

        body = client.get(f"/api/orders/{order_id}").get_json()
        assert body["order"]["status"] == "packed"
        assert body["order"]["items"][0]["final_price_cents"] == 1000

    def test_wrong_step_is_conflict(self, client, db_session, make_customer, make_stock, make_order):
        order = make_order(make_customer(), [(make_stock(), 1, 100)])

        response = client.post(
            f"/api/orders/{order.id}/status", headers=actor_headers(ROLE_CHECKER, "Chetan", 3),
            json={"status": "checked"},
        )

        assert response.status_code == 409

    def test_fulfill_all_needs_confirmation(self, client, db_session, admin_headers, make_customer, make_stock, make_order):
        order = make_order(make_customer(), [(make_stock(), 3, 100)])
        url = f"/api/orders/{order.id}/fulfill-all"

        assert client.post(url, headers=admin_headers, json={}).status_code == 200

        response = client.post(url, headers=admin_headers, json={})
        assert response.status_code == 409
        assert response.get_json()["requires_confirmation"] is True

        assert client.post(url, headers=admin_headers, json={"force": True}).status_code == 200

    def test_bulk_price_reduction(self, client, db_session, admin_headers, make_customer, make_stock, make_order):
        order = make_order(make_customer(), [(make_stock(), 3, 100)])

        response = client.post(
            f"/api/orders/{order.id}/bulk-price-reduction", headers=admin_headers, json={"amount_cents": 40},
        )

        assert response.status_code == 200
        assert response.get_json()["order"]["items"][0]["final_price_cents"] == 60

    def test_add_item(self, client, db_session, admin_headers, make_customer, make_stock, make_order):
        stock = make_stock()
        extra = make_stock(model="M9", price_cents=700)
        order = make_order(make_customer(), [(stock, 1, 100)])
        url = f"/api/orders/{order.id}/items"

        response = client.post(url, headers=admin_headers, json={"inventory_item_id": extra.id})
        assert response.status_code == 201
        item = response.get_json()["item"]
        assert item["ordered_qty"] == 1
        assert item["fulfill_qty"] == 0
        assert item["final_price_cents"] == 700

        response = client.post(url, headers=admin_headers, json={"inventory_item_id": extra.id})
        assert response.status_code == 400


class TestCustomerRoutes:

    def test_create_and_pay(self, client, db_session, admin_headers):
        response = client.post("/api/customers", headers=admin_headers, json={"name": "Verma Traders", "city": "Pune"})
        assert response.status_code == 201
        customer_id = response.get_json()["customer"]["id"]

        response = client.post(
            f"/api/customers/{customer_id}/payments", headers=admin_headers,
            json={"amount_cents": 5000, "direction": "Deduct"},
        )
        assert response.status_code == 201
        assert response.get_json()["balance_cents"] == -5000

        ledger = client.get(f"/api/customers/{customer_id}/ledger").get_json()
        assert len(ledger["payments"]) == 1

    def test_payment_for_unknown_customer(self, client, db_session, admin_headers):
        response = client.post("/api/customers/99999/payments", headers=admin_headers, json={"amount_cents": 100})

        assert response.status_code == 404


class TestReturnRoutes:

    def test_gr_creates_return(self, client, db_session, gr_headers, make_customer, make_stock):
        customer = make_customer()
        make_stock(quantity=10)

        response = client.post("/api/returns", headers=gr_headers, json={
            "customer_id": customer.id,
            "lines": [{"brand": "X", "model": "M1", "quality": "OG", "quantity": 2, "unit_price_cents": 100}],
        })

        assert response.status_code == 201
        assert response.get_json()["return"]["total_credit_cents"] == 200

        rows = client.get("/api/returns/stock-room", query_string={"instance_id": "main"}).get_json()["stock_room"]
        assert rows[0]["quantity"] == 2

    def test_picker_cannot_create_return(self, client, db_session, make_customer):
        customer = make_customer()

        response = client.post(
            "/api/returns", headers=actor_headers(ROLE_PICKER, "Pia", 2),
            json={"customer_id": customer.id, "direct_amount_cents": 100},
        )

        assert response.status_code == 403

    def test_only_admin_deletes(self, client, db_session, gr_headers, admin_headers, make_customer):
        customer = make_customer()
        response = client.post("/api/returns", headers=gr_headers, json={
            "customer_id": customer.id, "direct_amount_cents": 100,
        })
        return_id = response.get_json()["return"]["id"]

        assert client.delete(f"/api/returns/{return_id}", headers=gr_headers).status_code == 403
        assert client.delete(f"/api/returns/{return_id}", headers=admin_headers).status_code == 200
