"""
Pytest fixtures for ApexFlow backend tests.

Provides the application on an in-memory database, a fresh schema per test,
record factories and actor headers for the HTTP tests.
"""

import pytest

from apexflow import create_app
from apexflow.config import TestConfig
from apexflow.extensions import db
from apexflow.models import Customer, Firm, InventoryItem, StaffMember
from apexflow.services import order_service
from apexflow.services.order_lifecycle_service import (
    Actor,
    ROLE_CHECKER,
    ROLE_DISPATCHER,
    ROLE_GR,
    ROLE_PICKER,
    ROLE_SUPER_ADMIN,
)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


# =============================================================================
# ACTORS
# =============================================================================

@pytest.fixture
def admin():
    return Actor(role=ROLE_SUPER_ADMIN, id=1, name="Admin")


@pytest.fixture
def picker_actor():
    return Actor(role=ROLE_PICKER, id=2, name="Pia Picker")


@pytest.fixture
def checker():
    return Actor(role=ROLE_CHECKER, id=3, name="Chetan Checker")


@pytest.fixture
def dispatcher():
    return Actor(role=ROLE_DISPATCHER, id=4, name="Dev Dispatcher")


def actor_headers(role: str = ROLE_SUPER_ADMIN, name: str = "Admin", actor_id: int = 1) -> dict:
    """Helper to create actor headers."""
    return {"X-Actor-Role": role, "X-Actor-Id": str(actor_id), "X-Actor-Name": name}


@pytest.fixture
def admin_headers():
    return actor_headers()


@pytest.fixture
def gr_headers():
    return actor_headers(ROLE_GR, "Gopal GR", 5)


# =============================================================================
# RECORDS
# =============================================================================

@pytest.fixture
def picker(db_session):
    """Active picker that orders can be assigned to."""
    staff = StaffMember(name="Pia Picker", role=ROLE_PICKER, instance_id="main", is_active=True)
    db_session.add(staff)
    db_session.commit()
    return staff


@pytest.fixture
def make_customer(db_session):
    def _make(name="Sharma Mobiles", city="Jaipur", balance_cents=0, firm_id=None, instance_id="main", address=None):
        customer = Customer(
            instance_id=instance_id,
            name=name,
            city=city,
            address=address,
            balance_cents=balance_cents,
            firm_id=firm_id,
        )
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture
def make_firm(db_session):
    def _make(name="Sharma Group", instance_id="main"):
        firm = Firm(name=name, instance_id=instance_id)
        db_session.add(firm)
        db_session.commit()
        return firm
    return _make


@pytest.fixture
def make_stock(db_session):
    def _make(brand="X", model="M1", quality="OG", quantity=50, price_cents=100, instance_id="main"):
        item = InventoryItem(
            instance_id=instance_id,
            brand=brand,
            model=model,
            quality=quality,
            quantity=quantity,
            price_cents=price_cents,
        )
        db_session.add(item)
        db_session.commit()
        return item
    return _make


@pytest.fixture
def make_order(db_session):
    """
    Create a fresh order.

    lines: list of (stock item or None, ordered_qty, display_price_cents).
    Lines without a stock item get brand "NOPE" so they never match inventory.
    """
    def _make(customer, lines, *, link_stock=True, customer_id_set=True):
        items = []
        for stock, ordered_qty, price in lines:
            items.append({
                "inventory_item_id": stock.id if (stock is not None and link_stock) else None,
                "brand": stock.brand if stock is not None else "NOPE",
                "model": stock.model if stock is not None else "NOPE",
                "quality": stock.quality if stock is not None else "NOPE",
                "ordered_qty": ordered_qty,
                "display_price_cents": price,
            })
        return order_service.create_order(
            items=items,
            customer_id=customer.id if customer_id_set else None,
            customer_name=customer.name,
            customer_subtext=customer.city,
            instance_id=customer.instance_id,
        )
    return _make


@pytest.fixture
def advance(admin, picker):
    """
    Walk an order up the pipeline as Super Admin.

    advance(order, "checked", fulfill={item_id: qty}) assigns the picker,
    packs, then checks with the given fulfilled quantities (default: all
    ordered pieces at display price).
    """
    from apexflow.services import reconciliation_service

    def _advance(order, target="checked", fulfill=None):
        order_id = order.id
        steps = ["assigned", "packed", "checked", "dispatched"]
        result = None
        for step in steps[: steps.index(target) + 1]:
            current = order_service.get_order(order_id)
            if step == "assigned":
                result = reconciliation_service.update_status(order_id, step, admin, assigned_to_id=picker.id)
            elif step == "checked":
                items = [
                    {
                        "id": item.id,
                        "fulfill_qty": (fulfill or {}).get(item.id, item.ordered_qty),
                        "final_price_cents": item.display_price_cents,
                    }
                    for item in current.items
                ]
                result = reconciliation_service.update_status(order_id, step, admin, explicit_items=items)
            else:
                result = reconciliation_service.update_status(order_id, step, admin)
        return result
    return _advance
