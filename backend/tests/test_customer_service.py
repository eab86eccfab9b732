# Overview: Pytest coverage for customer balances, firm totals, lookups and manual payments.

import pytest

from apexflow.models import Customer, Order
from apexflow.services import customer_service
from apexflow.services.customer_service import CustomerError


class TestFirmBalances:
    """Firm totals are computed, member balances stay separate."""

    def test_displayed_balance_sums_members(self, db_session, make_firm, make_customer):
        firm = make_firm()
        first = make_customer(name="Sharma Mobiles", balance_cents=-500, firm_id=firm.id)
        second = make_customer(name="Sharma Accessories", balance_cents=200, firm_id=firm.id)
        make_customer(name="Unrelated", balance_cents=-9000)

        assert customer_service.displayed_balance(first.id) == -300
        assert customer_service.displayed_balance(second.id) == -300
        assert {c.id for c in customer_service.firm_members(first.id)} == {first.id, second.id}

    def test_customer_without_firm(self, db_session, make_customer):
        customer = make_customer(balance_cents=-700)

        assert customer_service.displayed_balance(customer.id) == -700
        assert customer_service.firm_members(customer.id) == [customer]

    def test_delta_touches_one_member(self, db_session, make_firm, make_customer):
        firm = make_firm()
        first = make_customer(name="A", firm_id=firm.id)
        second = make_customer(name="B", firm_id=firm.id)

        customer_service.apply_delta(first.id, -250)
        db_session.commit()

        assert db_session.get(Customer, first.id).balance_cents == -250
        assert db_session.get(Customer, second.id).balance_cents == 0

    def test_create_firm_with_members(self, db_session, make_customer):
        first = make_customer(name="A")
        second = make_customer(name="B")

        firm = customer_service.create_firm("AB Group", instance_id="main", member_ids=[first.id, second.id])

        assert db_session.get(Customer, first.id).firm_id == firm.id
        assert db_session.get(Customer, second.id).firm_id == firm.id

    def test_create_firm_needs_name(self, db_session):
        with pytest.raises(CustomerError):
            customer_service.create_firm("  ")


class TestCustomerLookup:
    """Orders with a customer id never fall back to text matching."""

    def _order(self, **kwargs):
        defaults = dict(id=1, instance_id="main", customer_id=None, customer_name="Sharma Mobiles", customer_subtext="Jaipur")
        defaults.update(kwargs)
        return Order(**defaults)

    def test_id_is_authoritative(self, db_session, make_customer):
        make_customer(name="Sharma Mobiles", city="Jaipur")
        other = make_customer(name="Somebody Else", city="Delhi")

        found = customer_service.resolve_customer(self._order(customer_id=other.id))

        assert found.id == other.id

    def test_missing_id_does_not_fall_back(self, db_session, make_customer):
        make_customer(name="Sharma Mobiles", city="Jaipur")

        assert customer_service.resolve_customer(self._order(customer_id=99999)) is None

    def test_name_and_city_fallback(self, db_session, make_customer):
        make_customer(name="Sharma Mobiles", city="Kota")
        expected = make_customer(name="Sharma Mobiles", city="Jaipur")

        assert customer_service.resolve_customer(self._order()).id == expected.id

    def test_name_and_address_fallback(self, db_session, make_customer):
        expected = make_customer(name="Sharma Mobiles", city=None, address="Jaipur")

        assert customer_service.resolve_customer(self._order()).id == expected.id

    def test_fallback_needs_location_match(self, db_session, make_customer):
        make_customer(name="Sharma Mobiles", city="Kota")

        assert customer_service.resolve_customer(self._order()) is None


class TestManualPayments:
    """Payments move the balance and leave a 'Payment' ledger entry."""

    def test_add_payment(self, db_session, make_customer):
        customer = make_customer(balance_cents=-5000)

        entry, balance = customer_service.record_payment(
            customer.id, 2000, customer_service.DIRECTION_ADD, actor_name="Admin",
        )

        assert balance == -3000
        assert db_session.get(Customer, customer.id).balance_cents == -3000
        assert entry.status == "Payment"
        assert entry.order_number.startswith("PAY-")
        assert entry.warehouse == "Financial Credit"
        assert entry.invoice_status == "Paid"
        assert entry.total_amount_cents == 2000
        assert entry.remarks == "Manual credit add"

    def test_deduct_payment(self, db_session, make_customer):
        customer = make_customer()

        entry, balance = customer_service.record_payment(
            customer.id, 1500, customer_service.DIRECTION_DEDUCT, remarks="Cheque bounced",
        )

        assert balance == -1500
        assert entry.warehouse == "Financial Debit"
        assert entry.total_amount_cents == -1500
        assert entry.remarks == "Cheque bounced"

    @pytest.mark.parametrize("amount,direction", [(0, "Add"), (-10, "Add"), (100, "Refund")])
    def test_invalid_payment(self, db_session, make_customer, amount, direction):
        customer = make_customer()

        with pytest.raises(CustomerError):
            customer_service.record_payment(customer.id, amount, direction)

    def test_unknown_customer(self, db_session):
        with pytest.raises(CustomerError, match="not found"):
            customer_service.record_payment(99999, 100, customer_service.DIRECTION_ADD)

    def test_ledger_separates_entries(self, db_session, make_customer, make_stock, make_order):
        customer = make_customer()
        make_order(customer, [(make_stock(), 1, 100)])
        customer_service.record_payment(customer.id, 100, customer_service.DIRECTION_ADD)

        ledger = customer_service.customer_ledger(customer.id)

        assert len(ledger["orders"]) == 1
        assert len(ledger["payments"]) == 1
        assert ledger["returns"] == []
        assert ledger["displayed_balance_cents"] == 100
