# Overview: Customer credit ledger; signed balances, firm-group display totals and manual payments.

"""
Customer Credit Ledger

WHY: Every billed order, rejection, payment and goods return moves a customer's
credit balance. All of those moves go through apply_delta so the balance has
one writer.

DESIGN PRINCIPLES:
- balance_cents is signed; negative means the customer owes money
- Deltas touch exactly one customer record, never the whole firm
- Firm totals are computed for display only
- Manual payments leave a 'Payment' order as the ledger entry
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Firm, GoodsReturn, Order
from .concurrency import lock_for_update, run_with_retry
from .order_feed import publish_order_change
from .order_service import assign_order_number


class CustomerError(Exception):
    """Raised for customer operation errors."""
    pass


DIRECTION_ADD = "Add"
DIRECTION_DEDUCT = "Deduct"
VALID_DIRECTIONS = (DIRECTION_ADD, DIRECTION_DEDUCT)

PAYMENT_STATUS = "Payment"


def format_amount(amount_cents: int) -> str:
    symbol = current_app.config.get("CURRENCY_SYMBOL", "")
    return f"{symbol}{abs(amount_cents) / 100:.2f}"


def fetch_customers(instance_id: str | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if instance_id is not None:
        q = q.filter(Customer.instance_id == instance_id)
    return q.order_by(Customer.name.asc(), Customer.id.asc()).all()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise CustomerError(f"Customer {customer_id} not found")
    return customer


def create_firm(
    name: str,
    *,
    instance_id: str | None = None,
    address: str | None = None,
    gstin: str | None = None,
    member_ids: list[int] | None = None,
) -> Firm:
    """Create a firm and move the given customers into it."""
    if not name or not name.strip():
        raise CustomerError("Firm name is required")
    firm = Firm(instance_id=instance_id, name=name.strip(), address=address, gstin=gstin)
    db.session.add(firm)
    db.session.flush()
    for customer_id in member_ids or []:
        get_customer(customer_id).firm_id = firm.id
    db.session.commit()
    return firm


def create_customer(
    *,
    name: str,
    instance_id: str | None = None,
    firm_id: int | None = None,
    nickname: str | None = None,
    phone: str | None = None,
    city: str | None = None,
    state: str | None = None,
    address: str | None = None,
    market: str | None = None,
    customer_type: str = "Owner",
    balance_cents: int = 0,
) -> Customer:
    if not name or not name.strip():
        raise CustomerError("Customer name is required")
    if firm_id is not None and db.session.get(Firm, firm_id) is None:
        raise CustomerError(f"Firm {firm_id} not found")

    customer = Customer(
        instance_id=instance_id,
        firm_id=firm_id,
        name=name.strip(),
        nickname=nickname,
        phone=phone,
        city=city,
        state=state,
        address=address,
        market=market,
        customer_type=customer_type,
        balance_cents=balance_cents,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


# =============================================================================
# LOOKUP
# =============================================================================

def resolve_customer(order: Order) -> Customer | None:
    """
    Find the customer whose balance an order moves.

    An order that carries customer_id is matched by id only. Older orders
    without an id are matched on name plus city or address text; that path
    logs a warning because two customers can share a name.
    """
    if order.customer_id is not None:
        return db.session.get(Customer, order.customer_id)

    name = (order.customer_name or "").strip()
    if not name:
        return None

    subtext = (order.customer_subtext or "").strip()
    q = db.session.query(Customer).filter(func.trim(Customer.name) == name)
    if order.instance_id is not None:
        q = q.filter(Customer.instance_id == order.instance_id)
    candidates = q.order_by(Customer.id.asc()).all()

    for customer in candidates:
        if subtext and subtext in ((customer.city or "").strip(), (customer.address or "").strip()):
            current_app.logger.warning(
                "Order %s matched customer %s by name and location text",
                order.id, customer.id,
            )
            return customer
    return None


# =============================================================================
# BALANCE
# =============================================================================

def apply_delta(customer_id: int, amount_cents: int) -> int:
    """
    Add a signed amount to one customer's balance and return the new balance.

    Does not commit; the caller's transaction owns the write.
    """
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if customer is None:
        raise CustomerError(f"Customer {customer_id} not found")

    customer.balance_cents = (customer.balance_cents or 0) + amount_cents
    db.session.flush()
    return customer.balance_cents


def firm_members(customer_id: int) -> list[Customer]:
    """All records sharing the customer's firm, or just the customer."""
    customer = get_customer(customer_id)
    if customer.firm_id is None:
        return [customer]
    return (
        db.session.query(Customer)
        .filter(Customer.firm_id == customer.firm_id)
        .order_by(Customer.id.asc())
        .all()
    )


def displayed_balance(customer_id: int) -> int:
    return sum(member.balance_cents or 0 for member in firm_members(customer_id))


# =============================================================================
# MANUAL PAYMENTS
# =============================================================================

def record_payment(
    customer_id: int,
    amount_cents: int,
    direction: str,
    *,
    remarks: str | None = None,
    actor_name: str | None = None,
) -> tuple[Order, int]:
    """
    Manually credit or debit a customer.

    Add raises the balance, Deduct lowers it. The balance change and its
    'Payment' ledger entry commit together.

    Returns:
        (ledger entry order, new balance)
    """
    if direction not in VALID_DIRECTIONS:
        raise CustomerError(f"direction must be one of {VALID_DIRECTIONS}")
    if amount_cents <= 0:
        raise CustomerError("Payment amount must be positive")

    signed = amount_cents if direction == DIRECTION_ADD else -amount_cents

    def _op():
        customer = get_customer(customer_id)
        new_balance = apply_delta(customer.id, signed)

        entry = Order(
            order_number="PENDING",
            instance_id=customer.instance_id,
            status=PAYMENT_STATUS,
            customer_id=customer.id,
            customer_name=customer.name,
            customer_subtext=customer.city,
            warehouse="Financial Credit" if signed > 0 else "Financial Debit",
            invoice_status="Paid",
            remarks=remarks or ("Manual credit add" if signed > 0 else "Manual debit deduction"),
            assigned_to_name=actor_name,
            total_amount_cents=signed,
        )
        db.session.add(entry)
        assign_order_number(entry, "PAY")
        db.session.commit()
        return entry, new_balance

    entry, new_balance = run_with_retry(_op)
    current_app.logger.info(
        "Recorded %s payment of %s for customer %s", direction, amount_cents, customer_id,
    )
    publish_order_change(entry)
    return entry, new_balance


def customer_ledger(customer_id: int) -> dict:
    """Orders, payments and goods returns for one customer, newest first."""
    customer = get_customer(customer_id)
    orders = (
        db.session.query(Order)
        .filter(Order.customer_id == customer.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    returns = (
        db.session.query(GoodsReturn)
        .filter(GoodsReturn.customer_id == customer.id)
        .order_by(GoodsReturn.created_at.desc(), GoodsReturn.id.desc())
        .all()
    )
    return {
        "customer": customer.to_dict(),
        "displayed_balance_cents": displayed_balance(customer.id),
        "orders": [o.to_dict(include_items=False) for o in orders if o.status != PAYMENT_STATUS and o.status != "Return"],
        "payments": [o.to_dict(include_items=False) for o in orders if o.status == PAYMENT_STATUS],
        "returns": [r.to_dict() for r in returns],
    }
