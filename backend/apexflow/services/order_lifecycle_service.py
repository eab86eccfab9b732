# Overview: Order status state machine; decides which transitions are legal and which carry ledger effects.

"""
ApexFlow Order Lifecycle

================================================================================
STATE MACHINE:
    fresh -> assigned -> packed -> checked -> dispatched
    (any non-terminal) -> rejected

    fresh:      created, nobody working on it
    assigned:   a picker has been assigned
    packed:     picker finished packing
    checked:    checker verified the parcel          (billed)
    dispatched: dispatcher handed it to the carrier  (billed, terminal)
    rejected:   cancelled by an admin                (terminal)

    'Payment' and 'Return' are ledger entries stored in the orders table.
    They never transition.

ROLES:
    Picker      assigned -> packed
    Checker     packed   -> checked
    Dispatcher  checked  -> dispatched
    Super Admin any single next step, assign a picker, reject

BILLED SET: {checked, dispatched}
    Entering the billed set from outside it bills the order (BILL).
    Moving to rejected reverses whatever is billed (REVERSE).
    checked -> dispatched stays inside the set and has no ledger effect.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass


FRESH = "fresh"
ASSIGNED = "assigned"
PACKED = "packed"
CHECKED = "checked"
DISPATCHED = "dispatched"
REJECTED = "rejected"
PAYMENT = "Payment"
RETURN = "Return"

PIPELINE = (FRESH, ASSIGNED, PACKED, CHECKED, DISPATCHED)
TERMINAL_STATUSES = frozenset({DISPATCHED, REJECTED})
LEDGER_ENTRY_STATUSES = frozenset({PAYMENT, RETURN})
VALID_STATUSES = frozenset(PIPELINE) | {REJECTED} | LEDGER_ENTRY_STATUSES
BILLED_STATUSES = frozenset({CHECKED, DISPATCHED})

ROLE_SUPER_ADMIN = "Super Admin"
ROLE_PICKER = "Picker"
ROLE_CHECKER = "Checker"
ROLE_DISPATCHER = "Dispatcher"
ROLE_GR = "GR"

VALID_ROLES = frozenset({ROLE_SUPER_ADMIN, ROLE_PICKER, ROLE_CHECKER, ROLE_DISPATCHER, ROLE_GR})
STAFF_ROLES = frozenset({ROLE_PICKER, ROLE_CHECKER, ROLE_DISPATCHER})

# The one step each linear role may perform
STAFF_STEPS = {
    ROLE_PICKER: (ASSIGNED, PACKED),
    ROLE_CHECKER: (PACKED, CHECKED),
    ROLE_DISPATCHER: (CHECKED, DISPATCHED),
}

EFFECT_BILL = "BILL"
EFFECT_REVERSE = "REVERSE"


class OrderTransitionError(ValueError):
    """
    Raised when a status change or edit is not allowed for the order's
    current status or the caller's role.
    """
    pass


@dataclass(frozen=True)
class Actor:
    """Who is asking. Supplied by the caller; not authenticated here."""
    role: str
    id: int | None = None
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise OrderTransitionError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def is_billed(status: str) -> bool:
    return status in BILLED_STATUSES


def next_status(status: str) -> str | None:
    """Next pipeline step, or None when there is none."""
    if status not in PIPELINE:
        return None
    idx = PIPELINE.index(status)
    if idx + 1 >= len(PIPELINE):
        return None
    return PIPELINE[idx + 1]


def transition_effect(from_status: str, to_status: str) -> str | None:
    """
    Ledger effect implied by a transition.

    BILL:    first entry into the billed set
    REVERSE: move to rejected (the coordinator reverses only if something is billed)
    None:    everything else, including checked -> dispatched
    """
    if to_status == REJECTED:
        return EFFECT_REVERSE
    if is_billed(to_status) and not is_billed(from_status):
        return EFFECT_BILL
    return None


def validate_transition(from_status: str, to_status: str, actor: Actor, *, assigning: bool = False) -> None:
    """
    Raise OrderTransitionError unless actor may move an order from
    from_status to to_status.

    assigning=True means the call also sets the assigned handler.
    """
    validate_status(to_status)

    if from_status in LEDGER_ENTRY_STATUSES or to_status in LEDGER_ENTRY_STATUSES:
        raise OrderTransitionError("Payment and Return entries have no status lifecycle")

    if from_status in TERMINAL_STATUSES:
        raise OrderTransitionError(
            f"Order is {from_status}; create a new order instead of re-opening it"
        )

    if actor.is_staff:
        if assigning:
            raise OrderTransitionError(f"{actor.role} cannot assign orders")
        if (from_status, to_status) != STAFF_STEPS[actor.role]:
            expected_from, expected_to = STAFF_STEPS[actor.role]
            raise OrderTransitionError(
                f"{actor.role} may only move orders from '{expected_from}' to '{expected_to}'"
            )
        return

    if not actor.is_admin:
        raise OrderTransitionError(f"Role '{actor.role}' cannot change order status")

    if to_status == REJECTED:
        return

    if assigning:
        if is_billed(from_status):
            raise OrderTransitionError("Billed orders cannot be re-assigned")
        if to_status == ASSIGNED and from_status == FRESH:
            return
        if to_status == from_status:
            return
        raise OrderTransitionError(f"Cannot assign while moving from '{from_status}' to '{to_status}'")

    if from_status == FRESH:
        raise OrderTransitionError("Fresh orders move to 'assigned' by assigning a picker")

    if to_status != next_status(from_status):
        raise OrderTransitionError(
            f"Cannot move from '{from_status}' to '{to_status}'; next step is '{next_status(from_status)}'"
        )


def ensure_can_edit(status: str, actor: Actor) -> None:
    """
    Item edits and batch operations are admin-only, any time the order is
    not rejected. Staff only move orders along and confirm quantities with
    the status change.
    """
    if status in LEDGER_ENTRY_STATUSES:
        raise OrderTransitionError("Payment and Return entries cannot be edited")
    if status == REJECTED:
        raise OrderTransitionError("Rejected orders cannot be edited")
    if actor.is_admin:
        return
    if is_billed(status):
        raise OrderTransitionError("Billed orders can only be edited by an admin")
    raise OrderTransitionError(f"Role '{actor.role}' cannot edit order items; ask an admin")
