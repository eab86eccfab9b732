# Overview: Retry and locking helpers shared by the ledger services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class StaleOrderError(Exception):
    """
    The order changed after a reconciliation plan was computed.

    Raised instead of applying a delta that was derived from an old baseline.
    Callers must reload the order and compute the delta again.
    """


RETRYABLE_ERRORS = (OperationalError, StaleDataError, StaleOrderError)


def lock_for_update(query):
    """
    Apply row-level locking for ledger read-modify-write.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id stamps on
    Order, Customer and InventoryItem still reject stale writes there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a unit of ledger work, re-running it from scratch on version
    conflicts or lock errors.

    func must reload everything it reads, so each attempt recomputes its
    deltas from fresh rows.
    """
    if attempts is None:
        attempts = current_app.config.get("RECONCILE_RETRY_ATTEMPTS", 3)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after concurrent update (attempt %s/%s): %s",
                attempt + 1, attempts, exc,
            )
            time.sleep(backoff_base * (2 ** attempt))
