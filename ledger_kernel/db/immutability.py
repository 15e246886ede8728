"""
ORM-level append-only enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners here reject changes to records whose history must
never be rewritten:

Entity          | Rule
----------------|------------------------------------------------------------
LedgerEntry     | ALWAYS immutable; corrections are new compensating entries
AuditEvent      | ALWAYS immutable
SalaryAdvance   | original_amount frozen; remaining_balance never increases
                | and never goes below zero; rows are never deleted
WithdrawalRequest | amount, employee and request_ref frozen once created

Only ORM flushes are covered.  Bulk ``update()`` statements issued by the
services touch status/stage columns only.

Usage:

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from decimal import Decimal

from sqlalchemy import event, inspect

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

WITHDRAWAL_FROZEN_FIELDS = frozenset({"amount", "employee_id", "request_ref"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_ledger_entry_update(mapper, connection, target):
    """Ledger entries are never modified."""
    raise _blocked(
        "LedgerEntry", target.id, "UPDATE",
        "Ledger entries are immutable; append a compensating entry instead",
    )


def _check_ledger_entry_delete(mapper, connection, target):
    raise _blocked("LedgerEntry", target.id, "DELETE", "Ledger entries cannot be deleted")


def _check_audit_event_update(mapper, connection, target):
    raise _blocked(
        "AuditEvent", target.id, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    raise _blocked("AuditEvent", target.id, "DELETE", "Audit events cannot be deleted")


def _check_salary_advance_update(mapper, connection, target):
    """
    original_amount never changes; remaining_balance only moves down to zero.
    """
    state = inspect(target)

    original = state.attrs.original_amount.history
    if original.has_changes() and original.deleted:
        raise _blocked(
            "SalaryAdvance", target.id, "UPDATE",
            "original_amount cannot change after activation",
        )

    remaining = state.attrs.remaining_balance.history
    if remaining.has_changes() and remaining.deleted:
        before = Decimal(remaining.deleted[0])
        after = Decimal(target.remaining_balance)
        if after > before:
            raise _blocked(
                "SalaryAdvance", target.id, "UPDATE",
                f"remaining_balance cannot increase ({before} -> {after})",
            )
        if after < 0:
            raise _blocked(
                "SalaryAdvance", target.id, "UPDATE",
                f"remaining_balance cannot be negative ({after})",
            )


def _check_salary_advance_delete(mapper, connection, target):
    raise _blocked("SalaryAdvance", target.id, "DELETE", "Salary advances cannot be deleted")


def _check_withdrawal_update(mapper, connection, target):
    state = inspect(target)
    for field in WITHDRAWAL_FROZEN_FIELDS:
        hist = getattr(state.attrs, field).history
        if hist.has_changes() and hist.deleted:
            raise _blocked(
                "WithdrawalRequest", target.id, "UPDATE",
                f"{field} cannot change after the request is created",
            )


def _check_withdrawal_delete(mapper, connection, target):
    raise _blocked(
        "WithdrawalRequest", target.id, "DELETE",
        "Withdrawal requests cannot be deleted; cancel or reject instead",
    )


def _listeners():
    from ledger_kernel.models.advance import SalaryAdvance
    from ledger_kernel.models.audit_event import AuditEvent
    from ledger_kernel.models.ledger_entry import LedgerEntry
    from ledger_kernel.models.withdrawal import WithdrawalRequest

    return (
        (LedgerEntry, "before_update", _check_ledger_entry_update),
        (LedgerEntry, "before_delete", _check_ledger_entry_delete),
        (AuditEvent, "before_update", _check_audit_event_update),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (SalaryAdvance, "before_update", _check_salary_advance_update),
        (SalaryAdvance, "before_delete", _check_salary_advance_delete),
        (WithdrawalRequest, "before_update", _check_withdrawal_update),
        (WithdrawalRequest, "before_delete", _check_withdrawal_delete),
    )


def register_immutability_listeners():
    """
    Register all append-only enforcement listeners (idempotent).

    Call after models are importable and before any database work begins.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove append-only enforcement listeners.

    WARNING: Only use this in tests that deliberately violate the rules.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
