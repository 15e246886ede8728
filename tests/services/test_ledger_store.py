"""
LedgerStore tests.

Verifies:
- Appends carry the kind's sign
- A repeated reference key returns the existing row instead of a second entry
- append_strict raises on duplicates
- The per-employee lock row is created once and bumped on every use
- Balance figures derive from the ledger and open reservations only
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_kernel.domain.ledger import LedgerEntryKind
from ledger_kernel.exceptions import DuplicateEventError, InvalidAmountError
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.ledger_entry import BalanceLock, LedgerEntry
from ledger_kernel.selectors.balance_selector import BalanceSelector
from ledger_kernel.services.ledger_store import AppendStatus


def _append(ledger_store, employee_id, kind, amount, key=None, on=date(2024, 1, 1), actor=None):
    return ledger_store.append(
        employee_id=employee_id,
        kind=kind,
        amount=Decimal(amount),
        reference_key=key or f"TEST:{uuid4()}",
        effective_date=on,
        actor_id=actor or uuid4(),
    )


class TestAppend:
    """Entries are appended once per reference key."""

    def test_credit_is_positive(self, ledger_store, make_employee):
        employee = make_employee()
        result = _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "30000")
        assert result.status == AppendStatus.APPENDED
        assert result.appended
        assert result.entry.amount == Decimal("30000")
        assert result.entry.entry_kind == LedgerEntryKind.DAILY_SALARY

    def test_debit_is_negative(self, ledger_store, make_employee):
        employee = make_employee()
        result = _append(ledger_store, employee.id, LedgerEntryKind.WITHDRAWAL_DEBIT, "70000")
        assert result.entry.amount == Decimal("-70000")

    def test_duplicate_key_returns_existing(self, session, ledger_store, make_employee):
        employee = make_employee()
        first = _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "30000", key="K-1")
        second = _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "30000", key="K-1")

        assert second.status == AppendStatus.ALREADY_EXISTS
        assert second.entry.id == first.entry.id
        count = session.execute(
            select(LedgerEntry).where(LedgerEntry.reference_key == "K-1")
        ).scalars().all()
        assert len(count) == 1

    def test_duplicate_does_not_poison_transaction(self, ledger_store, make_employee):
        """The savepoint confines the failed INSERT; later work still succeeds."""
        employee = make_employee()
        _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "100", key="K-2")
        _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "100", key="K-2")
        later = _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "200")
        assert later.appended

    def test_append_strict_raises_on_duplicate(self, ledger_store, make_employee):
        employee = make_employee()
        kwargs = dict(
            employee_id=employee.id,
            kind=LedgerEntryKind.DAILY_SALARY,
            amount=Decimal("100"),
            reference_key="K-3",
            effective_date=date(2024, 1, 1),
            actor_id=uuid4(),
        )
        ledger_store.append_strict(**kwargs)
        with pytest.raises(DuplicateEventError) as exc_info:
            ledger_store.append_strict(**kwargs)
        assert exc_info.value.reference_key == "K-3"

    @pytest.mark.parametrize("amount", ["0", "-10", "0.004", "12.345"])
    def test_non_positive_or_sub_cent_amount_rejected(self, ledger_store, make_employee, amount):
        employee = make_employee()
        with pytest.raises(InvalidAmountError):
            _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, amount)

    def test_float_amount_rejected(self, ledger_store, make_employee):
        employee = make_employee()
        with pytest.raises(TypeError):
            ledger_store.append(
                employee_id=employee.id,
                kind=LedgerEntryKind.DAILY_SALARY,
                amount=0.1,
                reference_key="K-float",
                effective_date=date(2024, 1, 1),
                actor_id=uuid4(),
            )

    def test_append_is_audited(self, ledger_store, auditor_service, make_employee):
        employee = make_employee()
        result = _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "30000")
        trace = auditor_service.get_trace("LedgerEntry", result.entry.id)
        assert trace.actions == [AuditAction.LEDGER_ENTRY_APPENDED]
        assert trace.entries[0].payload["reference_key"] == result.reference_key


class TestBalanceLock:
    def test_lock_row_created_then_bumped(self, session, ledger_store, make_employee):
        employee = make_employee()
        ledger_store.lock_employee(employee.id)
        ledger_store.lock_employee(employee.id)
        ledger_store.lock_employee(employee.id)

        lock = session.execute(
            select(BalanceLock)
            .where(BalanceLock.employee_id == employee.id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        assert lock.version == 3


class TestBalanceSelector:
    """Balance is derived, never stored."""

    def test_balance_sums_signed_entries(self, session, ledger_store, make_employee):
        employee = make_employee()
        _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "30000")
        _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "30000")
        _append(ledger_store, employee.id, LedgerEntryKind.ADVANCE_DISBURSEMENT, "500000")
        _append(ledger_store, employee.id, LedgerEntryKind.ADVANCE_REPAYMENT, "50000")

        snapshot = BalanceSelector(session).compute_balance(employee.id)
        assert snapshot.ledger_balance == Decimal("510000.00")
        assert snapshot.pending_withdrawals == Decimal("0.00")
        assert snapshot.available_to_request == Decimal("510000.00")

    def test_empty_ledger(self, session, make_employee):
        employee = make_employee()
        snapshot = BalanceSelector(session).compute_balance(employee.id)
        assert snapshot.ledger_balance == 0
        assert snapshot.available_to_request == 0

    def test_other_employees_do_not_leak(self, session, ledger_store, make_employee):
        alice, bob = make_employee(name="Alice"), make_employee(name="Bob")
        _append(ledger_store, alice.id, LedgerEntryKind.DAILY_SALARY, "30000")
        assert BalanceSelector(session).ledger_balance(bob.id) == 0

    def test_statement_running_balance(self, session, ledger_store, make_employee):
        employee = make_employee()
        _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "30000", on=date(2024, 1, 1))
        _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "30000", on=date(2024, 1, 2))
        _append(ledger_store, employee.id, LedgerEntryKind.WITHDRAWAL_DEBIT, "10000", on=date(2024, 1, 3))

        selector = BalanceSelector(session)
        lines = selector.statement(employee.id)
        assert [line.running_balance for line in lines] == [
            Decimal("30000.00"), Decimal("60000.00"), Decimal("50000.00"),
        ]

        tail = selector.statement(employee.id, start=date(2024, 1, 2))
        assert len(tail) == 2
        assert tail[0].running_balance == Decimal("60000.00")

    def test_entries_filter_by_kind_and_range(self, session, ledger_store, make_employee):
        employee = make_employee()
        _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "1", on=date(2024, 1, 1))
        _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "1", on=date(2024, 1, 5))
        _append(ledger_store, employee.id, LedgerEntryKind.WITHDRAWAL_DEBIT, "1", on=date(2024, 1, 5))

        selector = BalanceSelector(session)
        assert len(selector.entries(employee.id, kind=LedgerEntryKind.DAILY_SALARY)) == 2
        assert len(selector.entries(employee.id, start=date(2024, 1, 2))) == 2
        assert len(selector.entries(employee.id, end=date(2024, 1, 1))) == 1

    def test_has_entry(self, session, ledger_store, make_employee):
        employee = make_employee()
        _append(ledger_store, employee.id, LedgerEntryKind.DAILY_SALARY, "1", key="K-has")
        selector = BalanceSelector(session)
        assert selector.has_entry("K-has")
        assert not selector.has_entry("K-missing")
