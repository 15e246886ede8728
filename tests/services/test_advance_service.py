"""
Salary advance lifecycle tests.

Covers:
- Activation after final approval: disbursement credit, advance row, audit
- Rejected or unapproved requests never activate
- Activation is idempotent per approval request
- Repayments: record -> approve | reject, remaining balance, paid-off
- Salary deduction bounds
- Disbursement and paid-off notifications
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.advance import AdvanceStatus, PaymentStatus
from ledger_kernel.domain.ledger import LedgerEntryKind, advance_disbursement_key
from ledger_kernel.exceptions import (
    AdvancePaymentNotFoundError,
    EmployeeInactiveError,
    InvalidAmountError,
    InvalidApprovalDetailsError,
    InvalidPaymentAmountError,
    InvalidStateTransitionError,
)
from ledger_kernel.models.advance import AdvancePayment
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.employee import EmployeeStatus


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def employee(make_employee):
    return make_employee(name="Peter Okello", monthly_salary="780000")


@pytest.fixture
def approved_advance(orchestrator, employee, test_actor_id, admin_id, finance_id):
    """Factory: submit, admin-approve and finance-approve an advance."""

    def _advance(amount="500000", minimum="50000"):
        request = orchestrator.submit_salary_advance(
            employee.id, amount, minimum, test_actor_id, reason="School fees",
        )
        orchestrator.admin_approve(request.request_id, admin_id)
        decision = orchestrator.finance_approve(request.request_id, finance_id)
        return decision.activation

    return _advance


def _pay(orchestrator, advance_id, amount, actor_id, approver_id):
    payment = orchestrator.record_advance_payment(advance_id, amount, actor_id)
    return orchestrator.approve_advance_payment(payment.id, approver_id)


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class TestSubmitSalaryAdvance:
    def test_request_carries_typed_details(self, orchestrator, employee, test_actor_id):
        request = orchestrator.submit_salary_advance(employee.id, "500000", "50000", test_actor_id)

        assert request.request_type == "Salary Advance"
        assert request.title == "Salary advance for Peter Okello"
        assert request.amount == Decimal("500000")
        details = request.parsed_details()
        assert details.employee_id == employee.id
        assert details.minimum_payment == Decimal("50000")

    def test_minimum_above_amount(self, orchestrator, employee, test_actor_id):
        with pytest.raises(InvalidApprovalDetailsError):
            orchestrator.submit_salary_advance(employee.id, "50000", "60000", test_actor_id)

    def test_inactive_employee(self, orchestrator, employee, test_actor_id):
        orchestrator.set_employee_status(employee.id, EmployeeStatus.INACTIVE, test_actor_id)
        with pytest.raises(EmployeeInactiveError):
            orchestrator.submit_salary_advance(employee.id, "500000", "50000", test_actor_id)

    def test_no_money_moves_before_final_approval(
        self, orchestrator, employee, test_actor_id, admin_id,
    ):
        request = orchestrator.submit_salary_advance(employee.id, "500000", "50000", test_actor_id)
        orchestrator.admin_approve(request.request_id, admin_id)

        assert orchestrator.get_balance(employee.id).ledger_balance == 0
        assert orchestrator.get_active_advance(employee.id) is None


# ---------------------------------------------------------------------------
# Activation
# ---------------------------------------------------------------------------


class TestActivation:
    def test_finance_approval_disburses(self, orchestrator, employee, approved_advance):
        advance = approved_advance()

        assert advance.advance_status == AdvanceStatus.ACTIVE
        assert advance.original_amount == Decimal("500000")
        assert advance.remaining_balance == Decimal("500000")
        assert advance.minimum_payment == Decimal("50000")
        assert advance.reason == "School fees"
        assert orchestrator.get_balance(employee.id).ledger_balance == Decimal("500000.00")
        assert orchestrator.get_active_advance(employee.id).id == advance.id

        entry = orchestrator.ledger.get_by_reference(
            advance_disbursement_key(advance.approval_request_id)
        )
        assert entry.entry_kind == LedgerEntryKind.ADVANCE_DISBURSEMENT
        assert entry.source_id == advance.id

    def test_activation_is_audited(self, orchestrator, approved_advance):
        advance = approved_advance()
        trace = orchestrator.auditor.get_trace("SalaryAdvance", advance.id)
        assert trace.actions == [AuditAction.ADVANCE_ACTIVATED]
        assert trace.entries[0].payload["original_amount"] == "500000"

    def test_activation_is_idempotent(self, orchestrator, employee, approved_advance, finance_id):
        advance = approved_advance()

        again = orchestrator.activate_advance(advance.approval_request_id, finance_id)

        assert again.id == advance.id
        assert orchestrator.get_balance(employee.id).ledger_balance == Decimal("500000.00")

    def test_rejected_request_never_activates(
        self, orchestrator, employee, test_actor_id, admin_id, finance_id, captured_logs,
    ):
        request = orchestrator.submit_salary_advance(employee.id, "500000", "50000", test_actor_id)
        orchestrator.admin_reject(request.request_id, admin_id, "Probation period")

        assert orchestrator.activate_advance(request.request_id, finance_id) is False
        assert orchestrator.get_active_advance(employee.id) is None
        assert orchestrator.get_balance(employee.id).ledger_balance == 0

        not_activated = [r for r in captured_logs() if r["message"] == "advance_not_activated"]
        assert not_activated[-1]["reason"] == "stage_rejected"

    def test_pending_request_never_activates(
        self, orchestrator, employee, test_actor_id, finance_id,
    ):
        request = orchestrator.submit_salary_advance(employee.id, "500000", "50000", test_actor_id)
        assert orchestrator.activate_advance(request.request_id, finance_id) is False

    def test_other_request_types_never_activate(self, orchestrator, test_actor_id, finance_id):
        request = orchestrator.submit_approval("Office Supplies", "1000", test_actor_id)
        assert orchestrator.activate_advance(request.request_id, finance_id) is False

    def test_missing_request(self, orchestrator, finance_id):
        assert orchestrator.activate_advance(uuid4(), finance_id) is False


# ---------------------------------------------------------------------------
# Repayments
# ---------------------------------------------------------------------------


class TestRepayments:
    """500,000 advance, 50,000 minimum."""

    def test_recorded_payment_does_not_touch_advance(
        self, orchestrator, approved_advance, test_actor_id,
    ):
        advance = approved_advance()
        payment = orchestrator.record_advance_payment(advance.id, "50000", test_actor_id)

        assert payment.payment_status == PaymentStatus.PENDING
        assert orchestrator.advances.get_advance(advance.id, refresh=True).remaining_balance == Decimal("500000")

    def test_approved_payment_reduces_remaining_and_balance(
        self, orchestrator, employee, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance()

        payment = _pay(orchestrator, advance.id, "50000", test_actor_id, finance_id)

        assert payment.payment_status == PaymentStatus.APPROVED
        assert payment.approved_by == finance_id
        refreshed = orchestrator.advances.get_advance(advance.id, refresh=True)
        assert refreshed.remaining_balance == Decimal("450000")
        assert orchestrator.get_balance(employee.id).ledger_balance == Decimal("450000.00")

        debits = orchestrator.balances.entries(employee.id, kind=LedgerEntryKind.ADVANCE_REPAYMENT)
        assert [d.amount for d in debits] == [Decimal("-50000")]
        assert debits[0].source_id == payment.id

    def test_repaid_in_full(
        self, orchestrator, employee, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance()
        remaining = []
        for _ in range(10):
            _pay(orchestrator, advance.id, "50000", test_actor_id, finance_id)
            remaining.append(orchestrator.advances.get_advance(advance.id, refresh=True).remaining_balance)

        assert remaining == [Decimal(450000 - 50000 * i) for i in range(10)]
        paid_off = orchestrator.advances.get_advance(advance.id, refresh=True)
        assert paid_off.advance_status == AdvanceStatus.PAID_OFF
        assert paid_off.paid_off_at is not None
        assert orchestrator.get_active_advance(employee.id) is None
        assert orchestrator.get_balance(employee.id).ledger_balance == 0
        assert orchestrator.auditor.get_trace("SalaryAdvance", advance.id).last_action == (
            AuditAction.ADVANCE_PAID_OFF
        )

    def test_payment_above_remaining_is_refused(
        self, orchestrator, employee, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance(amount="100000", minimum="10000")

        with pytest.raises(InvalidPaymentAmountError) as exc_info:
            orchestrator.record_advance_payment(advance.id, "150000", test_actor_id)
        assert exc_info.value.maximum == Decimal("100000")
        assert orchestrator.list_advance_payments(advance.id) == []

        _pay(orchestrator, advance.id, "100000", test_actor_id, finance_id)
        refreshed = orchestrator.advances.get_advance(advance.id, refresh=True)
        assert refreshed.remaining_balance == 0
        assert refreshed.advance_status == AdvanceStatus.PAID_OFF
        assert orchestrator.get_balance(employee.id).ledger_balance == Decimal("0.00")

    def test_oversized_pending_payment_debits_only_remaining(
        self, session, orchestrator, employee, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance(amount="100000", minimum="50000")
        legacy = AdvancePayment(
            advance_id=advance.id,
            amount_paid=Decimal("400000"),
            status=PaymentStatus.PENDING.value,
            created_by_id=test_actor_id,
        )
        session.add(legacy)
        session.flush()

        orchestrator.approve_advance_payment(legacy.id, finance_id)

        debits = orchestrator.balances.entries(employee.id, kind=LedgerEntryKind.ADVANCE_REPAYMENT)
        assert [d.amount for d in debits] == [Decimal("-100000")]
        assert orchestrator.get_balance(employee.id).ledger_balance == Decimal("0.00")
        assert orchestrator.advances.get_advance(advance.id, refresh=True).advance_status == (
            AdvanceStatus.PAID_OFF
        )

    def test_paid_off_advance_refuses_payments(
        self, orchestrator, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance(amount="50000", minimum="50000")
        _pay(orchestrator, advance.id, "50000", test_actor_id, finance_id)

        with pytest.raises(InvalidStateTransitionError):
            orchestrator.record_advance_payment(advance.id, "10000", test_actor_id)

    def test_pending_payments_reserve_the_remainder(
        self, orchestrator, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance(amount="50000", minimum="20000")
        first = orchestrator.record_advance_payment(advance.id, "30000", test_actor_id)

        with pytest.raises(InvalidPaymentAmountError) as exc_info:
            orchestrator.record_advance_payment(advance.id, "30000", test_actor_id)
        assert exc_info.value.maximum == Decimal("20000")

        second = orchestrator.record_advance_payment(advance.id, "20000", test_actor_id)
        orchestrator.approve_advance_payment(first.id, finance_id)
        orchestrator.approve_advance_payment(second.id, finance_id)
        assert orchestrator.advances.get_advance(advance.id, refresh=True).advance_status == (
            AdvanceStatus.PAID_OFF
        )

    def test_rejected_payment_releases_its_reservation(
        self, orchestrator, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance(amount="50000", minimum="50000")
        first = orchestrator.record_advance_payment(advance.id, "50000", test_actor_id)
        orchestrator.reject_advance_payment(first.id, finance_id, "Duplicate")

        second = orchestrator.record_advance_payment(advance.id, "50000", test_actor_id)
        assert second.payment_status == PaymentStatus.PENDING

    def test_reject_payment(self, orchestrator, approved_advance, test_actor_id, finance_id):
        advance = approved_advance()
        payment = orchestrator.record_advance_payment(advance.id, "50000", test_actor_id)

        rejected = orchestrator.reject_advance_payment(payment.id, finance_id, "Wrong amount")

        assert rejected.payment_status == PaymentStatus.REJECTED
        assert rejected.rejected_by == finance_id
        assert rejected.rejection_reason == "Wrong amount"
        assert orchestrator.advances.get_advance(advance.id, refresh=True).remaining_balance == Decimal("500000")
        with pytest.raises(InvalidStateTransitionError):
            orchestrator.approve_advance_payment(payment.id, finance_id)

    def test_payment_cannot_be_approved_twice(
        self, orchestrator, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance()
        payment = _pay(orchestrator, advance.id, "50000", test_actor_id, finance_id)
        with pytest.raises(InvalidStateTransitionError):
            orchestrator.approve_advance_payment(payment.id, finance_id)
        assert orchestrator.advances.get_advance(advance.id, refresh=True).remaining_balance == Decimal("450000")

    def test_non_positive_payment(self, orchestrator, approved_advance, test_actor_id):
        advance = approved_advance()
        with pytest.raises(InvalidAmountError):
            orchestrator.record_advance_payment(advance.id, "0", test_actor_id)

    def test_sub_cent_payment(self, orchestrator, approved_advance, test_actor_id):
        advance = approved_advance()
        with pytest.raises(InvalidAmountError):
            orchestrator.record_advance_payment(advance.id, "0.004", test_actor_id)
        assert orchestrator.list_advance_payments(advance.id) == []

    def test_unknown_payment(self, orchestrator, finance_id):
        with pytest.raises(AdvancePaymentNotFoundError):
            orchestrator.approve_advance_payment(uuid4(), finance_id)

    def test_list_payments(self, orchestrator, approved_advance, test_actor_id, finance_id):
        advance = approved_advance()
        first = _pay(orchestrator, advance.id, "50000", test_actor_id, finance_id)
        second = orchestrator.record_advance_payment(advance.id, "60000", test_actor_id)

        assert {p.id for p in orchestrator.list_advance_payments(advance.id)} == {first.id, second.id}
        pending = orchestrator.advances.list_payments(advance.id, PaymentStatus.PENDING)
        assert [p.id for p in pending] == [second.id]


class TestSalaryDeduction:
    """Deductions lie between the minimum and the smaller of remaining and salary."""

    def test_deduction_within_bounds(self, orchestrator, approved_advance, test_actor_id):
        advance = approved_advance()
        payment = orchestrator.build_salary_deduction(advance.id, "50000", "300000", test_actor_id)
        assert payment.payment_status == PaymentStatus.PENDING
        assert payment.amount_paid == Decimal("50000")

    def test_below_minimum(self, orchestrator, approved_advance, test_actor_id):
        advance = approved_advance()
        with pytest.raises(InvalidPaymentAmountError) as exc_info:
            orchestrator.build_salary_deduction(advance.id, "40000", "300000", test_actor_id)
        assert exc_info.value.minimum == Decimal("50000")
        assert exc_info.value.maximum == Decimal("300000")

    def test_above_salary(self, orchestrator, approved_advance, test_actor_id):
        advance = approved_advance()
        with pytest.raises(InvalidPaymentAmountError):
            orchestrator.build_salary_deduction(advance.id, "350000", "300000", test_actor_id)

    def test_pending_payments_reserve_remaining(
        self, orchestrator, approved_advance, test_actor_id,
    ):
        advance = approved_advance()
        orchestrator.record_advance_payment(advance.id, "450000", test_actor_id)

        with pytest.raises(InvalidPaymentAmountError) as exc_info:
            orchestrator.build_salary_deduction(advance.id, "60000", "300000", test_actor_id)
        assert exc_info.value.maximum == Decimal("50000")

    def test_final_instalment_below_minimum(
        self, orchestrator, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance(amount="120000", minimum="50000")
        _pay(orchestrator, advance.id, "50000", test_actor_id, finance_id)
        _pay(orchestrator, advance.id, "50000", test_actor_id, finance_id)

        with pytest.raises(InvalidPaymentAmountError):
            orchestrator.build_salary_deduction(advance.id, "10000", "300000", test_actor_id)
        payment = orchestrator.build_salary_deduction(advance.id, "20000", "300000", test_actor_id)
        orchestrator.approve_advance_payment(payment.id, finance_id)

        assert orchestrator.advances.get_advance(advance.id, refresh=True).advance_status == (
            AdvanceStatus.PAID_OFF
        )


class TestAdvanceNotifications:
    def test_disbursement_and_payoff_messages(
        self, orchestrator, notifier, approved_advance, test_actor_id, finance_id,
    ):
        advance = approved_advance(amount="50000", minimum="50000")
        assert len(notifier.sent) == 1
        phone, message = notifier.sent[0]
        assert phone == "+256700000001"
        assert "Peter Okello" in message
        assert "UGX 50,000" in message
        assert "DISBURSED" in message

        _pay(orchestrator, advance.id, "50000", test_actor_id, finance_id)
        assert len(notifier.sent) == 2
        assert "fully repaid" in notifier.sent[1][1]

    def test_rejection_sends_nothing(
        self, orchestrator, notifier, employee, test_actor_id, admin_id,
    ):
        request = orchestrator.submit_salary_advance(employee.id, "500000", "50000", test_actor_id)
        orchestrator.admin_reject(request.request_id, admin_id, "No")
        assert notifier.sent == []
