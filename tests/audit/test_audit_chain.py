"""
Hash-chain tests for the audit trail.

Verifies:
- Every balance-affecting action emits an AuditEvent in the same transaction
- Events link to their predecessor; the first event has no predecessor
- Rewriting or deleting a historical event breaks the chain
- Rolled-back work leaves no audit events behind
"""

from contextlib import contextmanager
from datetime import date

import pytest
from sqlalchemy import select

from ledger_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from ledger_kernel.exceptions import AuditChainBrokenError, InsufficientBalanceError
from ledger_kernel.models.audit_event import AuditAction, AuditEvent


@contextmanager
def disabled_immutability():
    """Disable the ORM append-only listeners so a test can simulate tampering."""
    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


def _events(session):
    return session.execute(select(AuditEvent).order_by(AuditEvent.seq)).scalars().all()


@pytest.fixture
def busy_day(orchestrator, make_employee, test_actor_id, admin_id, finance_id):
    """Accrual, a paid withdrawal and an approved advance."""
    employee = make_employee()
    orchestrator.run_daily_accrual(date(2024, 1, 1))
    withdrawal = orchestrator.request_withdrawal(employee.id, "10000", test_actor_id)
    orchestrator.approve_withdrawal(withdrawal.id, admin_id)
    orchestrator.mark_withdrawal_paid(withdrawal.id, finance_id)
    request = orchestrator.submit_salary_advance(employee.id, "200000", "20000", test_actor_id)
    orchestrator.admin_approve(request.request_id, admin_id)
    orchestrator.finance_approve(request.request_id, finance_id)
    return employee


class TestChainStructure:
    def test_empty_chain_is_valid(self, auditor_service):
        assert auditor_service.validate_chain() is True

    def test_events_link_to_predecessor(self, session, busy_day, auditor_service):
        events = _events(session)

        assert events[0].prev_hash is None
        assert events[0].is_genesis
        for previous, current in zip(events, events[1:]):
            assert current.prev_hash == previous.hash
            assert current.seq > previous.seq
        assert auditor_service.validate_chain() is True

    def test_every_money_movement_is_audited(self, session, busy_day):
        actions = {AuditAction(e.action) for e in _events(session)}
        assert {
            AuditAction.EMPLOYEE_REGISTERED,
            AuditAction.LEDGER_ENTRY_APPENDED,
            AuditAction.WITHDRAWAL_REQUESTED,
            AuditAction.WITHDRAWAL_APPROVED,
            AuditAction.WITHDRAWAL_PAID,
            AuditAction.APPROVAL_SUBMITTED,
            AuditAction.APPROVAL_ADMIN_APPROVED,
            AuditAction.APPROVAL_FINANCE_APPROVED,
            AuditAction.ADVANCE_ACTIVATED,
        } <= actions

    def test_failed_operation_leaves_no_events(self, session, orchestrator, make_employee, test_actor_id):
        employee = make_employee()
        before = len(_events(session))

        with pytest.raises(InsufficientBalanceError):
            orchestrator.request_withdrawal(employee.id, "1", test_actor_id)

        assert len(_events(session)) == before


class TestTamperDetection:
    """Modifications to historical records break the hash chain."""

    def test_rewritten_payload_is_detected(self, session, busy_day, auditor_service):
        target = _events(session)[2]
        with disabled_immutability():
            target.payload = {**(target.payload or {}), "amount": "1"}
            session.flush()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor_service.validate_chain()
        assert exc_info.value.audit_event_id == str(target.id)

    def test_rewritten_action_is_detected(self, session, busy_day, auditor_service):
        target = _events(session)[-1]
        with disabled_immutability():
            target.action = AuditAction.APPROVAL_REJECTED.value
            session.flush()

        with pytest.raises(AuditChainBrokenError):
            auditor_service.validate_chain()

    def test_relinked_event_is_detected(self, session, busy_day, auditor_service):
        events = _events(session)
        with disabled_immutability():
            events[3].prev_hash = events[1].hash
            session.flush()

        with pytest.raises(AuditChainBrokenError):
            auditor_service.validate_chain()

    def test_broken_chain_is_logged_as_critical(self, session, busy_day, auditor_service, captured_logs):
        target = _events(session)[1]
        with disabled_immutability():
            target.hash = "0" * 64
            session.flush()

        with pytest.raises(AuditChainBrokenError):
            auditor_service.validate_chain()

        broken = [r for r in captured_logs() if r["message"] == "audit_chain_broken"]
        assert broken[0]["level"] == "CRITICAL"

    def test_deleted_middle_event_is_detected(self, session, busy_day, auditor_service):
        target = _events(session)[4]
        with disabled_immutability():
            session.delete(target)
            session.flush()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor_service.validate_chain()
        assert exc_info.value.expected_hash == "seq 5"

    def test_deleted_last_event_is_detected(self, session, busy_day, auditor_service):
        events = _events(session)
        with disabled_immutability():
            session.delete(events[-1])
            session.flush()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor_service.validate_chain()
        assert exc_info.value.actual_hash == f"seq {len(events) - 1}"
