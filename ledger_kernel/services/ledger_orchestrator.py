"""
LedgerOrchestrator -- public facade of the ledger kernel.

Responsibility:
    Builds every service on one session, registers the approval activation
    handlers, and gives each public operation its own unit of work: bind a
    logging context, run, commit (or roll back), then send the
    notifications the operation queued.

Architecture position:
    Kernel > Services -- the only entry point callers (HTTP layer, cron, CLI)
    need.  Nothing below this module commits.

Transaction boundary:
    By default every mutating method commits on success and rolls back on
    failure.  With ``auto_commit=False`` the caller owns the transaction and
    calls ``flush_notifications()`` after its own commit.

Usage:
    with session_scope() as session:
        ledger = LedgerOrchestrator(session, get_active_config())
        ledger.run_daily_accrual(date.today())
        snapshot = ledger.get_balance(employee_id)
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Literal, Mapping
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ledger_config import get_active_config
from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.approval import (
    ApprovalRequestView,
    ApprovalStage,
    ApprovalType,
    SalaryAdvanceDetails,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.ledger import BalanceSnapshot
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.advance import AdvancePayment, SalaryAdvance
from ledger_kernel.models.employee import Employee, EmployeeStatus
from ledger_kernel.models.withdrawal import WithdrawalRequest
from ledger_kernel.selectors.balance_selector import BalanceSelector, StatementLine
from ledger_kernel.services.accrual_scheduler import (
    SYSTEM_ACTOR_ID,
    AccrualResult,
    AccrualScheduler,
)
from ledger_kernel.services.advance_service import SalaryAdvanceTracker
from ledger_kernel.services.approval_service import ApprovalDecision, ApprovalWorkflow
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.employee_service import EmployeeService
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_kernel.services.notifier import (
    NotificationDispatcher,
    NotificationResult,
    Notifier,
    build_notifier,
)
from ledger_kernel.services.withdrawal_service import WithdrawalReservationManager

logger = get_logger("services.orchestrator")


class LedgerOrchestrator:
    """
    Wires the ledger services and owns transaction boundaries.

    All services share the session, clock, auditor and notification
    dispatcher held here.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit

        self._dispatcher = NotificationDispatcher(
            notifier or build_notifier(self._config.notifier)
        )
        self._auditor = AuditorService(session, self._clock)
        self._ledger = LedgerStore(session, self._auditor, self._clock)
        self._balances = BalanceSelector(session)
        self._employees = EmployeeService(session, self._auditor, self._clock)
        self._accruals = AccrualScheduler(
            session, self._config, self._ledger, self._employees, self._clock,
        )
        self._approvals = ApprovalWorkflow(session, self._config, self._auditor, self._clock)
        self._withdrawals = WithdrawalReservationManager(
            session,
            self._config,
            self._ledger,
            self._employees,
            approvals=self._approvals,
            auditor=self._auditor,
            dispatcher=self._dispatcher,
            clock=self._clock,
        )
        self._advances = SalaryAdvanceTracker(
            session,
            self._config,
            self._ledger,
            auditor=self._auditor,
            dispatcher=self._dispatcher,
            clock=self._clock,
        )
        self._approvals.register_handler(ApprovalType.SALARY_ADVANCE.value, self._advances)
        self._approvals.register_handler(ApprovalType.WITHDRAWAL.value, self._withdrawals)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def auditor(self) -> AuditorService:
        return self._auditor

    @property
    def ledger(self) -> LedgerStore:
        return self._ledger

    @property
    def balances(self) -> BalanceSelector:
        return self._balances

    @property
    def employees(self) -> EmployeeService:
        return self._employees

    @property
    def accruals(self) -> AccrualScheduler:
        return self._accruals

    @property
    def approvals(self) -> ApprovalWorkflow:
        return self._approvals

    @property
    def withdrawals(self) -> WithdrawalReservationManager:
        return self._withdrawals

    @property
    def advances(self) -> SalaryAdvanceTracker:
        return self._advances

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self, operation: str, **context: Any) -> Iterator[None]:
        mark = len(self._dispatcher.pending)
        with LogContext.bind(correlation_id=uuid4(), **context):
            t0 = time.monotonic()
            try:
                yield
                if self._auto_commit:
                    self._session.commit()
            except Exception:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self._session.rollback()
                self._dispatcher.discard(since=mark)
                logger.error(
                    "ledger_operation_failed",
                    extra={"operation": operation, "duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(
                "ledger_operation_completed",
                extra={"operation": operation, "duration_ms": duration_ms},
            )
            if self._auto_commit:
                self._dispatcher.flush()

    def flush_notifications(self) -> list[NotificationResult]:
        """Send queued notifications.  Call after committing when auto_commit=False."""
        return self._dispatcher.flush()

    def discard_notifications(self) -> int:
        """Drop queued notifications.  Call after rolling back when auto_commit=False."""
        return self._dispatcher.discard()

    # ------------------------------------------------------------------
    # Balance
    # ------------------------------------------------------------------

    def get_balance(self, employee_id: UUID) -> BalanceSnapshot:
        """
        Current balance, reservations and available-to-request.

        Raises:
            EmployeeNotFoundError: No such employee.
        """
        self._employees.get(employee_id)
        return self._balances.compute_balance(employee_id)

    def statement(
        self,
        employee_id: UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> list[StatementLine]:
        self._employees.get(employee_id)
        return self._balances.statement(employee_id, start, end)

    # ------------------------------------------------------------------
    # Employees
    # ------------------------------------------------------------------

    def register_employee(
        self,
        *,
        employee_number: str,
        name: str,
        monthly_salary: Decimal | int | str,
        actor_id: UUID,
        phone: str | None = None,
        rest_days: str | list[str] | None = None,
    ) -> Employee:
        with self._unit_of_work("register_employee", actor_id=actor_id):
            employee = self._employees.register(
                employee_number=employee_number,
                name=name,
                monthly_salary=monthly_salary,
                actor_id=actor_id,
                phone=phone,
                rest_days=rest_days,
            )
        return employee

    def set_employee_status(
        self,
        employee_id: UUID,
        status: EmployeeStatus,
        actor_id: UUID,
    ) -> Employee:
        with self._unit_of_work("set_employee_status", actor_id=actor_id, employee_id=employee_id):
            employee = self._employees.set_status(employee_id, status, actor_id)
        return employee

    # ------------------------------------------------------------------
    # Accrual
    # ------------------------------------------------------------------

    def run_daily_accrual(
        self,
        run_date: date | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> AccrualResult:
        """Credit every eligible employee for ``run_date`` (default today)."""
        resolved = run_date or self._clock.today()
        with self._unit_of_work("run_daily_accrual", actor_id=actor_id):
            result = self._accruals.run_daily_accrual(resolved, actor_id)
        return result

    def backfill_range(
        self,
        start: date,
        end: date,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> list[AccrualResult]:
        with self._unit_of_work("backfill_range", actor_id=actor_id):
            results = self._accruals.backfill_range(start, end, actor_id)
        return results

    def backfill_month(
        self,
        year: int,
        month: int,
        up_to: date | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> list[AccrualResult]:
        with self._unit_of_work("backfill_month", actor_id=actor_id):
            results = self._accruals.backfill_month(year, month, up_to, actor_id)
        return results

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def request_withdrawal(
        self,
        employee_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        phone: str | None = None,
        channel: str | None = None,
    ) -> WithdrawalRequest:
        """
        Reserve part of the employee's balance for payout.

        Raises:
            InsufficientBalanceError: Amount exceeds available_to_request.
        """
        with self._unit_of_work("request_withdrawal", actor_id=actor_id, employee_id=employee_id):
            withdrawal = self._withdrawals.request_withdrawal(
                employee_id, amount, actor_id, phone=phone, channel=channel,
            )
        return withdrawal

    def approve_withdrawal(self, withdrawal_id: UUID, actor_id: UUID) -> WithdrawalRequest:
        with self._unit_of_work("approve_withdrawal", actor_id=actor_id, request_id=withdrawal_id):
            withdrawal = self._withdrawals.approve_withdrawal(withdrawal_id, actor_id)
        return withdrawal

    def reject_withdrawal(
        self,
        withdrawal_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> WithdrawalRequest:
        with self._unit_of_work("reject_withdrawal", actor_id=actor_id, request_id=withdrawal_id):
            withdrawal = self._withdrawals.reject_withdrawal(withdrawal_id, actor_id, reason)
        return withdrawal

    def cancel_withdrawal(
        self,
        withdrawal_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> WithdrawalRequest:
        with self._unit_of_work("cancel_withdrawal", actor_id=actor_id, request_id=withdrawal_id):
            withdrawal = self._withdrawals.cancel_withdrawal(withdrawal_id, actor_id, reason)
        return withdrawal

    def mark_withdrawal_paid(self, withdrawal_id: UUID, actor_id: UUID) -> WithdrawalRequest:
        with self._unit_of_work("mark_withdrawal_paid", actor_id=actor_id, request_id=withdrawal_id):
            withdrawal = self._withdrawals.mark_paid(withdrawal_id, actor_id)
        return withdrawal

    def reverse_withdrawal(
        self,
        withdrawal_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> WithdrawalRequest:
        with self._unit_of_work("reverse_withdrawal", actor_id=actor_id, request_id=withdrawal_id):
            withdrawal = self._withdrawals.reverse_withdrawal(withdrawal_id, actor_id, reason)
        return withdrawal

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def submit_approval(
        self,
        request_type: str,
        amount: Decimal | int | str,
        requested_by: UUID,
        details: Mapping[str, Any] | None = None,
        title: str | None = None,
    ) -> ApprovalRequestView:
        with self._unit_of_work("submit_approval", actor_id=requested_by):
            request = self._approvals.submit(request_type, amount, requested_by, details, title)
        return request

    def submit_salary_advance(
        self,
        employee_id: UUID,
        advance_amount: Decimal | int | str,
        minimum_payment: Decimal | int | str,
        requested_by: UUID,
        reason: str = "",
    ) -> ApprovalRequestView:
        """
        Open a "Salary Advance" approval request for an active employee.

        Raises:
            EmployeeNotFoundError / EmployeeInactiveError: Bad employee.
            InvalidApprovalDetailsError: Bad amounts.
        """
        with self._unit_of_work("submit_salary_advance", actor_id=requested_by, employee_id=employee_id):
            employee = self._employees.get_active(employee_id)
            details = SalaryAdvanceDetails.parse({
                "employee_id": str(employee_id),
                "advance_amount": str(advance_amount),
                "minimum_payment": str(minimum_payment),
                "reason": reason,
            })
            request = self._approvals.submit(
                ApprovalType.SALARY_ADVANCE.value,
                details.advance_amount,
                requested_by,
                details.to_payload(),
                title=f"Salary advance for {employee.name}",
            )
        return request

    def get_approval(self, request_id: UUID) -> ApprovalRequestView:
        return self._approvals.get_request(request_id)

    def list_pending_approvals(self, stage: ApprovalStage | None = None) -> list[ApprovalRequestView]:
        return self._approvals.list_pending(stage)

    def admin_approve(self, request_id: UUID, actor_id: UUID) -> ApprovalRequestView:
        with self._unit_of_work("admin_approve", actor_id=actor_id, request_id=request_id):
            request = self._approvals.admin_approve(request_id, actor_id)
        return request

    def admin_reject(self, request_id: UUID, actor_id: UUID, reason: str) -> ApprovalRequestView:
        with self._unit_of_work("admin_reject", actor_id=actor_id, request_id=request_id):
            request = self._approvals.admin_reject(request_id, actor_id, reason)
        return request

    def finance_approve(self, request_id: UUID, actor_id: UUID) -> ApprovalDecision:
        """Final approval; the type's activation commits with it."""
        with self._unit_of_work("finance_approve", actor_id=actor_id, request_id=request_id):
            decision = self._approvals.finance_approve(request_id, actor_id)
        return decision

    def finance_reject(self, request_id: UUID, actor_id: UUID, reason: str) -> ApprovalRequestView:
        with self._unit_of_work("finance_reject", actor_id=actor_id, request_id=request_id):
            request = self._approvals.finance_reject(request_id, actor_id, reason)
        return request

    # ------------------------------------------------------------------
    # Salary advances
    # ------------------------------------------------------------------

    def activate_advance(
        self,
        approval_request_id: UUID,
        actor_id: UUID,
    ) -> SalaryAdvance | Literal[False]:
        with self._unit_of_work("activate_advance", actor_id=actor_id, request_id=approval_request_id):
            advance = self._advances.activate_advance(approval_request_id, actor_id)
        return advance

    def get_active_advance(self, employee_id: UUID) -> SalaryAdvance | None:
        return self._advances.get_active_advance(employee_id)

    def list_advance_payments(self, advance_id: UUID) -> list[AdvancePayment]:
        return self._advances.list_payments(advance_id)

    def record_advance_payment(
        self,
        advance_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        salary_request_id: UUID | None = None,
    ) -> AdvancePayment:
        with self._unit_of_work("record_advance_payment", actor_id=actor_id, request_id=advance_id):
            payment = self._advances.record_payment(advance_id, amount, actor_id, salary_request_id)
        return payment

    def build_salary_deduction(
        self,
        advance_id: UUID,
        amount: Decimal | int | str,
        salary_amount: Decimal | int | str,
        actor_id: UUID,
        salary_request_id: UUID | None = None,
    ) -> AdvancePayment:
        """
        Raises:
            InvalidPaymentAmountError: Deduction outside the admissible range.
        """
        with self._unit_of_work("build_salary_deduction", actor_id=actor_id, request_id=advance_id):
            payment = self._advances.build_salary_deduction(
                advance_id, amount, salary_amount, actor_id, salary_request_id,
            )
        return payment

    def approve_advance_payment(self, payment_id: UUID, approved_by: UUID) -> AdvancePayment:
        with self._unit_of_work("approve_advance_payment", actor_id=approved_by, request_id=payment_id):
            payment = self._advances.approve_payment(payment_id, approved_by)
        return payment

    def reject_advance_payment(
        self,
        payment_id: UUID,
        rejected_by: UUID,
        reason: str,
    ) -> AdvancePayment:
        with self._unit_of_work("reject_advance_payment", actor_id=rejected_by, request_id=payment_id):
            payment = self._advances.reject_payment(payment_id, rejected_by, reason)
        return payment

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def validate_audit_chain(self) -> bool:
        """
        Raises:
            AuditChainBrokenError: The chain has been tampered with.
        """
        return self._auditor.validate_chain()
