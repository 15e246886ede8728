"""
WithdrawalReservationManager -- withdrawal requests as balance reservations.

Responsibility:
    Admits a withdrawal only if it fits the employee's available-to-request
    balance, and moves it through
    ``pending -> approved -> paid (-> reversed)`` or to ``rejected`` /
    ``cancelled``.  Only payment writes to the ledger.

Architecture position:
    Kernel > Services.  Takes the employee's balance lock through LedgerStore,
    reads through BalanceSelector, submits high-value requests to the
    ApprovalWorkflow, and acts as that workflow's "Withdrawal" handler.

Invariants enforced:
    - Lock, then recompute, then admit: two concurrent requests whose sum
      exceeds the balance can never both be admitted.
    - A pending/approved request reserves its amount from insertion on.
    - Status changes are compare-and-set UPDATEs; an illegal move raises
      InvalidStateTransitionError.
    - Payment appends WITHDRAWAL_DEBIT under ``WITHDRAWAL:{id}``; a repeated
      payment call returns the paid request without a second entry.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.approval import (
    ApprovalRequestView,
    ApprovalStage,
    ApprovalType,
    WithdrawalDetails,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.ledger import (
    LedgerEntryKind,
    positive_amount,
    withdrawal_key,
    withdrawal_reversal_key,
)
from ledger_kernel.domain.withdrawal import (
    WithdrawalStatus,
    can_transition,
    make_request_ref,
)
from ledger_kernel.exceptions import (
    ApprovalRequiredError,
    InsufficientBalanceError,
    InvalidChannelError,
    InvalidStateTransitionError,
    WithdrawalNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.employee import Employee
from ledger_kernel.models.withdrawal import WithdrawalRequest
from ledger_kernel.selectors.balance_selector import BalanceSelector
from ledger_kernel.services.approval_service import ApprovalWorkflow
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.employee_service import EmployeeService
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_kernel.services.notifier import (
    NotificationDispatcher,
    withdrawal_approved_message,
    withdrawal_paid_message,
    withdrawal_rejected_message,
)

logger = get_logger("services.withdrawal")

MAX_REF_ATTEMPTS = 5


class WithdrawalReservationManager:
    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        ledger: LedgerStore,
        employees: EmployeeService,
        approvals: ApprovalWorkflow | None = None,
        auditor: AuditorService | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config
        self._ledger = ledger
        self._employees = employees
        self._approvals = approvals
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._balances = BalanceSelector(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, withdrawal_id: UUID, refresh: bool = False) -> WithdrawalRequest:
        stmt = select(WithdrawalRequest).where(WithdrawalRequest.id == withdrawal_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        withdrawal = self._session.execute(stmt).scalar_one_or_none()
        if withdrawal is None:
            raise WithdrawalNotFoundError(str(withdrawal_id))
        return withdrawal

    def get(self, withdrawal_id: UUID) -> WithdrawalRequest:
        """
        Raises:
            WithdrawalNotFoundError: No such request.
        """
        return self._load(withdrawal_id)

    def list_for_employee(
        self,
        employee_id: UUID,
        status: WithdrawalStatus | None = None,
    ) -> list[WithdrawalRequest]:
        stmt = select(WithdrawalRequest).where(WithdrawalRequest.employee_id == employee_id)
        if status is not None:
            stmt = stmt.where(WithdrawalRequest.status == status.value)
        stmt = stmt.order_by(WithdrawalRequest.created_at, WithdrawalRequest.request_ref)
        return list(self._session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def _resolve_channel(self, channel: str | None) -> str:
        resolved = (channel or self._config.default_withdrawal_channel).strip().upper()
        if resolved not in self._config.withdrawal_channels:
            raise InvalidChannelError(resolved, self._config.withdrawal_channels)
        return resolved

    def _insert_with_unique_ref(self, **fields: Any) -> WithdrawalRequest:
        today = self._clock.today()
        attempt = 0
        while True:
            attempt += 1
            ref = make_request_ref(today, prefix=self._config.request_ref_prefix)
            savepoint = self._session.begin_nested()
            try:
                withdrawal = WithdrawalRequest(request_ref=ref, **fields)
                self._session.add(withdrawal)
                self._session.flush()
                savepoint.commit()
                return withdrawal
            except IntegrityError:
                savepoint.rollback()
                exists = self._session.execute(
                    select(WithdrawalRequest.id).where(WithdrawalRequest.request_ref == ref)
                ).first()
                if exists is None or attempt == MAX_REF_ATTEMPTS:
                    raise
                logger.debug("withdrawal_ref_collision", extra={"request_ref": ref, "attempt": attempt})

    def request_withdrawal(
        self,
        employee_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        phone: str | None = None,
        channel: str | None = None,
    ) -> WithdrawalRequest:
        """
        Reserve ``amount`` for payout.

        The employee's balance lock is held from the balance read until the
        reservation is inserted, so the check cannot be raced.

        Raises:
            InvalidAmountError: Non-positive or sub-cent amount.
            InvalidChannelError: Channel not configured.
            ValueError: No phone given and none on file.
            EmployeeNotFoundError / EmployeeInactiveError: Bad employee.
            InsufficientBalanceError: Amount exceeds available_to_request.
        """
        money = positive_amount(amount, "withdrawal amount")
        resolved_channel = self._resolve_channel(channel)

        employee = self._employees.get_active(employee_id)
        phone_number = (phone or employee.phone or "").strip()
        if not phone_number:
            raise ValueError("A phone number is required for a withdrawal")

        self._ledger.lock_employee(employee_id)
        snapshot = self._balances.compute_balance(employee_id)
        if money > snapshot.available_to_request:
            logger.warning(
                "withdrawal_insufficient_balance",
                extra={
                    "employee_id": str(employee_id),
                    "requested": str(money),
                    "available": str(snapshot.available_to_request),
                },
            )
            raise InsufficientBalanceError(str(employee_id), money, snapshot.available_to_request)

        withdrawal = self._insert_with_unique_ref(
            employee_id=employee_id,
            amount=money,
            phone_number=phone_number,
            channel=resolved_channel,
            status=WithdrawalStatus.PENDING.value,
            created_by_id=actor_id,
        )
        self._auditor.record(
            entity_type="WithdrawalRequest",
            entity_id=withdrawal.id,
            action=AuditAction.WITHDRAWAL_REQUESTED,
            actor_id=actor_id,
            payload={
                "employee_id": employee_id,
                "amount": money,
                "channel": resolved_channel,
                "request_ref": withdrawal.request_ref,
                "available_before": snapshot.available_to_request,
            },
        )

        if self._config.is_high_value(money) and self._approvals is not None:
            approval = self._approvals.submit(
                ApprovalType.WITHDRAWAL.value,
                money,
                requested_by=actor_id,
                details=WithdrawalDetails(withdrawal.id, employee_id).to_payload(),
                title=f"Withdrawal {withdrawal.request_ref}",
            )
            withdrawal.approval_request_id = approval.request_id
            self._session.flush()

        logger.info(
            "withdrawal_requested",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "request_ref": withdrawal.request_ref,
                "employee_id": str(employee_id),
                "amount": str(money),
                "requires_approval": withdrawal.requires_approval,
            },
        )
        return withdrawal

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        withdrawal: WithdrawalRequest,
        target: WithdrawalStatus,
        attempted: str,
        values: dict[str, Any],
    ) -> WithdrawalRequest:
        current = withdrawal.withdrawal_status
        if not can_transition(current, target):
            raise InvalidStateTransitionError(
                "WithdrawalRequest", str(withdrawal.id), current.value, attempted,
            )
        result = self._session.execute(
            update(WithdrawalRequest)
            .where(WithdrawalRequest.id == withdrawal.id)
            .where(WithdrawalRequest.status == current.value)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        refreshed = self._load(withdrawal.id, refresh=True)
        if result.rowcount != 1:
            raise InvalidStateTransitionError(
                "WithdrawalRequest", str(withdrawal.id), refreshed.status, attempted,
            )
        return refreshed

    def _notify(self, withdrawal: WithdrawalRequest, template) -> None:
        employee = self._session.get(Employee, withdrawal.employee_id)
        name = employee.name if employee is not None else "employee"
        self._dispatcher.queue(
            withdrawal.phone_number,
            template(name, withdrawal.amount, self._config.currency, withdrawal.request_ref),
            message_type=f"withdrawal_{withdrawal.status}",
            recipient_name=name,
        )

    def _approval_stage(self, withdrawal: WithdrawalRequest) -> ApprovalStage | None:
        if self._approvals is None or withdrawal.approval_request_id is None:
            return None
        return self._approvals.get_request(withdrawal.approval_request_id).stage

    def approve_withdrawal(self, withdrawal_id: UUID, actor_id: UUID) -> WithdrawalRequest:
        """
        ``pending -> approved``; the amount stays reserved.

        Raises:
            ApprovalRequiredError: High-value request not yet fully approved.
            InvalidStateTransitionError: Not pending.
        """
        withdrawal = self._load(withdrawal_id)
        if withdrawal.requires_approval and self._approval_stage(withdrawal) != ApprovalStage.APPROVED:
            raise ApprovalRequiredError(str(withdrawal_id), str(withdrawal.approval_request_id))
        return self._authorize(withdrawal, actor_id)

    def _authorize(self, withdrawal: WithdrawalRequest, actor_id: UUID) -> WithdrawalRequest:
        withdrawal = self._transition(
            withdrawal,
            WithdrawalStatus.APPROVED,
            "approve",
            {
                "resolved_by": actor_id,
                "resolved_at": self._clock.now(),
                "updated_by_id": actor_id,
            },
        )
        self._auditor.record(
            entity_type="WithdrawalRequest",
            entity_id=withdrawal.id,
            action=AuditAction.WITHDRAWAL_APPROVED,
            actor_id=actor_id,
            payload={"amount": withdrawal.amount},
        )
        logger.info(
            "withdrawal_approved",
            extra={"withdrawal_id": str(withdrawal.id), "request_ref": withdrawal.request_ref},
        )
        self._notify(withdrawal, withdrawal_approved_message)
        return withdrawal

    def reject_withdrawal(
        self,
        withdrawal_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> WithdrawalRequest:
        """
        ``pending|approved -> rejected``; releases the reservation.

        Raises:
            InvalidStateTransitionError: Already resolved.
        """
        withdrawal = self._transition(
            self._load(withdrawal_id),
            WithdrawalStatus.REJECTED,
            "reject",
            {
                "resolved_by": actor_id,
                "resolved_at": self._clock.now(),
                "resolution_reason": reason,
                "updated_by_id": actor_id,
            },
        )
        self._auditor.record(
            entity_type="WithdrawalRequest",
            entity_id=withdrawal.id,
            action=AuditAction.WITHDRAWAL_REJECTED,
            actor_id=actor_id,
            payload={"amount": withdrawal.amount, "reason": reason},
        )
        logger.info(
            "withdrawal_rejected",
            extra={"withdrawal_id": str(withdrawal.id), "request_ref": withdrawal.request_ref},
        )
        self._notify(withdrawal, withdrawal_rejected_message)
        return withdrawal

    def cancel_withdrawal(
        self,
        withdrawal_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> WithdrawalRequest:
        """
        ``pending -> cancelled``; releases the reservation.

        Raises:
            InvalidStateTransitionError: Not pending.
        """
        withdrawal = self._transition(
            self._load(withdrawal_id),
            WithdrawalStatus.CANCELLED,
            "cancel",
            {
                "resolved_by": actor_id,
                "resolved_at": self._clock.now(),
                "resolution_reason": reason,
                "updated_by_id": actor_id,
            },
        )
        self._auditor.record(
            entity_type="WithdrawalRequest",
            entity_id=withdrawal.id,
            action=AuditAction.WITHDRAWAL_CANCELLED,
            actor_id=actor_id,
            payload={"amount": withdrawal.amount, "reason": reason},
        )
        logger.info(
            "withdrawal_cancelled",
            extra={"withdrawal_id": str(withdrawal.id), "request_ref": withdrawal.request_ref},
        )
        return withdrawal

    def mark_paid(self, withdrawal_id: UUID, actor_id: UUID) -> WithdrawalRequest:
        """
        ``approved -> paid`` and debit the ledger.

        Calling it again for a paid request returns it unchanged.

        Raises:
            InvalidStateTransitionError: Not approved (and not already paid).
        """
        withdrawal = self._load(withdrawal_id)
        if withdrawal.withdrawal_status == WithdrawalStatus.PAID:
            logger.info(
                "withdrawal_already_paid",
                extra={"withdrawal_id": str(withdrawal_id), "request_ref": withdrawal.request_ref},
            )
            return withdrawal

        paid_at = self._clock.now()
        withdrawal = self._transition(
            withdrawal,
            WithdrawalStatus.PAID,
            "pay",
            {"paid_at": paid_at, "updated_by_id": actor_id},
        )
        self._ledger.append(
            employee_id=withdrawal.employee_id,
            kind=LedgerEntryKind.WITHDRAWAL_DEBIT,
            amount=withdrawal.amount,
            reference_key=withdrawal_key(withdrawal.id),
            effective_date=self._clock.today(),
            actor_id=actor_id,
            source_id=withdrawal.id,
            metadata={"request_ref": withdrawal.request_ref, "channel": withdrawal.channel},
        )
        self._auditor.record(
            entity_type="WithdrawalRequest",
            entity_id=withdrawal.id,
            action=AuditAction.WITHDRAWAL_PAID,
            actor_id=actor_id,
            payload={"amount": withdrawal.amount, "channel": withdrawal.channel},
        )
        logger.info(
            "withdrawal_paid",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "request_ref": withdrawal.request_ref,
                "amount": str(withdrawal.amount),
            },
        )
        self._notify(withdrawal, withdrawal_paid_message)
        return withdrawal

    def reverse_withdrawal(
        self,
        withdrawal_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> WithdrawalRequest:
        """
        ``paid -> reversed``: the payout failed downstream, credit it back.

        Raises:
            InvalidStateTransitionError: Not paid.
        """
        withdrawal = self._transition(
            self._load(withdrawal_id),
            WithdrawalStatus.REVERSED,
            "reverse",
            {"resolution_reason": reason, "updated_by_id": actor_id},
        )
        self._ledger.append(
            employee_id=withdrawal.employee_id,
            kind=LedgerEntryKind.WITHDRAWAL_REVERSAL,
            amount=withdrawal.amount,
            reference_key=withdrawal_reversal_key(withdrawal.id),
            effective_date=self._clock.today(),
            actor_id=actor_id,
            source_id=withdrawal.id,
            metadata={"request_ref": withdrawal.request_ref, "reason": reason},
        )
        self._auditor.record(
            entity_type="WithdrawalRequest",
            entity_id=withdrawal.id,
            action=AuditAction.WITHDRAWAL_REVERSED,
            actor_id=actor_id,
            payload={"amount": withdrawal.amount, "reason": reason},
        )
        logger.warning(
            "withdrawal_reversed",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "request_ref": withdrawal.request_ref,
                "reason": reason,
            },
        )
        return withdrawal

    # ------------------------------------------------------------------
    # "Withdrawal" approval handler
    # ------------------------------------------------------------------

    def on_approved(self, request: ApprovalRequestView, actor_id: UUID) -> WithdrawalRequest:
        details = request.parsed_details()
        withdrawal = self._load(details.withdrawal_id)
        if withdrawal.withdrawal_status != WithdrawalStatus.PENDING:
            # Cancelled while the approval was in flight
            logger.warning(
                "withdrawal_approval_after_resolution",
                extra={"withdrawal_id": str(withdrawal.id), "status": withdrawal.status},
            )
            return withdrawal
        return self._authorize(withdrawal, actor_id)

    def on_rejected(self, request: ApprovalRequestView, actor_id: UUID, reason: str) -> None:
        details = request.parsed_details()
        withdrawal = self._load(details.withdrawal_id)
        if withdrawal.withdrawal_status == WithdrawalStatus.PENDING:
            self.reject_withdrawal(withdrawal.id, actor_id, reason)
