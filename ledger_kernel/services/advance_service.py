"""
SalaryAdvanceTracker -- advance activation and repayment.

Responsibility:
    Turns a fully approved "Salary Advance" request into an active advance
    with a disbursement credit, and walks its repayments through
    ``record -> approve | reject``.  Approved repayments debit the ledger and
    reduce ``remaining_balance`` until the advance is paid off.

Architecture position:
    Kernel > Services.  Registered with the ApprovalWorkflow as the
    "Salary Advance" handler.  Writes the ledger only through LedgerStore.

Invariants enforced:
    - An advance exists only for an approved request, at most one per
      request (UNIQUE approval_request_id plus the disbursement key).
    - remaining_balance changes only on payment approval, never increases
      and never drops below zero.
    - Payment approval holds the employee's balance lock so two approvals
      cannot both read the same remaining balance.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.db.types import ZERO, round_money, to_money
from ledger_kernel.domain.advance import (
    PAYMENT_TRANSITIONS,
    AdvanceStatus,
    PaymentStatus,
    apply_repayment,
    deduction_bounds,
)
from ledger_kernel.domain.approval import (
    ApprovalRequestView,
    ApprovalStage,
    ApprovalType,
    parse_details,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.ledger import (
    LedgerEntryKind,
    advance_disbursement_key,
    advance_payment_key,
    positive_amount,
)
from ledger_kernel.exceptions import (
    AdvanceNotFoundError,
    AdvancePaymentNotFoundError,
    InvalidApprovalDetailsError,
    InvalidPaymentAmountError,
    InvalidStateTransitionError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.advance import AdvancePayment, SalaryAdvance
from ledger_kernel.models.approval import ApprovalRequestModel
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.employee import Employee
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_kernel.services.notifier import (
    NotificationDispatcher,
    advance_disbursed_message,
    advance_paid_off_message,
)

logger = get_logger("services.advance")


class SalaryAdvanceTracker:
    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        ledger: LedgerStore,
        auditor: AuditorService | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._dispatcher = dispatcher or NotificationDispatcher()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_advance(self, advance_id: UUID, refresh: bool = False) -> SalaryAdvance:
        """
        Raises:
            AdvanceNotFoundError: No such advance.
        """
        stmt = select(SalaryAdvance).where(SalaryAdvance.id == advance_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        advance = self._session.execute(stmt).scalar_one_or_none()
        if advance is None:
            raise AdvanceNotFoundError(str(advance_id))
        return advance

    def get_payment(self, payment_id: UUID, refresh: bool = False) -> AdvancePayment:
        """
        Raises:
            AdvancePaymentNotFoundError: No such payment.
        """
        stmt = select(AdvancePayment).where(AdvancePayment.id == payment_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        payment = self._session.execute(stmt).scalar_one_or_none()
        if payment is None:
            raise AdvancePaymentNotFoundError(str(payment_id))
        return payment

    def get_active_advance(self, employee_id: UUID) -> SalaryAdvance | None:
        """The employee's most recent active advance, if any."""
        return self._session.execute(
            select(SalaryAdvance)
            .where(SalaryAdvance.employee_id == employee_id)
            .where(SalaryAdvance.status == AdvanceStatus.ACTIVE.value)
            .order_by(SalaryAdvance.created_at.desc(), SalaryAdvance.id)
            .limit(1)
        ).scalar_one_or_none()

    def get_by_approval(self, approval_request_id: UUID) -> SalaryAdvance | None:
        return self._session.execute(
            select(SalaryAdvance).where(SalaryAdvance.approval_request_id == approval_request_id)
        ).scalar_one_or_none()

    def list_payments(
        self,
        advance_id: UUID,
        status: PaymentStatus | None = None,
    ) -> list[AdvancePayment]:
        stmt = select(AdvancePayment).where(AdvancePayment.advance_id == advance_id)
        if status is not None:
            stmt = stmt.where(AdvancePayment.status == status.value)
        stmt = stmt.order_by(AdvancePayment.created_at, AdvancePayment.id)
        return list(self._session.execute(stmt).scalars())

    def pending_payments_total(self, advance_id: UUID) -> Decimal:
        total = self._session.execute(
            select(func.coalesce(func.sum(AdvancePayment.amount_paid), ZERO))
            .where(AdvancePayment.advance_id == advance_id)
            .where(AdvancePayment.status == PaymentStatus.PENDING.value)
        ).scalar_one()
        return round_money(Decimal(total))

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def _not_activated(self, approval_request_id: UUID, reason: str) -> Literal[False]:
        logger.warning(
            "advance_not_activated",
            extra={"approval_request_id": str(approval_request_id), "reason": reason},
        )
        return False

    def activate_advance(
        self,
        approval_request_id: UUID,
        actor_id: UUID,
    ) -> SalaryAdvance | Literal[False]:
        """
        Create the advance for an approved request and disburse it.

        Returns False (and logs why) when the request is missing, not
        approved, not a salary advance, or carries unusable details.
        Activating the same request again returns the existing advance.
        """
        request = self._session.get(ApprovalRequestModel, approval_request_id)
        if request is None:
            return self._not_activated(approval_request_id, "request_not_found")
        if request.request_type != ApprovalType.SALARY_ADVANCE.value:
            return self._not_activated(approval_request_id, "wrong_request_type")
        if request.stage != ApprovalStage.APPROVED.value:
            return self._not_activated(approval_request_id, f"stage_{request.stage}")

        try:
            details = parse_details(request.request_type, request.details)
        except InvalidApprovalDetailsError as exc:
            return self._not_activated(approval_request_id, exc.reason)

        employee = self._session.get(Employee, details.employee_id)
        if employee is None:
            return self._not_activated(approval_request_id, "employee_not_found")

        self._ledger.lock_employee(employee.id)
        existing = self.get_by_approval(approval_request_id)
        if existing is not None:
            logger.info(
                "advance_already_active",
                extra={"advance_id": str(existing.id), "approval_request_id": str(approval_request_id)},
            )
            return existing

        amount = round_money(details.advance_amount)
        savepoint = self._session.begin_nested()
        try:
            advance = SalaryAdvance(
                employee_id=employee.id,
                approval_request_id=approval_request_id,
                original_amount=amount,
                remaining_balance=amount,
                minimum_payment=round_money(details.minimum_payment),
                reason=details.reason or None,
                status=AdvanceStatus.ACTIVE.value,
                created_by_id=actor_id,
            )
            self._session.add(advance)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            existing = self.get_by_approval(approval_request_id)
            if existing is None:
                raise
            return existing

        self._ledger.append(
            employee_id=employee.id,
            kind=LedgerEntryKind.ADVANCE_DISBURSEMENT,
            amount=amount,
            reference_key=advance_disbursement_key(approval_request_id),
            effective_date=self._clock.today(),
            actor_id=actor_id,
            source_id=advance.id,
            metadata={"approval_request_id": str(approval_request_id)},
        )
        self._auditor.record(
            entity_type="SalaryAdvance",
            entity_id=advance.id,
            action=AuditAction.ADVANCE_ACTIVATED,
            actor_id=actor_id,
            payload={
                "employee_id": employee.id,
                "approval_request_id": approval_request_id,
                "original_amount": amount,
                "minimum_payment": advance.minimum_payment,
            },
        )
        logger.info(
            "advance_activated",
            extra={
                "advance_id": str(advance.id),
                "employee_id": str(employee.id),
                "amount": str(amount),
            },
        )
        self._dispatcher.queue(
            employee.phone,
            advance_disbursed_message(employee.name, amount, self._config.currency),
            message_type="advance_disbursed",
            recipient_name=employee.name,
        )
        return advance

    # "Salary Advance" approval handler

    def on_approved(self, request: ApprovalRequestView, actor_id: UUID) -> SalaryAdvance | Literal[False]:
        return self.activate_advance(request.request_id, actor_id)

    def on_rejected(self, request: ApprovalRequestView, actor_id: UUID, reason: str) -> None:
        logger.info(
            "advance_request_rejected",
            extra={"approval_request_id": str(request.request_id), "reason": reason},
        )

    # ------------------------------------------------------------------
    # Repayments
    # ------------------------------------------------------------------

    def _require_active(self, advance: SalaryAdvance, attempted: str) -> None:
        if advance.advance_status != AdvanceStatus.ACTIVE:
            raise InvalidStateTransitionError(
                "SalaryAdvance", str(advance.id), advance.status, attempted,
            )

    def record_payment(
        self,
        advance_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        salary_request_id: UUID | None = None,
    ) -> AdvancePayment:
        """
        Record a pending repayment.  remaining_balance is untouched until
        the payment is approved, but pending payments reserve their share of
        it: the amount may not exceed what is left unreserved.

        Raises:
            InvalidAmountError: Non-positive or sub-cent amount.
            InvalidPaymentAmountError: Amount above the unreserved balance.
            InvalidStateTransitionError: Advance is not active.
        """
        money = positive_amount(amount, "advance payment")
        advance = self.get_advance(advance_id)
        self._ledger.lock_employee(advance.employee_id)
        advance = self.get_advance(advance.id, refresh=True)
        self._require_active(advance, "record_payment")

        unreserved = max(
            round_money(advance.remaining_balance) - self.pending_payments_total(advance.id),
            ZERO,
        )
        if money > unreserved:
            logger.warning(
                "advance_payment_exceeds_balance",
                extra={
                    "advance_id": str(advance.id),
                    "amount": str(money),
                    "unreserved": str(unreserved),
                },
            )
            raise InvalidPaymentAmountError(money, ZERO, unreserved)

        payment = AdvancePayment(
            advance_id=advance.id,
            amount_paid=money,
            salary_request_id=salary_request_id,
            status=PaymentStatus.PENDING.value,
            created_by_id=actor_id,
        )
        self._session.add(payment)
        self._session.flush()

        self._auditor.record(
            entity_type="AdvancePayment",
            entity_id=payment.id,
            action=AuditAction.ADVANCE_PAYMENT_RECORDED,
            actor_id=actor_id,
            payload={"advance_id": advance.id, "amount_paid": money},
        )
        logger.info(
            "advance_payment_recorded",
            extra={"payment_id": str(payment.id), "advance_id": str(advance.id), "amount": str(money)},
        )
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
        Validate a deduction from a salary payout and record it as pending.

        The deduction must lie between the minimum payment and the smaller of
        the unreserved remaining balance and the salary being paid.  When
        less than the minimum remains, the remainder itself is the floor.

        Raises:
            InvalidPaymentAmountError: Amount outside the admissible range.
            InvalidStateTransitionError: Advance is not active.
        """
        money = to_money(amount)
        salary = to_money(salary_amount)
        advance = self.get_advance(advance_id)
        self._require_active(advance, "deduct")

        bounds = deduction_bounds(
            remaining_balance=round_money(advance.remaining_balance),
            minimum_payment=round_money(advance.minimum_payment),
            salary_amount=salary,
            pending_payments=self.pending_payments_total(advance.id),
        )
        if bounds.is_empty or not bounds.admits(money):
            logger.warning(
                "advance_deduction_out_of_range",
                extra={
                    "advance_id": str(advance.id),
                    "amount": str(money),
                    "floor": str(bounds.floor),
                    "ceiling": str(bounds.ceiling),
                },
            )
            raise InvalidPaymentAmountError(money, bounds.floor, bounds.ceiling)
        return self.record_payment(advance.id, money, actor_id, salary_request_id)

    def _transition_payment(
        self,
        payment: AdvancePayment,
        target: PaymentStatus,
        attempted: str,
        values: dict,
    ) -> AdvancePayment:
        current = payment.payment_status
        if target not in PAYMENT_TRANSITIONS[current]:
            raise InvalidStateTransitionError(
                "AdvancePayment", str(payment.id), current.value, attempted,
            )
        result = self._session.execute(
            update(AdvancePayment)
            .where(AdvancePayment.id == payment.id)
            .where(AdvancePayment.status == current.value)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        refreshed = self.get_payment(payment.id, refresh=True)
        if result.rowcount != 1:
            raise InvalidStateTransitionError(
                "AdvancePayment", str(payment.id), refreshed.status, attempted,
            )
        return refreshed

    def approve_payment(self, payment_id: UUID, approved_by: UUID) -> AdvancePayment:
        """
        Approve a pending repayment: debit the ledger and reduce the advance.
        The debit never exceeds the remaining balance.

        Raises:
            AdvancePaymentNotFoundError: No such payment.
            InvalidStateTransitionError: Payment not pending or advance not active.
        """
        payment = self.get_payment(payment_id)
        advance = self.get_advance(payment.advance_id)
        self._ledger.lock_employee(advance.employee_id)
        advance = self.get_advance(advance.id, refresh=True)
        self._require_active(advance, "apply_payment")

        now = self._clock.now()
        payment = self._transition_payment(
            payment,
            PaymentStatus.APPROVED,
            "approve",
            {"approved_by": approved_by, "approved_at": now, "updated_by_id": approved_by},
        )
        outcome = apply_repayment(
            round_money(advance.remaining_balance), round_money(payment.amount_paid),
        )
        amount = outcome.applied

        self._ledger.append(
            employee_id=advance.employee_id,
            kind=LedgerEntryKind.ADVANCE_REPAYMENT,
            amount=amount,
            reference_key=advance_payment_key(payment.id),
            effective_date=self._clock.today(),
            actor_id=approved_by,
            source_id=payment.id,
            metadata={"advance_id": str(advance.id)},
        )

        advance.remaining_balance = outcome.remaining_balance
        advance.updated_by_id = approved_by
        if outcome.paid_off:
            advance.status = AdvanceStatus.PAID_OFF.value
            advance.paid_off_at = now
        self._session.flush()

        self._auditor.record(
            entity_type="AdvancePayment",
            entity_id=payment.id,
            action=AuditAction.ADVANCE_PAYMENT_APPROVED,
            actor_id=approved_by,
            payload={
                "advance_id": advance.id,
                "amount_paid": round_money(payment.amount_paid),
                "amount_applied": amount,
                "remaining_balance": outcome.remaining_balance,
            },
        )
        logger.info(
            "advance_payment_approved",
            extra={
                "payment_id": str(payment.id),
                "advance_id": str(advance.id),
                "amount": str(amount),
                "remaining_balance": str(outcome.remaining_balance),
            },
        )

        if outcome.paid_off:
            self._auditor.record(
                entity_type="SalaryAdvance",
                entity_id=advance.id,
                action=AuditAction.ADVANCE_PAID_OFF,
                actor_id=approved_by,
                payload={"original_amount": advance.original_amount},
            )
            logger.info(
                "advance_paid_off",
                extra={"advance_id": str(advance.id), "employee_id": str(advance.employee_id)},
            )
            employee = self._session.get(Employee, advance.employee_id)
            if employee is not None:
                self._dispatcher.queue(
                    employee.phone,
                    advance_paid_off_message(employee.name),
                    message_type="advance_paid_off",
                    recipient_name=employee.name,
                )
        return payment

    def reject_payment(self, payment_id: UUID, rejected_by: UUID, reason: str) -> AdvancePayment:
        """
        ``pending -> rejected``; the advance is unchanged.

        Raises:
            InvalidStateTransitionError: Payment not pending.
        """
        payment = self._transition_payment(
            self.get_payment(payment_id),
            PaymentStatus.REJECTED,
            "reject",
            {"rejected_by": rejected_by, "rejection_reason": reason, "updated_by_id": rejected_by},
        )
        self._auditor.record(
            entity_type="AdvancePayment",
            entity_id=payment.id,
            action=AuditAction.ADVANCE_PAYMENT_REJECTED,
            actor_id=rejected_by,
            payload={"advance_id": payment.advance_id, "reason": reason},
        )
        logger.info(
            "advance_payment_rejected",
            extra={"payment_id": str(payment.id), "advance_id": str(payment.advance_id)},
        )
        return payment
