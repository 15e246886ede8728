"""
ApprovalWorkflow -- two-stage (Admin -> Finance) approval state machine.

Responsibility:
    Persists approval requests and moves them through
    ``pending_admin -> pending_finance -> approved | rejected``.  On final
    approval or rejection it hands the request to the activation handler
    registered for its type (advance activation, withdrawal authorization).

Architecture position:
    Kernel > Services.  Handlers are registered by the orchestrator so this
    module never imports the services that act on an approval.

Invariants enforced:
    - Every stage move is a compare-and-set UPDATE on ``stage``.  Zero rows
      updated means someone else moved it first: InvalidStateTransitionError.
    - Activation runs in the same transaction as the final stage move.
    - Unknown request types are stored and approved like any other but never
      move money.
    - With ``require_distinct_approvers`` the finance approver differs from
      the admin approver.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.approval import (
    ApprovalRequestView,
    ApprovalStage,
    UnknownDetails,
    can_transition,
    parse_details,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.ledger import positive_amount
from ledger_kernel.exceptions import (
    ApprovalNotFoundError,
    InvalidStateTransitionError,
    SegregationOfDutiesError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.approval import ApprovalRequestModel
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.utils.hashing import to_json_safe

logger = get_logger("services.approval")


class ApprovalHandler(Protocol):
    """Type-specific reaction to a request reaching a terminal stage."""

    def on_approved(self, request: ApprovalRequestView, actor_id: UUID) -> Any:
        ...

    def on_rejected(self, request: ApprovalRequestView, actor_id: UUID, reason: str) -> None:
        ...


@dataclass(frozen=True)
class ApprovalDecision:
    """A final approval and whatever its activation produced."""

    request: ApprovalRequestView
    activation: Any = None


class ApprovalWorkflow:
    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
        handlers: Mapping[str, ApprovalHandler] | None = None,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._handlers: dict[str, ApprovalHandler] = dict(handlers or {})

    def register_handler(self, request_type: str, handler: ApprovalHandler) -> None:
        self._handlers[request_type] = handler

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, request_id: UUID, refresh: bool = False) -> ApprovalRequestModel:
        stmt = select(ApprovalRequestModel).where(ApprovalRequestModel.id == request_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        request = self._session.execute(stmt).scalar_one_or_none()
        if request is None:
            raise ApprovalNotFoundError(str(request_id))
        return request

    def get_request(self, request_id: UUID) -> ApprovalRequestView:
        """
        Raises:
            ApprovalNotFoundError: No such request.
        """
        return self._load(request_id).to_dto()

    def list_pending(self, stage: ApprovalStage | None = None) -> list[ApprovalRequestView]:
        """Requests awaiting a decision, oldest first."""
        if stage is None:
            stages = [ApprovalStage.PENDING_ADMIN.value, ApprovalStage.PENDING_FINANCE.value]
        else:
            stages = [stage.value]
        rows = self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.stage.in_(stages))
            .order_by(ApprovalRequestModel.created_at, ApprovalRequestModel.id)
        ).scalars()
        return [row.to_dto() for row in rows]

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit(
        self,
        request_type: str,
        amount: Decimal | int | str,
        requested_by: UUID,
        details: Mapping[str, Any] | None = None,
        title: str | None = None,
    ) -> ApprovalRequestView:
        """
        Create a request at ``pending_admin``.

        Raises:
            InvalidApprovalDetailsError: Known type with malformed details.
            InvalidAmountError: Non-positive or sub-cent amount.
        """
        money = positive_amount(amount, "approval amount")

        parsed = parse_details(request_type, details)
        if isinstance(parsed, UnknownDetails):
            logger.warning(
                "approval_type_without_activation",
                extra={"request_type": request_type},
            )

        request = ApprovalRequestModel(
            request_type=request_type,
            title=title or f"{request_type} request",
            amount=money,
            requested_by=requested_by,
            stage=ApprovalStage.PENDING_ADMIN.value,
            details=to_json_safe(dict(details or {})),
            created_by_id=requested_by,
        )
        self._session.add(request)
        self._session.flush()

        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request.id,
            action=AuditAction.APPROVAL_SUBMITTED,
            actor_id=requested_by,
            payload={"type": request_type, "amount": money},
        )
        logger.info(
            "approval_submitted",
            extra={
                "approval_request_id": str(request.id),
                "request_type": request_type,
                "amount": str(money),
            },
        )
        return request.to_dto()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _compare_and_set(
        self,
        request: ApprovalRequestModel,
        expected: ApprovalStage,
        target: ApprovalStage,
        attempted: str,
        values: dict[str, Any],
    ) -> ApprovalRequestModel:
        current = ApprovalStage(request.stage)
        if current != expected or not can_transition(current, target):
            raise InvalidStateTransitionError(
                "ApprovalRequest", str(request.id), current.value, attempted,
            )

        result = self._session.execute(
            update(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request.id)
            .where(ApprovalRequestModel.stage == expected.value)
            .values(stage=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        refreshed = self._load(request.id, refresh=True)
        if result.rowcount != 1:
            logger.warning(
                "approval_transition_lost_race",
                extra={
                    "approval_request_id": str(request.id),
                    "expected_stage": expected.value,
                    "actual_stage": refreshed.stage,
                },
            )
            raise InvalidStateTransitionError(
                "ApprovalRequest", str(request.id), refreshed.stage, attempted,
            )
        return refreshed

    def admin_approve(self, request_id: UUID, actor_id: UUID) -> ApprovalRequestView:
        """
        ``pending_admin -> pending_finance``.

        Raises:
            ApprovalNotFoundError: No such request.
            InvalidStateTransitionError: Not at ``pending_admin``.
        """
        request = self._load(request_id)
        request = self._compare_and_set(
            request,
            ApprovalStage.PENDING_ADMIN,
            ApprovalStage.PENDING_FINANCE,
            "admin_approve",
            {
                "admin_approved_at": self._clock.now(),
                "admin_approved_by": actor_id,
                "updated_by_id": actor_id,
            },
        )
        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request.id,
            action=AuditAction.APPROVAL_ADMIN_APPROVED,
            actor_id=actor_id,
            payload={"stage": request.stage},
        )
        logger.info(
            "approval_admin_approved",
            extra={"approval_request_id": str(request.id), "request_type": request.request_type},
        )
        return request.to_dto()

    def finance_approve(self, request_id: UUID, actor_id: UUID) -> ApprovalDecision:
        """
        ``pending_finance -> approved``, then run the type's activation.

        Raises:
            ApprovalNotFoundError: No such request.
            InvalidStateTransitionError: Not at ``pending_finance``.
            SegregationOfDutiesError: Same actor approved the admin stage.
        """
        request = self._load(request_id)
        if (
            self._config.require_distinct_approvers
            and request.admin_approved_by is not None
            and request.admin_approved_by == actor_id
        ):
            logger.warning(
                "approval_segregation_violation",
                extra={"approval_request_id": str(request_id), "actor_id": str(actor_id)},
            )
            raise SegregationOfDutiesError(str(request_id), str(actor_id))

        request = self._compare_and_set(
            request,
            ApprovalStage.PENDING_FINANCE,
            ApprovalStage.APPROVED,
            "finance_approve",
            {
                "finance_approved_at": self._clock.now(),
                "finance_approved_by": actor_id,
                "updated_by_id": actor_id,
            },
        )
        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request.id,
            action=AuditAction.APPROVAL_FINANCE_APPROVED,
            actor_id=actor_id,
            payload={"stage": request.stage},
        )
        logger.info(
            "approval_finance_approved",
            extra={"approval_request_id": str(request.id), "request_type": request.request_type},
        )

        view = request.to_dto()
        handler = self._handlers.get(view.request_type)
        if handler is None:
            logger.warning(
                "approval_approved_without_activation",
                extra={"approval_request_id": str(view.request_id), "request_type": view.request_type},
            )
            return ApprovalDecision(request=view)
        return ApprovalDecision(request=view, activation=handler.on_approved(view, actor_id))

    def _reject(
        self,
        request_id: UUID,
        actor_id: UUID,
        reason: str,
        expected: ApprovalStage,
        attempted: str,
    ) -> ApprovalRequestView:
        request = self._load(request_id)
        request = self._compare_and_set(
            request,
            expected,
            ApprovalStage.REJECTED,
            attempted,
            {
                "rejected_at": self._clock.now(),
                "rejected_by": actor_id,
                "rejection_reason": reason,
                "rejection_stage": expected.value,
                "updated_by_id": actor_id,
            },
        )
        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request.id,
            action=AuditAction.APPROVAL_REJECTED,
            actor_id=actor_id,
            payload={"rejection_stage": expected.value, "reason": reason},
        )
        logger.info(
            "approval_rejected",
            extra={
                "approval_request_id": str(request.id),
                "request_type": request.request_type,
                "rejection_stage": expected.value,
            },
        )

        view = request.to_dto()
        handler = self._handlers.get(view.request_type)
        if handler is not None:
            handler.on_rejected(view, actor_id, reason)
        return view

    def admin_reject(self, request_id: UUID, actor_id: UUID, reason: str) -> ApprovalRequestView:
        """
        ``pending_admin -> rejected``.

        Raises:
            InvalidStateTransitionError: Not at ``pending_admin``.
        """
        return self._reject(request_id, actor_id, reason, ApprovalStage.PENDING_ADMIN, "admin_reject")

    def finance_reject(self, request_id: UUID, actor_id: UUID, reason: str) -> ApprovalRequestView:
        """
        ``pending_finance -> rejected``.

        Raises:
            InvalidStateTransitionError: Not at ``pending_finance``.
        """
        return self._reject(
            request_id, actor_id, reason, ApprovalStage.PENDING_FINANCE, "finance_reject",
        )
