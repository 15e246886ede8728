"""
Module: ledger_kernel.models.approval
Responsibility: ORM persistence for two-stage approval requests.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - stage is one of pending_admin, pending_finance, approved, rejected
      (check constraint).  The workflow service moves it with compare-and-set
      UPDATEs so that two racing approvers cannot both win.
    - details holds the JSON payload, parsed per type by
      ``domain.approval.parse_details``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import UUIDString

if TYPE_CHECKING:
    from ledger_kernel.domain.approval import ApprovalRequestView


class ApprovalRequestModel(TrackedBase):
    """Persistent approval request."""

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "stage IN ('pending_admin', 'pending_finance', 'approved', 'rejected')",
            name="ck_approval_requests_valid_stage",
        ),
        Index("idx_approval_requests_stage", "stage", "created_at"),
        Index("idx_approval_requests_type_stage", "type", "stage"),
    )

    request_type: Mapped[str] = mapped_column("type", String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    requested_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    stage: Mapped[str] = mapped_column(String(20), nullable=False, default="pending_admin")
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    admin_approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    admin_approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    finance_approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    finance_approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    rejection_stage: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def __repr__(self) -> str:
        return f"<ApprovalRequest {self.id} {self.request_type} stage={self.stage}>"

    def to_dto(self) -> ApprovalRequestView:
        """Convert ORM model to frozen domain DTO."""
        from ledger_kernel.domain.approval import ApprovalRequestView, ApprovalStage

        return ApprovalRequestView(
            request_id=self.id,
            request_type=self.request_type,
            title=self.title,
            amount=self.amount,
            requested_by=self.requested_by,
            stage=ApprovalStage(self.stage),
            details=dict(self.details or {}),
            created_at=self.created_at,
            admin_approved_at=self.admin_approved_at,
            admin_approved_by=self.admin_approved_by,
            finance_approved_at=self.finance_approved_at,
            finance_approved_by=self.finance_approved_by,
            rejected_at=self.rejected_at,
            rejected_by=self.rejected_by,
            rejection_reason=self.rejection_reason,
            rejection_stage=(
                ApprovalStage(self.rejection_stage) if self.rejection_stage else None
            ),
        )
