"""
Module: ledger_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listener).
    - hash = H(seq | entity_type | entity_id | action | actor_id |
      payload_hash | prev_hash),
      validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.db.types import UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    LEDGER_ENTRY_APPENDED = "ledger_entry_appended"

    WITHDRAWAL_REQUESTED = "withdrawal_requested"
    WITHDRAWAL_APPROVED = "withdrawal_approved"
    WITHDRAWAL_REJECTED = "withdrawal_rejected"
    WITHDRAWAL_CANCELLED = "withdrawal_cancelled"
    WITHDRAWAL_PAID = "withdrawal_paid"
    WITHDRAWAL_REVERSED = "withdrawal_reversed"

    ADVANCE_ACTIVATED = "advance_activated"
    ADVANCE_PAYMENT_RECORDED = "advance_payment_recorded"
    ADVANCE_PAYMENT_APPROVED = "advance_payment_approved"
    ADVANCE_PAYMENT_REJECTED = "advance_payment_rejected"
    ADVANCE_PAID_OFF = "advance_paid_off"

    APPROVAL_SUBMITTED = "approval_submitted"
    APPROVAL_ADMIN_APPROVED = "approval_admin_approved"
    APPROVAL_FINANCE_APPROVED = "approval_finance_approved"
    APPROVAL_REJECTED = "approval_rejected"

    EMPLOYEE_REGISTERED = "employee_registered"
    EMPLOYEE_STATUS_CHANGED = "employee_status_changed"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
