"""
LedgerStore -- the append-only employee ledger.

Responsibility:
    The only writer of ``LedgerEntry`` rows and of the per-employee balance
    lock.  Every append is one atomic INSERT keyed by a deterministic
    reference key; a collision means the event was already recorded.

Architecture position:
    Kernel > Services.  Used by AccrualScheduler, SalaryAdvanceTracker and
    WithdrawalReservationManager.  Never commits.

Invariants enforced:
    - Idempotency is the UNIQUE reference_key, never check-then-insert.  The
      INSERT runs in a savepoint so a duplicate only rolls back itself.
    - Amount sign always matches the entry kind.
    - ``lock_employee`` serializes balance-dependent decisions per employee.

Failure modes:
    - InvalidAmountError for a zero/negative or sub-cent magnitude.
    - IntegrityError other than a reference-key duplicate (e.g. unknown
      employee on PostgreSQL) propagates.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.ledger import LedgerEntryKind, positive_amount, signed_amount
from ledger_kernel.exceptions import DuplicateEventError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.ledger_entry import BalanceLock, LedgerEntry
from ledger_kernel.services.auditor_service import AuditorService

logger = get_logger("services.ledger_store")


class AppendStatus(str, Enum):
    """Result status of an append."""

    APPENDED = "appended"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class AppendResult:
    status: AppendStatus
    entry: LedgerEntry

    @property
    def appended(self) -> bool:
        return self.status == AppendStatus.APPENDED

    @property
    def reference_key(self) -> str:
        return self.entry.reference_key


class LedgerStore:
    """Append-only ledger writer and per-employee lock holder."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def get_by_reference(self, reference_key: str) -> LedgerEntry | None:
        return self._session.execute(
            select(LedgerEntry).where(LedgerEntry.reference_key == reference_key)
        ).scalar_one_or_none()

    def append(
        self,
        *,
        employee_id: UUID,
        kind: LedgerEntryKind,
        amount: Decimal,
        reference_key: str,
        effective_date: date,
        actor_id: UUID,
        source_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AppendResult:
        """
        Append one entry, or report that its reference key already exists.

        Args:
            amount: Positive magnitude; the sign is taken from ``kind``.

        Returns:
            AppendResult with APPENDED, or ALREADY_EXISTS and the existing row.
        """
        magnitude = positive_amount(amount, f"{kind.value} amount")

        savepoint = self._session.begin_nested()
        try:
            entry = LedgerEntry(
                employee_id=employee_id,
                kind=kind.value,
                amount=signed_amount(kind, magnitude),
                reference_key=reference_key,
                effective_date=effective_date,
                created_at=self._clock.now(),
                created_by_id=actor_id,
                source_id=source_id,
                entry_metadata=metadata,
            )
            self._session.add(entry)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            existing = self.get_by_reference(reference_key)
            if existing is None:
                raise
            logger.info(
                "ledger_entry_already_exists",
                extra={
                    "reference_key": reference_key,
                    "employee_id": str(employee_id),
                    "kind": kind.value,
                },
            )
            return AppendResult(AppendStatus.ALREADY_EXISTS, existing)

        self._auditor.record(
            entity_type="LedgerEntry",
            entity_id=entry.id,
            action=AuditAction.LEDGER_ENTRY_APPENDED,
            actor_id=actor_id,
            payload={
                "employee_id": employee_id,
                "kind": kind.value,
                "amount": entry.amount,
                "reference_key": reference_key,
                "effective_date": effective_date,
            },
        )
        logger.info(
            "ledger_entry_appended",
            extra={
                "reference_key": reference_key,
                "employee_id": str(employee_id),
                "kind": kind.value,
                "amount": str(entry.amount),
            },
        )
        return AppendResult(AppendStatus.APPENDED, entry)

    def append_strict(self, **kwargs: Any) -> LedgerEntry:
        """
        Like ``append`` but a duplicate reference key raises.

        Raises:
            DuplicateEventError: The reference key is already recorded.
        """
        result = self.append(**kwargs)
        if not result.appended:
            raise DuplicateEventError(result.reference_key)
        return result.entry

    # ------------------------------------------------------------------
    # Per-employee serialization
    # ------------------------------------------------------------------

    def _bump_lock(self, employee_id: UUID) -> int:
        result = self._session.execute(
            update(BalanceLock)
            .where(BalanceLock.employee_id == employee_id)
            .values(version=BalanceLock.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def lock_employee(self, employee_id: UUID) -> None:
        """
        Take the employee's balance lock for the rest of the transaction.

        The lock row is created on first use.  Two transactions racing to
        create it resolve through the unique constraint: the loser rolls back
        its savepoint and locks the winner's row.
        """
        if self._bump_lock(employee_id):
            return

        savepoint = self._session.begin_nested()
        try:
            self._session.add(BalanceLock(employee_id=employee_id, version=1))
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "balance_lock_race_retry",
                extra={"employee_id": str(employee_id)},
            )
            if not self._bump_lock(employee_id):
                raise
