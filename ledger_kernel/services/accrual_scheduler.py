"""
AccrualScheduler -- daily salary credits, live and backfill.

Responsibility:
    For a given calendar date, append exactly one DAILY_SALARY credit per
    active salaried employee who works that day.  Re-running the same date
    (retried cron, manual trigger, backfill) never double-credits.

Architecture position:
    Kernel > Services.  Writes only through LedgerStore.  Never commits; the
    orchestrator (or the CLI) owns the transaction.

Invariants enforced:
    - Idempotency rests on the reference key
      ``DAILY_SALARY:{employee_id}:{date}``, not on "did I run" flags.
    - daily_credit = round2(monthly_salary / working_days_per_month).
    - No credits on an employee's rest days (default Sunday) and none for
      dates after today.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.ledger import (
    LedgerEntryKind,
    daily_credit,
    daily_salary_key,
    iter_dates,
    month_bounds,
)
from ledger_kernel.exceptions import InvalidBackfillRangeError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.employee_service import EmployeeService
from ledger_kernel.services.ledger_store import LedgerStore

logger = get_logger("services.accrual")

# Accruals are system actions; the scheduler acts as this actor unless told otherwise
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


class SkipReason(str, Enum):
    REST_DAY = "rest_day"
    ALREADY_CREDITED = "already_credited"


@dataclass(frozen=True)
class SkippedAccrual:
    employee_id: UUID
    reason: SkipReason


@dataclass(frozen=True)
class AccrualResult:
    """Outcome of one accrual run for one date."""

    run_date: date
    processed_count: int
    credited_total: Decimal = ZERO
    skipped: tuple[SkippedAccrual, ...] = field(default_factory=tuple)

    def skipped_for(self, reason: SkipReason) -> list[UUID]:
        return [s.employee_id for s in self.skipped if s.reason == reason]

    def to_dict(self) -> dict:
        return {
            "run_date": self.run_date.isoformat(),
            "processed_count": self.processed_count,
            "credited_total": str(self.credited_total),
            "skipped": [
                {"employee_id": str(s.employee_id), "reason": s.reason.value}
                for s in self.skipped
            ],
        }


class AccrualScheduler:
    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        ledger: LedgerStore,
        employees: EmployeeService,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config
        self._ledger = ledger
        self._employees = employees
        self._clock = clock or SystemClock()

    def run_daily_accrual(
        self,
        run_date: date,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> AccrualResult:
        """
        Credit every accruable employee for ``run_date``.

        Raises:
            InvalidBackfillRangeError: ``run_date`` is in the future.
        """
        today = self._clock.today()
        if run_date > today:
            raise InvalidBackfillRangeError(
                run_date.isoformat(), run_date.isoformat(), "cannot accrue a future date",
            )

        default_policy = self._config.rest_day_policy
        is_backfill = run_date < today
        processed = 0
        credited_total = ZERO
        skipped: list[SkippedAccrual] = []

        for employee in self._employees.list_accruable():
            policy = self._employees.rest_day_policy(employee, default_policy)
            if policy.is_rest_day(run_date):
                skipped.append(SkippedAccrual(employee.id, SkipReason.REST_DAY))
                continue

            amount = daily_credit(employee.monthly_salary, self._config.working_days_per_month)
            if amount <= ZERO:
                # Salaries under half a unit per day round to nothing
                logger.warning(
                    "accrual_rounds_to_zero",
                    extra={"employee_id": str(employee.id), "monthly_salary": str(employee.monthly_salary)},
                )
                continue

            result = self._ledger.append(
                employee_id=employee.id,
                kind=LedgerEntryKind.DAILY_SALARY,
                amount=amount,
                reference_key=daily_salary_key(employee.id, run_date),
                effective_date=run_date,
                actor_id=actor_id,
                metadata={
                    "monthly_salary": str(employee.monthly_salary),
                    "working_days_per_month": self._config.working_days_per_month,
                    "backfill": is_backfill,
                },
            )
            if result.appended:
                processed += 1
                credited_total += amount
            else:
                skipped.append(SkippedAccrual(employee.id, SkipReason.ALREADY_CREDITED))

        result = AccrualResult(
            run_date=run_date,
            processed_count=processed,
            credited_total=credited_total,
            skipped=tuple(skipped),
        )
        logger.info(
            "accrual_run_completed",
            extra={
                "run_date": run_date.isoformat(),
                "processed_count": processed,
                "skipped_count": len(skipped),
                "credited_total": str(credited_total),
                "backfill": is_backfill,
            },
        )
        return result

    def backfill_range(
        self,
        start: date,
        end: date,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> list[AccrualResult]:
        """
        Run every date from ``start`` to ``end`` inclusive.

        Raises:
            InvalidBackfillRangeError: ``start > end`` or ``end`` is in the future.
        """
        if start > end:
            raise InvalidBackfillRangeError(start.isoformat(), end.isoformat(), "start is after end")
        if end > self._clock.today():
            raise InvalidBackfillRangeError(start.isoformat(), end.isoformat(), "end is in the future")

        results = [self.run_daily_accrual(day, actor_id) for day in iter_dates(start, end)]
        logger.info(
            "accrual_backfill_completed",
            extra={
                "start": start.isoformat(),
                "end": end.isoformat(),
                "days": len(results),
                "processed_count": sum(r.processed_count for r in results),
            },
        )
        return results

    def backfill_month(
        self,
        year: int,
        month: int,
        up_to: date | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> list[AccrualResult]:
        """
        Backfill a calendar month, stopping at ``up_to`` or today if earlier.

        Raises:
            InvalidBackfillRangeError: The month starts after the cut-off.
        """
        first, last = month_bounds(year, month)
        cutoff = min(last, up_to or last, self._clock.today())
        return self.backfill_range(first, cutoff, actor_id)
