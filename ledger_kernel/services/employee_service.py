"""
EmployeeService -- the narrow employee seam the ledger needs.

HR owns employee records.  The ledger only registers, looks up, activates or
deactivates employees, and lists who is eligible for accrual.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, to_money
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.ledger import RestDayPolicy
from ledger_kernel.exceptions import (
    EmployeeInactiveError,
    EmployeeNotFoundError,
    InvalidAmountError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.employee import Employee, EmployeeStatus
from ledger_kernel.services.auditor_service import AuditorService

logger = get_logger("services.employee")


class EmployeeService:
    def __init__(
        self,
        session: Session,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)

    def register(
        self,
        *,
        employee_number: str,
        name: str,
        monthly_salary: Decimal | int | str,
        actor_id: UUID,
        phone: str | None = None,
        rest_days: str | list[str] | None = None,
        status: EmployeeStatus = EmployeeStatus.ACTIVE,
    ) -> Employee:
        """
        Register an employee.

        Raises:
            InvalidAmountError: Negative salary.
            ValueError: Unknown weekday in ``rest_days``.
            IntegrityError: Duplicate employee_number.
        """
        salary = to_money(monthly_salary)
        if salary < ZERO:
            raise InvalidAmountError(salary, "monthly salary cannot be negative")

        serialized_rest_days = (
            RestDayPolicy.parse(rest_days).serialize() if rest_days else None
        )
        employee = Employee(
            employee_number=employee_number,
            name=name,
            phone=phone,
            monthly_salary=salary,
            status=EmployeeStatus(status).value,
            rest_days=serialized_rest_days,
            created_by_id=actor_id,
        )
        self._session.add(employee)
        try:
            self._session.flush()
        except IntegrityError:
            logger.warning(
                "employee_number_conflict",
                extra={"employee_number": employee_number},
            )
            raise

        self._auditor.record(
            entity_type="Employee",
            entity_id=employee.id,
            action=AuditAction.EMPLOYEE_REGISTERED,
            actor_id=actor_id,
            payload={
                "employee_number": employee_number,
                "monthly_salary": salary,
                "status": employee.status,
            },
        )
        logger.info(
            "employee_registered",
            extra={"employee_id": str(employee.id), "employee_number": employee_number},
        )
        return employee

    def get(self, employee_id: UUID) -> Employee:
        """
        Raises:
            EmployeeNotFoundError: No such employee.
        """
        employee = self._session.get(Employee, employee_id)
        if employee is None:
            raise EmployeeNotFoundError(str(employee_id))
        return employee

    def get_active(self, employee_id: UUID) -> Employee:
        """
        Raises:
            EmployeeNotFoundError: No such employee.
            EmployeeInactiveError: Employee is inactive.
        """
        employee = self.get(employee_id)
        if not employee.is_active:
            raise EmployeeInactiveError(str(employee_id))
        return employee

    def set_status(self, employee_id: UUID, status: EmployeeStatus, actor_id: UUID) -> Employee:
        employee = self.get(employee_id)
        previous = employee.status
        if previous == status.value:
            return employee
        employee.status = status.value
        employee.updated_by_id = actor_id
        self._session.flush()
        self._auditor.record(
            entity_type="Employee",
            entity_id=employee.id,
            action=AuditAction.EMPLOYEE_STATUS_CHANGED,
            actor_id=actor_id,
            payload={"from": previous, "to": status.value},
        )
        logger.info(
            "employee_status_changed",
            extra={"employee_id": str(employee_id), "from": previous, "to": status.value},
        )
        return employee

    def list_accruable(self) -> list[Employee]:
        """Active employees with a positive monthly salary, in a stable order."""
        return list(
            self._session.execute(
                select(Employee)
                .where(Employee.status == EmployeeStatus.ACTIVE.value)
                .where(Employee.monthly_salary > 0)
                .order_by(Employee.employee_number)
            ).scalars()
        )

    def rest_day_policy(self, employee: Employee, default: RestDayPolicy) -> RestDayPolicy:
        return RestDayPolicy.parse(employee.rest_days, default=default)
