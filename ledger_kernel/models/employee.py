"""
Module: ledger_kernel.models.employee
Responsibility: The minimal employee record the ledger needs.  HR owns the
    full employee profile; the ledger only reads salary, status, phone and
    rest days, and always references employees by their stable id.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class EmployeeStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Employee(TrackedBase):
    """
    Employee referenced by every ledger row.

    Guarantees:
        - monthly_salary is never negative (check constraint).
        - employee_number is unique.
        - rest_days is a comma separated list of weekday names, or NULL to
          use the configured default.
    """

    __tablename__ = "employees"

    __table_args__ = (
        CheckConstraint("monthly_salary >= 0", name="ck_employees_salary_non_negative"),
        CheckConstraint(
            "status IN ('active', 'inactive')",
            name="ck_employees_valid_status",
        ),
        Index("idx_employees_status", "status"),
    )

    employee_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    monthly_salary: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0"),
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EmployeeStatus.ACTIVE.value,
    )
    rest_days: Mapped[str | None] = mapped_column(String(100), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.ACTIVE.value

    @property
    def is_accruable(self) -> bool:
        return self.is_active and self.monthly_salary > 0

    def __repr__(self) -> str:
        return f"<Employee {self.employee_number} {self.name} ({self.status})>"
