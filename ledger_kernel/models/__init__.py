"""ORM models for the ledger kernel.  Importing this package registers every table."""

from ledger_kernel.models.advance import AdvancePayment, SalaryAdvance
from ledger_kernel.models.approval import ApprovalRequestModel
from ledger_kernel.models.audit_event import AuditAction, AuditEvent
from ledger_kernel.models.employee import Employee, EmployeeStatus
from ledger_kernel.models.ledger_entry import BalanceLock, LedgerEntry
from ledger_kernel.models.sequence import SequenceCounter
from ledger_kernel.models.withdrawal import WithdrawalRequest

__all__ = [
    "AdvancePayment",
    "ApprovalRequestModel",
    "AuditAction",
    "AuditEvent",
    "BalanceLock",
    "Employee",
    "EmployeeStatus",
    "LedgerEntry",
    "SalaryAdvance",
    "SequenceCounter",
    "WithdrawalRequest",
]
