"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.accrual_scheduler import (
    AccrualResult,
    AccrualScheduler,
    SkippedAccrual,
    SkipReason,
)
from ledger_kernel.services.advance_service import SalaryAdvanceTracker
from ledger_kernel.services.approval_service import ApprovalDecision, ApprovalWorkflow
from ledger_kernel.services.auditor_service import AuditorService, AuditTrace
from ledger_kernel.services.employee_service import EmployeeService
from ledger_kernel.services.ledger_orchestrator import LedgerOrchestrator
from ledger_kernel.services.ledger_store import AppendResult, AppendStatus, LedgerStore
from ledger_kernel.services.notifier import (
    HttpSmsNotifier,
    LoggingNotifier,
    NotificationDispatcher,
    NotificationResult,
    Notifier,
)
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.withdrawal_service import WithdrawalReservationManager

__all__ = [
    "AccrualResult",
    "AccrualScheduler",
    "AppendResult",
    "AppendStatus",
    "ApprovalDecision",
    "ApprovalWorkflow",
    "AuditTrace",
    "AuditorService",
    "EmployeeService",
    "HttpSmsNotifier",
    "LedgerOrchestrator",
    "LedgerStore",
    "LoggingNotifier",
    "NotificationDispatcher",
    "NotificationResult",
    "Notifier",
    "SalaryAdvanceTracker",
    "SequenceService",
    "SkipReason",
    "SkippedAccrual",
    "WithdrawalReservationManager",
]
