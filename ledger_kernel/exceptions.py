"""
Typed exception hierarchy for the ledger kernel.

Every error has a typed class, a machine-readable ``code`` class attribute,
and carries its context as attributes rather than only in the message.

    LedgerKernelError (base)
    |
    +-- EmployeeError
    |   +-- EmployeeNotFoundError
    |   +-- EmployeeInactiveError
    |
    +-- LedgerError
    |   +-- DuplicateEventError
    |   +-- InvalidAmountError
    |   +-- InvalidBackfillRangeError
    |
    +-- BalanceError
    |   +-- InsufficientBalanceError
    |
    +-- WithdrawalError
    |   +-- WithdrawalNotFoundError
    |   +-- InvalidChannelError
    |   +-- ApprovalRequiredError
    |
    +-- AdvanceError
    |   +-- AdvanceNotFoundError
    |   +-- AdvancePaymentNotFoundError
    |   +-- InvalidPaymentAmountError
    |
    +-- ApprovalError
    |   +-- ApprovalNotFoundError
    |   +-- InvalidApprovalDetailsError
    |   +-- SegregationOfDutiesError
    |
    +-- InvalidStateTransitionError
    +-- NotificationFailureError
    +-- AuditChainBrokenError
    +-- ImmutabilityViolationError

Handling:

    try:
        orchestrator.request_withdrawal(...)
    except InsufficientBalanceError as e:
        return {"error": e.code, "available": str(e.available)}

DuplicateEventError is the idempotent outcome of a ledger append.  The
LedgerStore reports it as ``AppendStatus.ALREADY_EXISTS`` and only raises it
from ``append_strict``.  NotificationFailureError is only ever logged.
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Employee-related exceptions


class EmployeeError(LedgerKernelError):
    """Base exception for employee lookup errors."""

    code: str = "EMPLOYEE_ERROR"


class EmployeeNotFoundError(EmployeeError):
    """Employee with given ID was not found."""

    code: str = "EMPLOYEE_NOT_FOUND"

    def __init__(self, employee_id: str):
        self.employee_id = employee_id
        super().__init__(f"Employee not found: {employee_id}")


class EmployeeInactiveError(EmployeeError):
    """Employee exists but is not active."""

    code: str = "EMPLOYEE_INACTIVE"

    def __init__(self, employee_id: str):
        self.employee_id = employee_id
        super().__init__(f"Employee is not active: {employee_id}")


# Ledger-related exceptions


class LedgerError(LedgerKernelError):
    """Base exception for ledger store errors."""

    code: str = "LEDGER_ERROR"


class DuplicateEventError(LedgerError):
    """A ledger entry with this reference key already exists."""

    code: str = "DUPLICATE_EVENT"

    def __init__(self, reference_key: str):
        self.reference_key = reference_key
        super().__init__(f"Ledger event already recorded: {reference_key}")


class InvalidAmountError(LedgerError):
    """Amount is zero, negative, or has the wrong sign for its kind."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: Decimal, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class InvalidBackfillRangeError(LedgerError):
    """Backfill range is inverted or reaches into the future."""

    code: str = "INVALID_BACKFILL_RANGE"

    def __init__(self, start: str, end: str, reason: str):
        self.start = start
        self.end = end
        self.reason = reason
        super().__init__(f"Invalid backfill range {start}..{end}: {reason}")


# Balance-related exceptions


class BalanceError(LedgerKernelError):
    """Base exception for balance errors."""

    code: str = "BALANCE_ERROR"


class InsufficientBalanceError(BalanceError):
    """Requested amount exceeds the employee's available-to-request balance."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, employee_id: str, requested: Decimal, available: Decimal):
        self.employee_id = employee_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient balance: requested {requested}, "
            f"you can only request {available}. Pending withdrawals are "
            f"already reserved against your balance."
        )


# Withdrawal-related exceptions


class WithdrawalError(LedgerKernelError):
    """Base exception for withdrawal errors."""

    code: str = "WITHDRAWAL_ERROR"


class WithdrawalNotFoundError(WithdrawalError):
    """Withdrawal request with given ID was not found."""

    code: str = "WITHDRAWAL_NOT_FOUND"

    def __init__(self, withdrawal_id: str):
        self.withdrawal_id = withdrawal_id
        super().__init__(f"Withdrawal request not found: {withdrawal_id}")


class InvalidChannelError(WithdrawalError):
    """Payout channel is not one of the configured channels."""

    code: str = "INVALID_CHANNEL"

    def __init__(self, channel: str, allowed: tuple[str, ...]):
        self.channel = channel
        self.allowed = allowed
        super().__init__(
            f"Invalid withdrawal channel '{channel}'; allowed: {', '.join(allowed)}"
        )


class ApprovalRequiredError(WithdrawalError):
    """High-value withdrawal cannot move until its approval request is approved."""

    code: str = "APPROVAL_REQUIRED"

    def __init__(self, withdrawal_id: str, approval_request_id: str):
        self.withdrawal_id = withdrawal_id
        self.approval_request_id = approval_request_id
        super().__init__(
            f"Withdrawal {withdrawal_id} requires approval request "
            f"{approval_request_id} to be approved first"
        )


# Advance-related exceptions


class AdvanceError(LedgerKernelError):
    """Base exception for salary advance errors."""

    code: str = "ADVANCE_ERROR"


class AdvanceNotFoundError(AdvanceError):
    """Salary advance with given ID was not found."""

    code: str = "ADVANCE_NOT_FOUND"

    def __init__(self, advance_id: str):
        self.advance_id = advance_id
        super().__init__(f"Salary advance not found: {advance_id}")


class AdvancePaymentNotFoundError(AdvanceError):
    """Advance payment with given ID was not found."""

    code: str = "ADVANCE_PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Advance payment not found: {payment_id}")


class InvalidPaymentAmountError(AdvanceError):
    """Deduction is outside [minimum, maximum] for this advance."""

    code: str = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, amount: Decimal, minimum: Decimal, maximum: Decimal):
        self.amount = amount
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Invalid advance payment {amount}: must be between "
            f"{minimum} and {maximum}"
        )


# Approval-related exceptions


class ApprovalError(LedgerKernelError):
    """Base exception for approval workflow errors."""

    code: str = "APPROVAL_ERROR"


class ApprovalNotFoundError(ApprovalError):
    """Approval request with given ID was not found."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class InvalidApprovalDetailsError(ApprovalError):
    """Approval details payload does not parse for its request type."""

    code: str = "INVALID_APPROVAL_DETAILS"

    def __init__(self, request_type: str, reason: str):
        self.request_type = request_type
        self.reason = reason
        super().__init__(f"Invalid details for '{request_type}': {reason}")


class SegregationOfDutiesError(ApprovalError):
    """The same actor tried to sign off both approval stages."""

    code: str = "SEGREGATION_OF_DUTIES"

    def __init__(self, request_id: str, actor_id: str):
        self.request_id = request_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} already approved request {request_id} "
            f"at the admin stage"
        )


# Cross-cutting exceptions


class InvalidStateTransitionError(LedgerKernelError):
    """Entity is not in the state the requested transition requires."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current: str,
        attempted: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} {entity_type} {entity_id} from state '{current}'"
        )


class NotificationFailureError(LedgerKernelError):
    """Notification could not be delivered. Logged, never raised to callers."""

    code: str = "NOTIFICATION_FAILURE"

    def __init__(self, phone: str, reason: str):
        self.phone = phone
        self.reason = reason
        super().__init__(f"Notification to {phone} failed: {reason}")


class AuditChainBrokenError(LedgerKernelError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class ImmutabilityViolationError(LedgerKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
