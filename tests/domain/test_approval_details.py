"""
Approval domain tests.

The stage machine and the per-type details parsers.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ApprovalStage,
    SalaryAdvanceDetails,
    UnknownDetails,
    WithdrawalDetails,
    can_transition,
    is_known_type,
    parse_details,
)
from ledger_kernel.exceptions import InvalidApprovalDetailsError


class TestStageMachine:
    """Admin first, then Finance; terminal stages never move."""

    def test_happy_path(self):
        assert can_transition(ApprovalStage.PENDING_ADMIN, ApprovalStage.PENDING_FINANCE)
        assert can_transition(ApprovalStage.PENDING_FINANCE, ApprovalStage.APPROVED)

    def test_finance_cannot_skip_admin(self):
        assert not can_transition(ApprovalStage.PENDING_ADMIN, ApprovalStage.APPROVED)

    def test_either_pending_stage_may_reject(self):
        assert can_transition(ApprovalStage.PENDING_ADMIN, ApprovalStage.REJECTED)
        assert can_transition(ApprovalStage.PENDING_FINANCE, ApprovalStage.REJECTED)

    @pytest.mark.parametrize("terminal", [ApprovalStage.APPROVED, ApprovalStage.REJECTED])
    def test_terminal_stages_have_no_exits(self, terminal):
        assert APPROVAL_TRANSITIONS[terminal] == frozenset()


class TestSalaryAdvanceDetails:
    def test_parse_valid_payload(self):
        employee_id = uuid4()
        details = parse_details(
            "Salary Advance",
            {
                "employee_id": str(employee_id),
                "advance_amount": "500000",
                "minimum_payment": 50000,
                "reason": "School fees",
                "ignored_extra": True,
            },
        )
        assert isinstance(details, SalaryAdvanceDetails)
        assert details.employee_id == employee_id
        assert details.advance_amount == Decimal("500000")
        assert details.minimum_payment == Decimal("50000")
        assert details.reason == "School fees"

    def test_payload_round_trips(self):
        details = SalaryAdvanceDetails(uuid4(), Decimal("500000"), Decimal("50000"), "fees")
        assert SalaryAdvanceDetails.parse(details.to_payload()) == details

    @pytest.mark.parametrize(
        "payload, fragment",
        [
            ({"advance_amount": "1", "minimum_payment": "1"}, "employee_id"),
            ({"employee_id": "not-a-uuid", "advance_amount": "1", "minimum_payment": "1"}, "UUID"),
            ({"employee_id": "{e}", "advance_amount": "abc", "minimum_payment": "1"}, "number"),
            ({"employee_id": "{e}", "advance_amount": "0", "minimum_payment": "1"}, "positive"),
            ({"employee_id": "{e}", "advance_amount": 1.5, "minimum_payment": "1"}, "decimal"),
            ({"employee_id": "{e}", "advance_amount": "100", "minimum_payment": "0.005"}, "cent"),
            ({"employee_id": "{e}", "advance_amount": "100", "minimum_payment": "200"}, "exceed"),
        ],
    )
    def test_malformed_payload_rejected(self, payload, fragment):
        payload = {k: (str(uuid4()) if v == "{e}" else v) for k, v in payload.items()}
        with pytest.raises(InvalidApprovalDetailsError) as exc_info:
            parse_details("Salary Advance", payload)
        assert fragment in exc_info.value.reason
        assert exc_info.value.request_type == "Salary Advance"


class TestWithdrawalDetails:
    def test_parse(self):
        withdrawal_id, employee_id = uuid4(), uuid4()
        details = parse_details(
            "Withdrawal",
            {"withdrawal_id": str(withdrawal_id), "employee_id": str(employee_id)},
        )
        assert details == WithdrawalDetails(withdrawal_id, employee_id)

    def test_missing_withdrawal_id(self):
        with pytest.raises(InvalidApprovalDetailsError):
            parse_details("Withdrawal", {"employee_id": str(uuid4())})


class TestUnknownTypes:
    """Types without activation logic are accepted verbatim."""

    def test_unknown_type_keeps_raw_payload(self):
        details = parse_details("Office Supplies", {"item": "printer"})
        assert isinstance(details, UnknownDetails)
        assert details.to_payload() == {"item": "printer"}
        assert not is_known_type("Office Supplies")

    def test_none_payload_is_empty(self):
        assert parse_details("Office Supplies", None).to_payload() == {}

    def test_non_mapping_rejected(self):
        with pytest.raises(InvalidApprovalDetailsError):
            parse_details("Office Supplies", ["not", "a", "mapping"])
