"""
Ledger configuration schema.

The human-authored YAML set is parsed by the loader into these frozen
dataclasses.  Each validates itself on construction so that a bad file fails
at load time rather than during a payroll run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ledger_kernel.domain.ledger import RestDayPolicy, Weekday

NOTIFIER_KINDS = ("logging", "http")


@dataclass(frozen=True)
class NotifierConfig:
    """Where employee messages go."""

    kind: str = "logging"
    url: str | None = None
    timeout_seconds: float = 10.0
    sender_name: str = "ledger"
    api_key_env: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in NOTIFIER_KINDS:
            raise ValueError(
                f"notifier.kind must be one of {NOTIFIER_KINDS}, got {self.kind!r}"
            )
        if self.kind == "http" and not self.url:
            raise ValueError("notifier.url is required when notifier.kind is 'http'")
        if self.timeout_seconds <= 0:
            raise ValueError("notifier.timeout_seconds must be positive")


@dataclass(frozen=True)
class LedgerConfig:
    """Runtime knobs for accrual, withdrawals and approvals."""

    name: str = "default"
    version: int = 1
    currency: str = "UGX"
    working_days_per_month: int = 26
    default_rest_days: tuple[Weekday, ...] = (Weekday.SUNDAY,)
    high_value_withdrawal_threshold: Decimal | None = None
    withdrawal_channels: tuple[str, ...] = ("ZENGAPAY", "CASH")
    default_withdrawal_channel: str = "ZENGAPAY"
    request_ref_prefix: str = "WR"
    require_distinct_approvers: bool = True
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    checksum: str | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.working_days_per_month <= 31:
            raise ValueError(
                f"working_days_per_month must be between 1 and 31, "
                f"got {self.working_days_per_month}"
            )
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"currency must be a 3-letter code, got {self.currency!r}")
        if not self.withdrawal_channels:
            raise ValueError("At least one withdrawal channel is required")
        if self.default_withdrawal_channel not in self.withdrawal_channels:
            raise ValueError(
                f"default_withdrawal_channel {self.default_withdrawal_channel!r} "
                f"is not in withdrawal_channels"
            )
        if (
            self.high_value_withdrawal_threshold is not None
            and self.high_value_withdrawal_threshold <= 0
        ):
            raise ValueError("high_value_withdrawal_threshold must be positive or null")
        if not self.request_ref_prefix:
            raise ValueError("request_ref_prefix must not be empty")
        if len(set(self.default_rest_days)) >= 7:
            raise ValueError("default_rest_days must leave at least one working day")

    @property
    def rest_day_policy(self) -> RestDayPolicy:
        return RestDayPolicy(frozenset(self.default_rest_days))

    def is_high_value(self, amount: Decimal) -> bool:
        threshold = self.high_value_withdrawal_threshold
        return threshold is not None and amount >= threshold
