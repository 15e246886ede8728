"""
Configuration loader (``ledger_config.loader``).

Loads a YAML configuration file and parses it into a frozen ``LedgerConfig``.
The single public entry point for runtime config is
``ledger_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema's ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import LedgerConfig, NotifierConfig
from ledger_kernel.domain.ledger import Weekday


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, key: str) -> Decimal | None:
    """Parse an optional money value; floats are read through their string form."""
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{key} is not a number: {value!r}") from exc


def parse_rest_days(value: Any) -> tuple[Weekday, ...]:
    if value is None:
        return (Weekday.SUNDAY,)
    names = value.split(",") if isinstance(value, str) else list(value)
    try:
        return tuple(Weekday(str(n).strip().lower()) for n in names if str(n).strip())
    except ValueError as exc:
        raise ValueError(f"default_rest_days contains an unknown weekday: {value!r}") from exc


def parse_notifier(data: dict[str, Any] | None) -> NotifierConfig:
    data = data or {}
    return NotifierConfig(
        kind=data.get("kind", "logging"),
        url=data.get("url"),
        timeout_seconds=float(data.get("timeout_seconds", 10.0)),
        sender_name=data.get("sender_name", "ledger"),
        api_key_env=data.get("api_key_env"),
    )


def parse_config(data: dict[str, Any], checksum: str | None = None) -> LedgerConfig:
    """
    Parse a ``LedgerConfig`` from a dict.  Missing keys take schema defaults.
    """
    accrual = data.get("accrual", {})
    withdrawals = data.get("withdrawals", {})
    approvals = data.get("approvals", {})

    channels = tuple(str(c).upper() for c in withdrawals.get("channels", ("ZENGAPAY", "CASH")))

    return LedgerConfig(
        name=data.get("name", "default"),
        version=int(data.get("version", 1)),
        currency=str(data.get("currency", "UGX")).upper(),
        working_days_per_month=int(accrual.get("working_days_per_month", 26)),
        default_rest_days=parse_rest_days(accrual.get("default_rest_days")),
        high_value_withdrawal_threshold=parse_decimal(
            withdrawals.get("high_value_threshold"), "withdrawals.high_value_threshold",
        ),
        withdrawal_channels=channels,
        default_withdrawal_channel=str(
            withdrawals.get("default_channel", channels[0] if channels else "")
        ).upper(),
        request_ref_prefix=withdrawals.get("request_ref_prefix", "WR"),
        require_distinct_approvers=bool(approvals.get("require_distinct_approvers", True)),
        notifier=parse_notifier(data.get("notifier")),
        checksum=checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the parsed YAML, for change detection."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def load_config(path: Path) -> LedgerConfig:
    data = load_yaml_file(path)
    return parse_config(data, checksum=compute_checksum(data))
