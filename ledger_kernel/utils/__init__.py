"""Hashing helpers shared by the audit trail and the approval workflow."""

from ledger_kernel.utils.hashing import (
    canonical_json,
    chain_digest,
    payload_digest,
    to_json_safe,
)

__all__ = ["canonical_json", "chain_digest", "payload_digest", "to_json_safe"]
