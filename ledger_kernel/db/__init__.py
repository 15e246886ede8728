"""Persistence: engine and sessions, declarative base, column types, append-only hooks."""

from ledger_kernel.db.base import Base, TrackedBase
from ledger_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from ledger_kernel.db.types import ZERO, UUIDString, round_money, to_money

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "ZERO",
    "create_tables",
    "get_engine",
    "get_session",
    "round_money",
    "session_scope",
    "to_money",
]
