"""
Module: ledger_kernel.db.base
Responsibility: Declarative base for every ledger table.
Architecture position: Kernel > DB.  Imported by models/ only.  MUST NOT
    import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Every row has a uuid4 primary key stored through UUIDString.
    - Annotated ``Decimal`` columns are Numeric(38, 9); salaries, advances
      and withdrawals are never floats.
    - Constraint names follow one convention, so the unique keys the ledger
      relies on (reference_key, approval_request_id, request_ref) have
      predictable names on PostgreSQL.
    - TrackedBase rows record who created them and who last changed them.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, MetaData, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ledger_kernel.db.types import UUIDString, money_column_type

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map = {
        Decimal: money_column_type(),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Mutable workflow rows (employees, withdrawals, advances, approvals).

    Timestamps come from the database; actors come from the service that
    made the change.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
