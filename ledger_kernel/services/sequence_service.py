"""
SequenceService -- transactional counters for the audit trail.

Responsibility:
    Hands out strictly increasing numbers per named sequence.  The counter
    row is locked for the rest of the caller's transaction, so the audit
    chain grows one event at a time even with concurrent writers.

Architecture position:
    Kernel > Services -- used by AuditorService.  Never commits.

Failure modes:
    - Two transactions creating the same counter at once: the loser's
      savepoint rolls back and it locks the winner's row instead.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _lock(self, name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def _create(self, name: str) -> SequenceCounter:
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=0)
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_created_elsewhere", extra={"sequence_name": name})
            counter = self._lock(name)
            if counter is None:
                raise
            return counter
        savepoint.commit()
        return counter

    def next_value(self, name: str) -> int:
        """Lock the counter (creating it on first use) and return its next value."""
        counter = self._lock(name) or self._create(name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def peek(self, name: str) -> int:
        """Last value handed out, 0 for an unused sequence."""
        value = self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()
        return value or 0
