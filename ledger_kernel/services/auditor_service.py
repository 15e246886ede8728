"""
AuditorService -- the tamper-evident audit trail.

Responsibility:
    Every balance-affecting action and every approval transition appends
    one ``AuditEvent`` in the transaction that made the change.  Events are
    numbered by ``seq`` and each one carries the digest of the one before,
    so rewriting, relinking or dropping a historical event shows up in
    ``validate_chain``.

Architecture position:
    Kernel > Services -- called by the write-side services.  Never commits.

Invariants enforced:
    - seq is taken from the locked ``audit_event`` counter before the
      previous digest is read, so concurrent writers queue behind each
      other and the chain stays linear.
    - seq runs 1..N with no gaps; a rolled-back transaction returns its
      number along with its event.
    - Events are append-only (ORM listener).

Failure modes:
    - AuditChainBrokenError from ``validate_chain``; also logged CRITICAL.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import AuditChainBrokenError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction, AuditEvent
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.utils.hashing import chain_digest, payload_digest, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """What happened to one entity, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def actions(self) -> list[AuditAction]:
        return [entry.action for entry in self.entries]

    @property
    def last_action(self) -> AuditAction | None:
        if not self.entries:
            return None
        return self.entries[-1].action


def _event_digest(event: AuditEvent) -> str:
    return chain_digest(
        seq=event.seq,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        action=event.action,
        actor_id=event.actor_id,
        payload_hash=payload_digest(event.payload),
        prev_hash=event.prev_hash,
    )


class AuditorService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def _latest_digest(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Append one event to the chain and flush it.

        ``payload`` may hold Decimals, UUIDs, dates and enums; it is stored
        in its canonical JSON form so the digest can be recomputed later.
        """
        seq = self._sequences.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._latest_digest()
        stored_payload = to_json_safe(payload)

        event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=stored_payload,
            payload_hash=payload_digest(stored_payload),
            prev_hash=prev_hash,
        )
        event.hash = _event_digest(event)
        self._session.add(event)
        self._session.flush()

        logger.debug(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return event

    def _broken(self, event_ref: str, expected: str, actual: str, seq: int | None) -> AuditChainBrokenError:
        logger.critical(
            "audit_chain_broken",
            extra={"seq": seq, "expected": expected, "actual": actual},
        )
        return AuditChainBrokenError(event_ref, expected, actual)

    def validate_chain(self) -> bool:
        """
        Recompute every digest and link, oldest first.

        Also checks that seq has no gaps and that the last event is the
        last number the counter handed out, so a deleted event is caught
        wherever it sat.

        Raises:
            AuditChainBrokenError: at the first event that does not check out.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        previous: AuditEvent | None = None
        for expected_seq, event in enumerate(events, start=1):
            if event.seq != expected_seq:
                raise self._broken(
                    str(event.id), f"seq {expected_seq}", f"seq {event.seq}", event.seq,
                )
            expected_prev = previous.hash if previous is not None else None
            if event.prev_hash != expected_prev:
                raise self._broken(
                    str(event.id), expected_prev or "None", event.prev_hash or "None", event.seq,
                )
            if event.payload_hash != payload_digest(event.payload):
                raise self._broken(
                    str(event.id), payload_digest(event.payload), event.payload_hash, event.seq,
                )
            expected_hash = _event_digest(event)
            if event.hash != expected_hash:
                raise self._broken(str(event.id), expected_hash, event.hash, event.seq)
            previous = event

        issued = self._sequences.peek(SequenceService.AUDIT_EVENT)
        if issued != len(events):
            tail_ref = str(previous.id) if previous is not None else "audit_events"
            raise self._broken(tail_ref, f"seq {issued}", f"seq {len(events)}", issued)

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type)
            .where(AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).scalars()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=AuditAction(event.action),
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )
        return AuditTrace(entity_type=entity_type, entity_id=entity_id, entries=entries)
