"""Idempotency markers for already-applied contract events."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import EventKind, ProcessedEvent


class ProcessingRepository:
    """Encapsulate processed-event marker persistence."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def has_processed(self, kind: EventKind, transaction_hash: str) -> bool:
        query = select(ProcessedEvent.id).where(
            ProcessedEvent.event_type == kind.value,
            ProcessedEvent.transaction_hash == transaction_hash,
        )
        return self._session.execute(query).first() is not None

    def record_processed(
        self, kind: EventKind, transaction_hash: str, *, block_number: int
    ) -> ProcessedEvent:
        # Flushed immediately so a concurrent duplicate fails on the unique
        # key before any other write of this transaction is committed.
        record = ProcessedEvent(
            event_type=kind.value,
            transaction_hash=transaction_hash,
            block_number=block_number,
        )
        self._session.add(record)
        self._session.flush()
        return record
