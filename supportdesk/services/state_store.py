"""Conversation state persistence: one record per phone number."""

import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from supportdesk.logging_config import get_logger, mask_phone
from supportdesk.models import ConversationStateRecord
from supportdesk.services.result import STORAGE_ERROR, Result
from supportdesk.services.state_machine import ConversationStep, parse_step

logger = get_logger("state_store")

_UNSET: Any = object()

# Placeholder written by an old serializer bug instead of the object.
CORRUPTED_PLACEHOLDER = "[object Object]"


@dataclass
class ConversationSnapshot:
    phone_number: str
    step: ConversationStep = ConversationStep.IDLE
    ticket_type: Optional[str] = None
    form_data: dict = field(default_factory=dict)
    bound_ticket_id: Optional[int] = None
    updated_at: Optional[datetime] = None

    @property
    def fuel_type(self) -> Optional[str]:
        value = self.form_data.get("fuel_type")
        return str(value) if value else None

    def to_dict(self) -> dict:
        return {
            "phone_number": self.phone_number,
            "step": self.step.value,
            "ticket_type": self.ticket_type,
            "form_data": dict(self.form_data),
            "bound_ticket_id": self.bound_ticket_id,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def serialize_form_data(data: object) -> str:
    """Typed mapping in, JSON object text out. Non-mappings become {}."""
    if not isinstance(data, Mapping):
        if data is not None:
            logger.warning(
                "Non-object form data replaced with empty object",
                extra={"context": {"type": type(data).__name__}},
            )
        data = {}
    return json.dumps(dict(data), ensure_ascii=False, default=str)


def deserialize_form_data(raw: object) -> dict:
    """Corrupted placeholders and invalid JSON read as {}."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str) or raw.strip() == CORRUPTED_PLACEHOLDER:
        logger.warning("Malformed form data normalized", extra={"context": {"raw": str(raw)[:80]}})
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Unparseable form data normalized", extra={"context": {"raw": raw[:80]}})
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Non-object form data normalized", extra={"context": {"raw": raw[:80]}})
        return {}
    return parsed


def _to_snapshot(record: ConversationStateRecord) -> ConversationSnapshot:
    return ConversationSnapshot(
        phone_number=record.phone_number,
        step=parse_step(record.step),
        ticket_type=record.ticket_type,
        form_data=deserialize_form_data(record.form_data),
        bound_ticket_id=record.bound_ticket_id,
        updated_at=record.updated_at,
    )


class _PhoneLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


# Entries live only while some thread holds or waits for the lock.
_locks: dict[str, _PhoneLock] = {}
_locks_guard = threading.Lock()


@contextmanager
def phone_lock(phone_number: str) -> Iterator[None]:
    """Serialize read-modify-write cycles for one phone number within this process."""
    with _locks_guard:
        entry = _locks.get(phone_number)
        if entry is None:
            entry = _locks[phone_number] = _PhoneLock()
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _locks_guard:
            entry.users -= 1
            if entry.users == 0:
                del _locks[phone_number]


def get_state(db: Session, phone_number: str) -> Result[Optional[ConversationSnapshot]]:
    try:
        record = db.get(ConversationStateRecord, phone_number)
    except SQLAlchemyError as e:
        logger.error(f"Failed to read conversation state: {e}", extra={"context": {"phone": mask_phone(phone_number)}})
        db.rollback()
        return Result.failure(str(e), STORAGE_ERROR)
    if record is None:
        return Result.success(None)
    return Result.success(_to_snapshot(record))


def set_state(
    db: Session,
    phone_number: str,
    *,
    step: Any = _UNSET,
    ticket_type: Any = _UNSET,
    form_data: Any = _UNSET,
    bound_ticket_id: Any = _UNSET,
) -> Result[ConversationSnapshot]:
    """Upsert. Fields left unset keep their stored value. Flushes, never commits."""
    try:
        record = db.get(ConversationStateRecord, phone_number)
        if record is None:
            record = ConversationStateRecord(
                phone_number=phone_number,
                step=ConversationStep.IDLE.value,
                form_data="{}",
            )
            db.add(record)

        if step is not _UNSET:
            record.step = ConversationStep(step).value
        if ticket_type is not _UNSET:
            record.ticket_type = ticket_type
        if form_data is not _UNSET:
            record.form_data = serialize_form_data(form_data)
        elif deserialize_form_data(record.form_data) == {}:
            record.form_data = "{}"
        if bound_ticket_id is not _UNSET:
            record.bound_ticket_id = bound_ticket_id
        record.updated_at = datetime.now(timezone.utc)

        db.flush()
        return Result.success(_to_snapshot(record))
    except SQLAlchemyError as e:
        logger.error(
            f"Failed to write conversation state: {e}",
            extra={"context": {"phone": mask_phone(phone_number)}},
        )
        db.rollback()
        return Result.failure(str(e), STORAGE_ERROR)


def clear_state(db: Session, phone_number: str) -> Result[bool]:
    try:
        deleted = (
            db.query(ConversationStateRecord)
            .filter(ConversationStateRecord.phone_number == phone_number)
            .delete(synchronize_session="fetch")
        )
        db.flush()
        return Result.success(bool(deleted))
    except SQLAlchemyError as e:
        logger.error(f"Failed to clear conversation state: {e}")
        db.rollback()
        return Result.failure(str(e), STORAGE_ERROR)


def bind_ticket(db: Session, phone_number: str, ticket_id: int) -> Result[ConversationSnapshot]:
    return set_state(
        db,
        phone_number,
        step=ConversationStep.BOUND_TO_TICKET,
        bound_ticket_id=ticket_id,
    )


def close_states_for_ticket(db: Session, ticket_id: int, phone_number: Optional[str] = None) -> Result[int]:
    """Move every conversation bound to the ticket to CLOSED.

    Sweeps by bound ticket id and by the customer's phone number, so a row
    whose phone lookup is stale is still released.
    """
    try:
        criteria = [ConversationStateRecord.bound_ticket_id == ticket_id]
        if phone_number:
            criteria.append(
                (ConversationStateRecord.phone_number == phone_number)
                & (ConversationStateRecord.step == ConversationStep.BOUND_TO_TICKET.value)
                & (
                    (ConversationStateRecord.bound_ticket_id == ticket_id)
                    | ConversationStateRecord.bound_ticket_id.is_(None)
                )
            )
        rows = db.query(ConversationStateRecord).filter(or_(*criteria)).all()
        now = datetime.now(timezone.utc)
        for row in rows:
            row.step = ConversationStep.CLOSED.value
            row.bound_ticket_id = None
            row.form_data = "{}"
            row.updated_at = now
        db.flush()
        return Result.success(len(rows))
    except SQLAlchemyError as e:
        logger.error(f"Failed to release conversations for ticket {ticket_id}: {e}")
        db.rollback()
        return Result.failure(str(e), STORAGE_ERROR)


def repair_corrupted_states(db: Session) -> Result[int]:
    """Rewrite stored form data that does not parse as a JSON object."""
    try:
        repaired = 0
        for row in db.query(ConversationStateRecord).all():
            raw = row.form_data
            if (raw or "").strip() == "{}" or deserialize_form_data(raw):
                continue
            row.form_data = "{}"
            repaired += 1
        db.flush()
        if repaired:
            logger.info("Repaired conversation states", extra={"context": {"count": repaired}})
        return Result.success(repaired)
    except SQLAlchemyError as e:
        logger.error(f"Failed to repair conversation states: {e}")
        db.rollback()
        return Result.failure(str(e), STORAGE_ERROR)
