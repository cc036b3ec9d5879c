from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from supportdesk.config import settings
from supportdesk.logging_config import get_logger
from supportdesk.models import Ticket
from supportdesk.services.message_service import last_customer_message
from supportdesk.services.ticket_service import ticket_query

logger = get_logger("escalation_service")

ESCALATION_SCAN_LIMIT = 100


@dataclass(frozen=True)
class EscalationCheck:
    needs_escalation: bool
    minutes_since_last_customer_message: Optional[float] = None


def _ensure_timezone(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def check_escalation(
    ticket_status: str,
    last_customer_message_at: Optional[datetime],
    now: Optional[datetime] = None,
    threshold_minutes: Optional[int] = None,
) -> EscalationCheck:
    """Flag a non-closed ticket whose last customer message is at least the threshold old."""
    if last_customer_message_at is None:
        return EscalationCheck(needs_escalation=False)

    now = _ensure_timezone(now or datetime.now(timezone.utc))
    threshold = timedelta(
        minutes=settings.escalation_threshold_minutes if threshold_minutes is None else threshold_minutes
    )
    elapsed = now - _ensure_timezone(last_customer_message_at)
    minutes = round(elapsed.total_seconds() / 60, 2)
    return EscalationCheck(
        needs_escalation=elapsed >= threshold and ticket_status != "closed",
        minutes_since_last_customer_message=minutes,
    )


def check_ticket(db: Session, ticket: Ticket, now: Optional[datetime] = None) -> EscalationCheck:
    message = last_customer_message(db, ticket.id)
    return check_escalation(ticket.status, message.created_at if message else None, now)


def find_escalations(db: Session, now: Optional[datetime] = None) -> list[tuple[Ticket, EscalationCheck]]:
    """Scan in_progress tickets and return the ones waiting too long on a reply."""
    tickets = (
        ticket_query(db)
        .filter(Ticket.status == "in_progress")
        .order_by(Ticket.updated_at.asc(), Ticket.id.asc())
        .limit(ESCALATION_SCAN_LIMIT)
        .all()
    )
    flagged = []
    for ticket in tickets:
        check = check_ticket(db, ticket, now)
        if check.needs_escalation:
            flagged.append((ticket, check))

    if flagged:
        logger.info(
            "Tickets need escalation",
            extra={"context": {"count": len(flagged), "tickets": [t.ticket_number for t, _ in flagged]}},
        )
    return flagged
