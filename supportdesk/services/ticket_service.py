"""Ticket creation and agent-side ticket operations."""

import random
import string
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from supportdesk.logging_config import get_logger, mask_phone
from supportdesk.models import OPEN_STATUSES, TICKET_STATUSES, Agent, Customer, Message, Ticket
from supportdesk.schemas.ticket import TicketOut
from supportdesk.services.customer_service import find_or_create_customer
from supportdesk.services.field_registry import is_category
from supportdesk.services.message_service import SENDER_AGENT, save_message
from supportdesk.services.result import NOT_FOUND, STORAGE_ERROR, VALIDATION_ERROR, Result
from supportdesk.services.state_store import close_states_for_ticket

logger = get_logger("ticket_service")

TICKET_PREFIX = "TKT"
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

_TEXT_COLUMNS = (
    "vehicle_number",
    "driver_number",
    "location",
    "availability_date",
    "availability_time",
    "upi_id",
    "fuel_type",
    "comment",
)


def generate_ticket_number(now: Optional[datetime] = None) -> str:
    """TKT-<last 6 digits of epoch millis>-<4 random uppercase alphanumerics>."""
    moment = now or datetime.now(timezone.utc)
    millis = str(int(moment.timestamp() * 1000))
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=4))
    return f"{TICKET_PREFIX}-{millis[-6:]}-{suffix}"


def _blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def ticket_columns(answers: Mapping[str, object]) -> dict:
    """Map accepted answers onto ticket columns; absent optional values become None."""
    columns: dict = {}
    for name in _TEXT_COLUMNS:
        value = answers.get(name)
        columns[name] = None if _blank(value) else str(value).strip()

    amount = answers.get("amount")
    if _blank(amount):
        columns["amount"] = None
    else:
        try:
            columns["amount"] = Decimal(str(amount))
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {amount!r}")

    quantity = answers.get("quantity")
    columns["quantity"] = None if _blank(quantity) else int(float(str(quantity)))
    return columns


def ticket_query(db: Session):
    return db.query(Ticket).options(joinedload(Ticket.customer), joinedload(Ticket.assigned_agent))


def get_ticket(db: Session, ticket_id: int) -> Optional[Ticket]:
    return ticket_query(db).filter(Ticket.id == ticket_id).first()


def find_ticket_by_number(db: Session, ticket_number: str) -> Optional[Ticket]:
    return (
        ticket_query(db)
        .filter(func.upper(Ticket.ticket_number) == ticket_number.strip().upper())
        .first()
    )


def get_open_tickets_for_phone(db: Session, phone_number: str) -> list[Ticket]:
    return (
        ticket_query(db)
        .join(Customer, Ticket.customer_id == Customer.id)
        .filter(Customer.phone_number == phone_number, Ticket.status.in_(OPEN_STATUSES))
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .all()
    )


def tickets_for_phone(db: Session, phone_number: str) -> list[Ticket]:
    return (
        ticket_query(db)
        .join(Customer, Ticket.customer_id == Customer.id)
        .filter(Customer.phone_number == phone_number)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .all()
    )


def list_tickets(
    db: Session, status: Optional[str] = None, page: int = 1, limit: int = 20
) -> tuple[list[Ticket], int]:
    query = ticket_query(db)
    if status:
        query = query.filter(Ticket.status == status)
    total = query.count()
    tickets = (
        query.order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return tickets, total


def ticket_payload(ticket: Ticket) -> dict:
    return TicketOut.model_validate(ticket).model_dump(mode="json")


def create_ticket(
    db: Session,
    phone_number: str,
    category: str,
    answers: Mapping[str, object],
    *,
    customer_name: Optional[str] = None,
    priority: str = "medium",
) -> Result[Ticket]:
    """Find or create the customer and insert an open ticket.

    The insert runs in a savepoint; a ticket number collision rolls back only
    the savepoint and retries once with a fresh number. Flushes, never commits.
    """
    if not is_category(category):
        return Result.failure(f"Unknown ticket category: {category}", VALIDATION_ERROR)
    try:
        columns = ticket_columns(answers)
    except ValueError as e:
        return Result.failure(str(e), VALIDATION_ERROR)

    ticket: Optional[Ticket] = None
    for attempt in range(2):
        try:
            customer = find_or_create_customer(db, phone_number, customer_name)
            ticket = Ticket(
                ticket_number=generate_ticket_number(),
                customer_id=customer.id,
                status="open",
                priority=priority,
                issue_type=category,
                **columns,
            )
            with db.begin_nested():
                db.add(ticket)
            break
        except IntegrityError as e:
            if attempt == 0:
                logger.warning(
                    "Ticket number collision, retrying",
                    extra={"context": {"phone": mask_phone(phone_number)}},
                )
                continue
            logger.error(f"Ticket creation failed after retry: {e}")
            return Result.failure(str(e), STORAGE_ERROR)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Ticket creation failed: {e}", exc_info=True)
            return Result.failure(str(e), STORAGE_ERROR)

    hydrated = get_ticket(db, ticket.id)
    logger.info(
        "Ticket created",
        extra={
            "context": {
                "ticket_number": hydrated.ticket_number,
                "issue_type": category,
                "phone": mask_phone(phone_number),
            }
        },
    )
    return Result.success(hydrated)


def update_status(db: Session, ticket_id: int, status: str) -> Result[Ticket]:
    if status not in TICKET_STATUSES:
        return Result.failure(f"Invalid status: {status}", VALIDATION_ERROR)
    if status == "closed":
        return close_ticket(db, ticket_id)
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return Result.failure("Ticket not found", NOT_FOUND)
    try:
        ticket.status = status
        ticket.closed_at = None
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        return Result.failure(str(e), STORAGE_ERROR)
    return Result.success(ticket)


def assign_ticket(db: Session, ticket_id: int, agent_id: int) -> Result[Ticket]:
    """Assign to an agent; assignment moves the ticket to in_progress."""
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return Result.failure("Ticket not found", NOT_FOUND)
    agent = db.get(Agent, agent_id)
    if agent is None:
        return Result.failure("Agent not found", NOT_FOUND)
    try:
        ticket.assigned_agent_id = agent.id
        ticket.assigned_agent = agent
        ticket.status = "in_progress"
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        return Result.failure(str(e), STORAGE_ERROR)
    return Result.success(ticket)


def close_ticket(db: Session, ticket_id: int, agent_id: Optional[int] = None) -> Result[Ticket]:
    """Close the ticket and release every conversation bound to it."""
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return Result.failure("Ticket not found", NOT_FOUND)
    if ticket.status == "closed":
        return Result.failure("Ticket already closed", "already_closed")
    try:
        ticket.status = "closed"
        ticket.closed_at = datetime.now(timezone.utc)
        if agent_id is not None and ticket.assigned_agent_id is None and db.get(Agent, agent_id):
            ticket.assigned_agent_id = agent_id
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        return Result.failure(str(e), STORAGE_ERROR)

    released = close_states_for_ticket(db, ticket.id, ticket.phone_number)
    if not released.ok:
        return Result.failure(released.error, released.error_code)
    logger.info(
        "Ticket closed",
        extra={"context": {"ticket_number": ticket.ticket_number, "released_conversations": released.value}},
    )
    db.refresh(ticket)
    return Result.success(ticket)


def add_agent_reply(db: Session, ticket_id: int, text: str, agent_id: Optional[int] = None) -> Result[Message]:
    """Record an agent reply; open or waiting tickets move to in_progress."""
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return Result.failure("Ticket not found", NOT_FOUND)
    if ticket.status == "closed":
        return Result.failure("Ticket is closed", "ticket_closed")
    if not text or not text.strip():
        return Result.failure("Message is required", VALIDATION_ERROR)
    try:
        message = save_message(
            db,
            ticket.phone_number,
            SENDER_AGENT,
            text.strip(),
            ticket_id=ticket.id,
            sender_id=str(agent_id) if agent_id is not None else None,
        )
        if ticket.status in ("open", "pending_customer"):
            ticket.status = "in_progress"
        if agent_id is not None and ticket.assigned_agent_id is None and db.get(Agent, agent_id):
            ticket.assigned_agent_id = agent_id
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        return Result.failure(str(e), STORAGE_ERROR)
    return Result.success(message)


def agent_display_name(db: Session, agent_id: Optional[int]) -> str:
    if agent_id is None:
        return "Support"
    agent = db.get(Agent, agent_id)
    return agent.name if agent and agent.name else "Support"
