"""Agent-side actions that reach the customer: replies, direct messages, closing.

Each action commits first and only then notifies; a failed WhatsApp send or
fan-out is logged and alerted but never undoes the committed change.
"""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from supportdesk.logging_config import get_logger, mask_phone
from supportdesk.services.alert_service import alert_warning
from supportdesk.services.customer_service import find_or_create_customer
from supportdesk.services.dispatcher import publish_events
from supportdesk.services.events import (
    AGENTS_CHANNEL,
    NEW_AGENT_MESSAGE,
    TICKET_UPDATED,
    FanoutEvent,
    customer_channel,
)
from supportdesk.services.fanout import Publisher
from supportdesk.services.message_service import SENDER_AGENT, message_to_dict, save_message
from supportdesk.services.prompts import ticket_closed_notification
from supportdesk.services.result import NOT_FOUND, STORAGE_ERROR, VALIDATION_ERROR, Result
from supportdesk.services.state_store import phone_lock
from supportdesk.services.ticket_service import (
    add_agent_reply,
    agent_display_name,
    close_ticket,
    get_ticket,
    ticket_payload,
)
from supportdesk.services.whatsapp_service import WhatsAppService

logger = get_logger("agent_relay")


async def _send_text(whatsapp: WhatsAppService, phone_number: str, text: str) -> bool:
    try:
        result = await run_in_threadpool(whatsapp.send_text, phone_number, text)
    except Exception as e:
        result = {"success": False, "error": str(e)}
    if not result.get("success"):
        logger.warning(
            "Customer notification failed",
            extra={"context": {"phone": mask_phone(phone_number), "error": result.get("error")}},
        )
        alert_warning("Customer notification failed", {"phone": mask_phone(phone_number), "error": result.get("error")})
        return False
    return True


def _agent_message_events(ticket_data: Optional[dict], phone_number: str, message: dict, change: str) -> list[FanoutEvent]:
    payload = {
        "ticket_id": ticket_data["id"] if ticket_data else None,
        "ticket_number": ticket_data["ticket_number"] if ticket_data else None,
        "phone_number": phone_number,
        "message": message,
    }
    events = [
        FanoutEvent(customer_channel(phone_number), NEW_AGENT_MESSAGE, payload),
        FanoutEvent(AGENTS_CHANNEL, NEW_AGENT_MESSAGE, payload),
    ]
    if ticket_data is not None:
        events.append(FanoutEvent(AGENTS_CHANNEL, TICKET_UPDATED, {"ticket": ticket_data, "change": change}))
    return events


async def relay_agent_reply(
    db: Session,
    ticket_id: int,
    text: str,
    agent_id: Optional[int],
    whatsapp: WhatsAppService,
    publisher: Publisher,
) -> Result[dict]:
    """Store an agent reply on the ticket, then send it over WhatsApp and fan it out."""
    replied = add_agent_reply(db, ticket_id, text, agent_id)
    if not replied.ok:
        db.rollback()
        return Result.failure(replied.error, replied.error_code)
    db.commit()

    ticket = get_ticket(db, ticket_id)
    message = message_to_dict(replied.value)
    ticket_data = ticket_payload(ticket)
    sent = await _send_text(whatsapp, ticket.phone_number, message["text"])
    await publish_events(publisher, _agent_message_events(ticket_data, ticket.phone_number, message, "agent_reply"))
    logger.info(
        "Agent reply relayed",
        extra={"context": {"ticket_number": ticket.ticket_number, "agent_id": agent_id, "sent": sent}},
    )
    return Result.success({"message": message, "ticket": ticket_data, "notification_sent": sent})


async def send_direct_message(
    db: Session,
    phone_number: str,
    text: str,
    agent_id: Optional[int],
    whatsapp: WhatsAppService,
    publisher: Publisher,
) -> Result[dict]:
    """Message a customer outside any ticket."""
    if not text or not text.strip():
        return Result.failure("Message is required", VALIDATION_ERROR)
    try:
        find_or_create_customer(db, phone_number)
        saved = save_message(
            db,
            phone_number,
            SENDER_AGENT,
            text.strip(),
            sender_id=str(agent_id) if agent_id is not None else None,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Direct message failed: {e}", extra={"context": {"phone": mask_phone(phone_number)}})
        return Result.failure(str(e), STORAGE_ERROR)

    message = message_to_dict(saved)
    sent = await _send_text(whatsapp, phone_number, message["text"])
    await publish_events(publisher, _agent_message_events(None, phone_number, message, "direct_message"))
    return Result.success({"message": message, "notification_sent": sent})


def _close_locked(db: Session, ticket_id: int, phone_number: str, agent_id: Optional[int]) -> Result:
    with phone_lock(phone_number):
        closed = close_ticket(db, ticket_id, agent_id)
        if not closed.ok:
            db.rollback()
            return closed
        db.commit()
    return closed


async def close_and_notify(
    db: Session,
    ticket_id: int,
    agent_id: Optional[int],
    whatsapp: WhatsAppService,
    publisher: Publisher,
    agent_name: Optional[str] = None,
) -> Result[dict]:
    """Close the ticket, release bound conversations, then notify the customer exactly once."""
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return Result.failure("Ticket not found", NOT_FOUND)
    closed = await run_in_threadpool(_close_locked, db, ticket_id, ticket.phone_number, agent_id)
    if not closed.ok:
        return Result.failure(closed.error, closed.error_code)

    ticket = get_ticket(db, ticket_id)
    name = agent_name or agent_display_name(db, agent_id or ticket.assigned_agent_id)
    notification = ticket_closed_notification(ticket.ticket_number, name)
    sent = await _send_text(whatsapp, ticket.phone_number, notification)

    ticket_data = ticket_payload(ticket)
    await publish_events(
        publisher,
        [
            FanoutEvent(AGENTS_CHANNEL, TICKET_UPDATED, {"ticket": ticket_data, "change": "closed"}),
            FanoutEvent(customer_channel(ticket.phone_number), TICKET_UPDATED, {"ticket": ticket_data, "change": "closed"}),
        ],
    )
    return Result.success({"ticket": ticket_data, "notification_sent": sent})
