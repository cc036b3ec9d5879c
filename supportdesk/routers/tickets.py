"""Agent-facing ticket API."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from supportdesk.database import get_db
from supportdesk.logging_config import get_logger
from supportdesk.schemas.ticket import (
    ActionResponse,
    AssignRequest,
    CloseRequest,
    EscalationItem,
    EscalationResponse,
    MessageOut,
    ReplyRequest,
    StatusUpdateRequest,
    TicketCreateRequest,
    TicketDetail,
    TicketListResponse,
    TicketOut,
    TicketStatus,
)
from supportdesk.services.agent_relay import close_and_notify, relay_agent_reply
from supportdesk.services.dispatcher import publish_events
from supportdesk.services.escalation_service import find_escalations
from supportdesk.services.events import AGENTS_CHANNEL, NEW_TICKET, TICKET_UPDATED, FanoutEvent
from supportdesk.services.fanout import SessionRegistry, get_hub
from supportdesk.services.field_registry import bulk_field_order, is_category
from supportdesk.services.message_service import list_ticket_messages
from supportdesk.services.result import NOT_FOUND, VALIDATION_ERROR, Result
from supportdesk.services.ticket_service import (
    assign_ticket,
    create_ticket,
    get_ticket,
    list_tickets,
    ticket_payload,
    tickets_for_phone,
    update_status,
)
from supportdesk.services.validator import validate
from supportdesk.services.whatsapp_service import WhatsAppService, format_phone_number, get_whatsapp_service

logger = get_logger("tickets")

router = APIRouter(prefix="/api/tickets", tags=["tickets"])

CONFLICT_CODES = {"already_closed", "ticket_closed"}


def _raise_for(result: Result) -> None:
    if result.ok:
        return
    if result.error_code == NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.error)
    if result.error_code == VALIDATION_ERROR:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    if result.error_code in CONFLICT_CODES:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.error)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error)


def _ticket_or_404(db: Session, ticket_id: int):
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return ticket


def _validated_fields(issue_type: str, fields: dict) -> dict:
    fuel_type = fields.get("fuel_type") if issue_type == "fuel_request" else None
    if issue_type == "fuel_request" and fuel_type not in ("amount", "quantity"):
        raise HTTPException(status_code=400, detail="fuel_type must be amount or quantity")

    answers: dict = {"fuel_type": fuel_type} if fuel_type else {}
    errors = []
    for spec in bulk_field_order(issue_type, fuel_type):
        raw = fields.get(spec.name)
        if raw is None or raw == "":
            continue
        checked = validate(spec, raw)
        if checked.accepted:
            answers[spec.name] = checked.value
        else:
            errors.append(checked.reason)
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors))
    return answers


@router.get("", response_model=TicketListResponse)
def get_tickets(
    status_filter: Optional[TicketStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    tickets, total = list_tickets(db, status=status_filter, page=page, limit=limit)
    return TicketListResponse(
        tickets=[TicketOut.model_validate(ticket) for ticket in tickets],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/escalations/check", response_model=EscalationResponse)
def check_escalations(db: Session = Depends(get_db)):
    flagged = find_escalations(db)
    items = [
        EscalationItem(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            phone_number=ticket.phone_number,
            status=ticket.status,
            needs_escalation=check.needs_escalation,
            minutes_since_last_customer_message=check.minutes_since_last_customer_message,
        )
        for ticket, check in flagged
    ]
    return EscalationResponse(count=len(items), escalations=items)


@router.get("/customer/{phone_number}", response_model=list[TicketOut])
def get_customer_tickets(phone_number: str, db: Session = Depends(get_db)):
    return [TicketOut.model_validate(ticket) for ticket in tickets_for_phone(db, format_phone_number(phone_number))]


@router.get("/{ticket_id}", response_model=TicketDetail)
def get_ticket_detail(ticket_id: int, db: Session = Depends(get_db)):
    ticket = _ticket_or_404(db, ticket_id)
    return TicketDetail.model_validate(ticket)


@router.post("", response_model=ActionResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket_for_customer(
    request: TicketCreateRequest,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
):
    if not is_category(request.issue_type):
        raise HTTPException(status_code=400, detail=f"Unknown issue type: {request.issue_type}")
    phone = format_phone_number(request.phone_number)
    if not phone:
        raise HTTPException(status_code=400, detail="phone_number is required")

    answers = _validated_fields(request.issue_type, request.fields)
    created = create_ticket(
        db,
        phone,
        request.issue_type,
        answers,
        customer_name=request.customer_name,
        priority=request.priority,
    )
    if not created.ok:
        db.rollback()
    _raise_for(created)
    db.commit()

    payload = ticket_payload(get_ticket(db, created.value.id))
    await publish_events(hub, [FanoutEvent(AGENTS_CHANNEL, NEW_TICKET, payload)])
    return ActionResponse(success=True, message="Ticket created", ticket=payload)


@router.patch("/{ticket_id}/status", response_model=ActionResponse)
async def change_status(
    ticket_id: int,
    request: StatusUpdateRequest,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
):
    if request.status == "closed":
        closed = await close_and_notify(db, ticket_id, None, whatsapp, hub)
        _raise_for(closed)
        return ActionResponse(
            success=True,
            message="Ticket closed",
            ticket=closed.value["ticket"],
            notification_sent=closed.value["notification_sent"],
        )

    updated = update_status(db, ticket_id, request.status)
    if not updated.ok:
        db.rollback()
    _raise_for(updated)
    db.commit()

    payload = ticket_payload(get_ticket(db, ticket_id))
    await publish_events(hub, [FanoutEvent(AGENTS_CHANNEL, TICKET_UPDATED, {"ticket": payload, "change": "status"})])
    return ActionResponse(success=True, message=f"Status set to {request.status}", ticket=payload)


@router.patch("/{ticket_id}/assign", response_model=ActionResponse)
async def assign(
    ticket_id: int,
    request: AssignRequest,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
):
    assigned = assign_ticket(db, ticket_id, request.agent_id)
    if not assigned.ok:
        db.rollback()
    _raise_for(assigned)
    db.commit()

    payload = ticket_payload(get_ticket(db, ticket_id))
    await publish_events(hub, [FanoutEvent(AGENTS_CHANNEL, TICKET_UPDATED, {"ticket": payload, "change": "assigned"})])
    return ActionResponse(success=True, message="Ticket assigned", ticket=payload)


@router.post("/{ticket_id}/reply", response_model=ActionResponse)
async def reply(
    ticket_id: int,
    request: ReplyRequest,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
):
    replied = await relay_agent_reply(db, ticket_id, request.message, request.agent_id, whatsapp, hub)
    _raise_for(replied)
    return ActionResponse(
        success=True,
        message="Reply sent",
        ticket=replied.value["ticket"],
        notification_sent=replied.value["notification_sent"],
    )


@router.get("/{ticket_id}/messages", response_model=list[MessageOut])
def get_messages(ticket_id: int, db: Session = Depends(get_db)):
    ticket = _ticket_or_404(db, ticket_id)
    return [MessageOut.model_validate(message) for message in list_ticket_messages(db, ticket.id)]


@router.post("/{ticket_id}/close", response_model=ActionResponse)
async def close(
    ticket_id: int,
    request: Optional[CloseRequest] = None,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
):
    request = request or CloseRequest()
    closed = await close_and_notify(db, ticket_id, request.agent_id, whatsapp, hub, agent_name=request.agent_name)
    _raise_for(closed)
    logger.info("Ticket closed by agent", extra={"context": {"ticket_id": ticket_id, "agent_id": request.agent_id}})
    return ActionResponse(
        success=True,
        message="Ticket closed",
        ticket=closed.value["ticket"],
        notification_sent=closed.value["notification_sent"],
    )
