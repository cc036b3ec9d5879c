from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from supportdesk.database import get_db
from supportdesk.schemas.customer import (
    CustomerListResponse,
    CustomerOut,
    CustomerUpdateRequest,
    DirectMessageRequest,
    DirectMessageResponse,
)
from supportdesk.schemas.ticket import MessageOut, TicketOut
from supportdesk.services.agent_relay import send_direct_message
from supportdesk.services.customer_service import (
    customer_to_dict,
    get_customer_by_phone,
    list_customers,
    update_customer_name,
)
from supportdesk.services.dispatcher import publish_events
from supportdesk.services.events import AGENTS_CHANNEL, CUSTOMER_UPDATED, FanoutEvent
from supportdesk.services.fanout import SessionRegistry, get_hub
from supportdesk.services.message_service import list_phone_messages
from supportdesk.services.result import VALIDATION_ERROR
from supportdesk.services.ticket_service import tickets_for_phone
from supportdesk.services.whatsapp_service import WhatsAppService, format_phone_number, get_whatsapp_service

router = APIRouter(prefix="/api/customers", tags=["customers"])


def _customer_or_404(db: Session, phone_number: str):
    customer = get_customer_by_phone(db, format_phone_number(phone_number))
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return customer


@router.get("", response_model=CustomerListResponse)
def get_customers(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    customers, total = list_customers(db, page=page, limit=limit)
    return CustomerListResponse(
        customers=[CustomerOut(**customer_to_dict(db, customer)) for customer in customers],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{phone_number}", response_model=CustomerOut)
def get_customer(phone_number: str, db: Session = Depends(get_db)):
    return CustomerOut(**customer_to_dict(db, _customer_or_404(db, phone_number)))


@router.patch("/{phone_number}", response_model=CustomerOut)
async def update_customer(
    phone_number: str,
    request: CustomerUpdateRequest,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
):
    customer = update_customer_name(db, format_phone_number(phone_number), request.name)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    db.commit()
    data = customer_to_dict(db, customer)
    await publish_events(hub, [FanoutEvent(AGENTS_CHANNEL, CUSTOMER_UPDATED, data)])
    return CustomerOut(**data)


@router.get("/{phone_number}/tickets", response_model=list[TicketOut])
def get_customer_tickets(phone_number: str, db: Session = Depends(get_db)):
    customer = _customer_or_404(db, phone_number)
    return [TicketOut.model_validate(ticket) for ticket in tickets_for_phone(db, customer.phone_number)]


@router.get("/{phone_number}/messages", response_model=list[MessageOut])
def get_customer_messages(
    phone_number: str,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    customer = _customer_or_404(db, phone_number)
    return [MessageOut.model_validate(message) for message in list_phone_messages(db, customer.phone_number, limit)]


@router.post("/{phone_number}/messages", response_model=DirectMessageResponse)
async def message_customer(
    phone_number: str,
    request: DirectMessageRequest,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
):
    phone = format_phone_number(phone_number)
    if not phone:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid phone number")
    sent = await send_direct_message(db, phone, request.message, request.agent_id, whatsapp, hub)
    if not sent.ok:
        code = status.HTTP_400_BAD_REQUEST if sent.error_code == VALIDATION_ERROR else status.HTTP_500_INTERNAL_SERVER_ERROR
        raise HTTPException(status_code=code, detail=sent.error)
    return DirectMessageResponse(success=True, **sent.value)
