from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

TicketStatus = Literal["open", "in_progress", "pending_customer", "closed"]


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: Optional[int] = None
    phone_number: str
    sender_type: str
    sender_id: Optional[str] = None
    text: str
    message_type: str
    external_message_id: Optional[str] = None
    created_at: Optional[datetime] = None


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_number: str
    customer_id: int
    phone_number: Optional[str] = None
    customer_name: Optional[str] = None
    assigned_agent_id: Optional[int] = None
    assigned_agent_name: Optional[str] = None
    status: str
    priority: str
    issue_type: str
    vehicle_number: Optional[str] = None
    driver_number: Optional[str] = None
    location: Optional[str] = None
    availability_date: Optional[str] = None
    availability_time: Optional[str] = None
    amount: Optional[float] = None
    upi_id: Optional[str] = None
    quantity: Optional[int] = None
    fuel_type: Optional[str] = None
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


class TicketDetail(TicketOut):
    messages: list[MessageOut] = []


class TicketListResponse(BaseModel):
    tickets: list[TicketOut]
    total: int
    page: int
    limit: int


class TicketCreateRequest(BaseModel):
    phone_number: str = Field(validation_alias=AliasChoices("phone_number", "phoneNumber"))
    issue_type: str = Field(validation_alias=AliasChoices("issue_type", "issueType", "category"))
    customer_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customer_name", "customerName")
    )
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    fields: dict[str, Any] = {}


class StatusUpdateRequest(BaseModel):
    status: TicketStatus


class AssignRequest(BaseModel):
    agent_id: int = Field(validation_alias=AliasChoices("agent_id", "agentId"))


class ReplyRequest(BaseModel):
    message: str
    agent_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("agent_id", "agentId"))


class CloseRequest(BaseModel):
    agent_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("agent_id", "agentId"))
    agent_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("agent_name", "agentName"))


class ActionResponse(BaseModel):
    success: bool
    message: str
    ticket: Optional[TicketOut] = None
    notification_sent: Optional[bool] = None


class EscalationItem(BaseModel):
    ticket_id: int
    ticket_number: str
    phone_number: Optional[str] = None
    status: str
    needs_escalation: bool
    minutes_since_last_customer_message: Optional[float] = None


class EscalationResponse(BaseModel):
    count: int
    escalations: list[EscalationItem]
