from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class CustomerOut(BaseModel):
    id: int
    phone_number: str
    name: Optional[str] = None
    created_at: Optional[str] = None
    total_tickets: int = 0
    open_tickets: int = 0


class CustomerListResponse(BaseModel):
    customers: list[CustomerOut]
    total: int
    page: int
    limit: int


class CustomerUpdateRequest(BaseModel):
    name: str


class DirectMessageRequest(BaseModel):
    message: str
    agent_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("agent_id", "agentId"))


class DirectMessageResponse(BaseModel):
    success: bool
    message: dict
    notification_sent: bool
