"""Inbound conversation events and outbound fan-out events."""

from dataclasses import dataclass, field
from typing import Optional, Union

from supportdesk.services.selection import is_close_command

AGENTS_CHANNEL = "agents"

NEW_CUSTOMER_MESSAGE = "newCustomerMessage"
NEW_TICKET = "newTicket"
TICKET_UPDATED = "ticketUpdated"
CUSTOMER_UPDATED = "customerUpdated"
NEW_AGENT_MESSAGE = "newAgentMessage"


def customer_channel(phone_number: str) -> str:
    return f"customer:{phone_number}"


@dataclass(frozen=True)
class FreeText:
    text: str


@dataclass(frozen=True)
class Selection:
    option_id: Optional[str]
    display_text: str = ""


@dataclass(frozen=True)
class TemplateFormSubmitted:
    category: Optional[str]
    raw_fields: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CloseCommand:
    pass


ConversationEvent = Union[FreeText, Selection, TemplateFormSubmitted, CloseCommand]


@dataclass(frozen=True)
class FanoutEvent:
    channel: str
    name: str
    payload: dict


def text_event(text: str) -> ConversationEvent:
    """Typed text becomes either the close command or free text."""
    if is_close_command(text):
        return CloseCommand()
    return FreeText(text)


def event_text(event: ConversationEvent) -> str:
    """Human-readable text recorded in the message log."""
    if isinstance(event, FreeText):
        return event.text
    if isinstance(event, Selection):
        return event.display_text or event.option_id or ""
    if isinstance(event, TemplateFormSubmitted):
        pairs = ", ".join(f"{key}={value}" for key, value in event.raw_fields.items() if key != "flow_token")
        return f"[form] {pairs}"
    return "/close"


def event_message_type(event: ConversationEvent) -> str:
    if isinstance(event, Selection):
        return "interactive"
    if isinstance(event, TemplateFormSubmitted):
        return "template_form"
    if isinstance(event, CloseCommand):
        return "command"
    return "text"
