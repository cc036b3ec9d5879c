"""WhatsApp Cloud API webhook payload (only the parts the bot reads)."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TextBody(_Payload):
    body: str = ""


class Reply(_Payload):
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


class FlowReply(_Payload):
    response_json: Optional[str] = None
    body: Optional[str] = None
    name: Optional[str] = None


class Interactive(_Payload):
    type: Optional[str] = None
    button_reply: Optional[Reply] = None
    list_reply: Optional[Reply] = None
    nfm_reply: Optional[FlowReply] = None


class QuickReplyButton(_Payload):
    payload: Optional[str] = None
    text: Optional[str] = None


class InboundMessage(_Payload):
    from_: str = Field(alias="from")
    id: Optional[str] = None
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[TextBody] = None
    interactive: Optional[Interactive] = None
    button: Optional[QuickReplyButton] = None


class Profile(_Payload):
    name: Optional[str] = None


class Contact(_Payload):
    wa_id: Optional[str] = None
    profile: Optional[Profile] = None


class ChangeValue(_Payload):
    messaging_product: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    contacts: list[Contact] = []
    messages: list[InboundMessage] = []
    statuses: list[dict[str, Any]] = []


class Change(_Payload):
    field: Optional[str] = None
    value: ChangeValue = ChangeValue()


class Entry(_Payload):
    id: Optional[str] = None
    changes: list[Change] = []


class WhatsAppWebhook(_Payload):
    object: Optional[str] = None
    entry: list[Entry] = []


class WebhookResponse(BaseModel):
    status: str
    processed: int = 0
    skipped: int = 0
    results: list[dict[str, Any]] = []
