"""WhatsApp Cloud API client plus webhook helpers."""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from supportdesk.config import settings
from supportdesk.logging_config import get_logger, mask_phone
from supportdesk.schemas.webhook import InboundMessage, WhatsAppWebhook
from supportdesk.services.events import (
    ConversationEvent,
    Selection,
    TemplateFormSubmitted,
    text_event,
)

logger = get_logger("whatsapp_service")

BUTTON_TITLE_LIMIT = 20
ROW_TITLE_LIMIT = 24
ROW_DESCRIPTION_LIMIT = 72
MAX_BUTTONS = 3


def format_phone_number(phone: Optional[str], country_code: Optional[str] = None) -> str:
    """Digits only; bare 10-digit national numbers get the default country code."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        digits = f"{country_code or settings.default_country_code}{digits}"
    return digits


def verify_webhook(mode: Optional[str], token: Optional[str], challenge: Optional[str], expected_token: str) -> Optional[str]:
    """Return the challenge when the subscription handshake matches, else None."""
    if mode == "subscribe" and token is not None and token == expected_token:
        return challenge
    return None


class WhatsAppService:
    """Sends messages through the WhatsApp Cloud API.

    Every send returns ``{"success": bool, "id": ..., "error": ...}``.
    Without credentials sends are logged and reported as mocked successes.
    """

    def __init__(
        self,
        api_url: str,
        access_token: Optional[str],
        phone_number_id: Optional[str],
        timeout: float = 10.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    @property
    def messages_url(self) -> str:
        return f"{self.api_url}/{self.phone_number_id}/messages"

    def _make_request(self, to: str, message: dict) -> dict:
        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": to, **message}
        if not self.configured:
            logger.warning(
                "WhatsApp not configured, message not sent",
                extra={"context": {"phone": mask_phone(to), "type": message.get("type")}},
            )
            return {"success": True, "id": None, "mocked": True}

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    self.messages_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                )
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"WhatsApp API error: {e}", extra={"context": {"phone": mask_phone(to)}})
            return {"success": False, "error": str(e)}

        if response.status_code >= 400:
            error = (data.get("error") or {}).get("message") or f"HTTP {response.status_code}"
            logger.warning(
                f"WhatsApp API rejected message: {error}",
                extra={"context": {"phone": mask_phone(to), "status": response.status_code}},
            )
            return {"success": False, "error": error}

        messages = data.get("messages") or [{}]
        return {"success": True, "id": messages[0].get("id")}

    def send_text(self, phone: str, body: str) -> dict:
        return self._make_request(
            format_phone_number(phone),
            {"type": "text", "text": {"preview_url": False, "body": body}},
        )

    def send_buttons(
        self,
        phone: str,
        header: Optional[str],
        body: str,
        footer: Optional[str],
        options: Sequence[Any],
    ) -> dict:
        """Reply buttons; options need ``id`` and ``title``. At most three are sent."""
        interactive: dict = {
            "type": "button",
            "body": {"text": body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": option.id, "title": option.title[:BUTTON_TITLE_LIMIT]}}
                    for option in list(options)[:MAX_BUTTONS]
                ]
            },
        }
        if header:
            interactive["header"] = {"type": "text", "text": header}
        if footer:
            interactive["footer"] = {"text": footer}
        return self._make_request(format_phone_number(phone), {"type": "interactive", "interactive": interactive})

    def send_list(
        self,
        phone: str,
        header: Optional[str],
        body: str,
        footer: Optional[str],
        button_label: str,
        sections: Sequence[Any],
    ) -> dict:
        """List message; sections need ``title`` and ``rows`` of options."""
        interactive: dict = {
            "type": "list",
            "body": {"text": body},
            "action": {
                "button": button_label[:BUTTON_TITLE_LIMIT],
                "sections": [
                    {
                        "title": section.title[:ROW_TITLE_LIMIT],
                        "rows": [self._row(option) for option in section.rows],
                    }
                    for section in sections
                ],
            },
        }
        if header:
            interactive["header"] = {"type": "text", "text": header}
        if footer:
            interactive["footer"] = {"text": footer}
        return self._make_request(format_phone_number(phone), {"type": "interactive", "interactive": interactive})

    @staticmethod
    def _row(option: Any) -> dict:
        row = {"id": option.id, "title": option.title[:ROW_TITLE_LIMIT]}
        description = getattr(option, "description", None)
        if description:
            row["description"] = description[:ROW_DESCRIPTION_LIMIT]
        return row

    def send_template_form(self, phone: str, template_name: str, template_id: str, locale: str) -> dict:
        """Template with a form (flow) button; the template id travels as the flow token."""
        template = {
            "name": template_name,
            "language": {"code": locale},
            "components": [
                {
                    "type": "button",
                    "sub_type": "flow",
                    "index": "0",
                    "parameters": [{"type": "action", "action": {"flow_token": template_id}}],
                }
            ],
        }
        return self._make_request(format_phone_number(phone), {"type": "template", "template": template})


def get_whatsapp_service() -> WhatsAppService:
    return WhatsAppService(
        api_url=settings.whatsapp_api_url,
        access_token=settings.whatsapp_access_token,
        phone_number_id=settings.whatsapp_phone_number_id,
        timeout=settings.whatsapp_timeout_seconds,
    )


@dataclass(frozen=True)
class IncomingMessage:
    """One customer message normalized out of a webhook delivery."""

    phone_number: str
    message_id: Optional[str]
    message_type: str
    profile_name: Optional[str] = None
    text: Optional[str] = None
    option_id: Optional[str] = None
    option_title: Optional[str] = None
    form_fields: Optional[dict] = None


def _parse_flow_response(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Unparseable form response", extra={"context": {"raw": raw[:80]}})
        return {}
    return data if isinstance(data, dict) else {}


def _normalize_message(message: InboundMessage, profile_name: Optional[str]) -> IncomingMessage:
    base = {
        "phone_number": format_phone_number(message.from_),
        "message_id": message.id,
        "message_type": message.type,
        "profile_name": profile_name,
    }
    interactive = message.interactive
    if message.type == "interactive" and interactive is not None:
        reply = interactive.button_reply or interactive.list_reply
        if reply is not None:
            return IncomingMessage(**base, option_id=reply.id, option_title=reply.title)
        if interactive.nfm_reply is not None:
            return IncomingMessage(**base, form_fields=_parse_flow_response(interactive.nfm_reply.response_json))
    if message.type == "button" and message.button is not None:
        return IncomingMessage(**base, option_id=message.button.payload, option_title=message.button.text)
    if message.text is not None:
        return IncomingMessage(**base, text=message.text.body)
    return IncomingMessage(**base)


def parse_webhook(payload: dict) -> list[IncomingMessage]:
    """Every customer message in the delivery, in the order the provider sent them.

    Delivery status callbacks carry no messages and yield nothing.
    """
    webhook = WhatsAppWebhook.model_validate(payload)
    incoming: list[IncomingMessage] = []
    for entry in webhook.entry:
        for change in entry.changes:
            names = {
                contact.wa_id: contact.profile.name
                for contact in change.value.contacts
                if contact.wa_id and contact.profile is not None
            }
            for message in change.value.messages:
                incoming.append(_normalize_message(message, names.get(message.from_)))
    return incoming


def to_event(message: IncomingMessage) -> Optional[ConversationEvent]:
    """Engine event for a message, or None for unsupported content (media, reactions)."""
    if message.form_fields is not None:
        return TemplateFormSubmitted(category=message.form_fields.get("category"), raw_fields=message.form_fields)
    if message.option_id or message.option_title:
        return Selection(option_id=message.option_id, display_text=message.option_title or "")
    if message.text is not None and message.text.strip():
        return text_event(message.text)
    return None
