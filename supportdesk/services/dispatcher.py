"""Shared pipeline for every entry channel: engine, then delivery, then fan-out."""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from supportdesk.logging_config import get_logger, mask_phone
from supportdesk.services.alert_service import alert_warning
from supportdesk.services.engine import EngineOutcome, handle_event
from supportdesk.services.events import ConversationEvent, FanoutEvent
from supportdesk.services.fanout import LiveSession, Publisher, SessionRegistry
from supportdesk.services.prompts import ButtonsPrompt, ListPrompt, Prompt, TemplateFormPrompt
from supportdesk.services.whatsapp_service import WhatsAppService

logger = get_logger("dispatcher")


class PromptSink(Protocol):
    async def deliver(self, phone_number: str, prompt: Prompt) -> dict: ...


class WhatsAppPromptSink:
    """Delivers prompts through the WhatsApp Cloud API."""

    def __init__(self, service: WhatsAppService):
        self.service = service

    def _send(self, phone_number: str, prompt: Prompt) -> dict:
        if isinstance(prompt, ButtonsPrompt):
            return self.service.send_buttons(phone_number, prompt.header, prompt.body, prompt.footer, prompt.options)
        if isinstance(prompt, ListPrompt):
            return self.service.send_list(
                phone_number, prompt.header, prompt.body, prompt.footer, prompt.button_label, prompt.sections
            )
        if isinstance(prompt, TemplateFormPrompt):
            return self.service.send_template_form(
                phone_number, prompt.template_name, prompt.template_id, prompt.locale
            )
        return self.service.send_text(phone_number, prompt.as_text())

    async def deliver(self, phone_number: str, prompt: Prompt) -> dict:
        return await run_in_threadpool(self._send, phone_number, prompt)


def live_frame(prompt: Prompt) -> tuple[str, dict]:
    """Live-channel event name and payload for a prompt."""
    if isinstance(prompt, (ButtonsPrompt, ListPrompt)):
        return "interactiveMessage", {
            "kind": prompt.kind,
            "header": prompt.header,
            "body": prompt.body,
            "footer": prompt.footer,
            "options": [
                {"id": option.id, "title": option.title, "description": option.description}
                for option in prompt.options
            ],
        }
    if isinstance(prompt, TemplateFormPrompt):
        return "templateForm", {
            "template_name": prompt.template_name,
            "template_id": prompt.template_id,
            "category": prompt.category,
            "fields": list(prompt.fields),
        }
    return "systemMessage", {"text": prompt.as_text()}


class LivePromptSink:
    """Delivers prompts as frames on the customer's own socket."""

    def __init__(self, registry: SessionRegistry, session: LiveSession):
        self.registry = registry
        self.session = session

    async def deliver(self, phone_number: str, prompt: Prompt) -> dict:
        event, payload = live_frame(prompt)
        sent = await self.registry.send(self.session, event, payload)
        return {"success": sent} if sent else {"success": False, "error": "live session closed"}


@dataclass(frozen=True)
class InboundEnvelope:
    phone_number: str
    event: ConversationEvent
    external_message_id: Optional[str] = None
    customer_name: Optional[str] = None


async def deliver_prompts(sink: PromptSink, phone_number: str, prompts: Sequence[Prompt]) -> list[dict]:
    """Best-effort delivery; failures are logged and alerted, never raised."""
    results = []
    for prompt in prompts:
        try:
            result = await sink.deliver(phone_number, prompt)
        except Exception as e:
            result = {"success": False, "error": str(e)}
        if not result.get("success"):
            logger.warning(
                "Prompt delivery failed",
                extra={"context": {"phone": mask_phone(phone_number), "kind": prompt.kind, "error": result.get("error")}},
            )
            alert_warning("Prompt delivery failed", {"phone": mask_phone(phone_number), "error": result.get("error")})
        results.append(result)
    return results


async def publish_events(publisher: Publisher, events: Sequence[FanoutEvent]) -> None:
    for event in events:
        try:
            await publisher.publish(event.channel, event.name, event.payload)
        except Exception as e:
            logger.warning(f"Fan-out failed: {e}", extra={"context": {"event": event.name, "channel": event.channel}})


async def process_inbound(
    db: Session, envelope: InboundEnvelope, sink: PromptSink, publisher: Publisher
) -> tuple[EngineOutcome, list[dict]]:
    """Run the engine off the event loop; it blocks on the per-phone lock and the database."""
    outcome = await run_in_threadpool(
        handle_event,
        db,
        envelope.phone_number,
        envelope.event,
        external_message_id=envelope.external_message_id,
        customer_name=envelope.customer_name,
    )
    deliveries = await deliver_prompts(sink, envelope.phone_number, outcome.prompts)
    await publish_events(publisher, outcome.events)
    return outcome, deliveries


async def process_batch(
    db: Session, envelopes: Sequence[InboundEnvelope], sink: PromptSink, publisher: Publisher
) -> list[dict]:
    """Strictly sequential: later messages may depend on state written by earlier ones."""
    results = []
    for envelope in envelopes:
        outcome, deliveries = await process_inbound(db, envelope, sink, publisher)
        summary = outcome.to_dict()
        summary["delivered"] = sum(1 for delivery in deliveries if delivery.get("success"))
        results.append(summary)
    return results
