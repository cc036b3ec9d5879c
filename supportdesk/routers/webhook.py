from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from supportdesk.config import settings
from supportdesk.database import get_db
from supportdesk.logging_config import get_logger, mask_phone
from supportdesk.schemas.webhook import WebhookResponse
from supportdesk.services.dispatcher import InboundEnvelope, WhatsAppPromptSink, process_batch
from supportdesk.services.fanout import SessionRegistry, get_hub
from supportdesk.services.whatsapp_service import (
    IncomingMessage,
    WhatsAppService,
    get_whatsapp_service,
    parse_webhook,
    to_event,
    verify_webhook,
)

logger = get_logger("webhook")

router = APIRouter(tags=["webhook"])


def build_envelopes(messages: list[IncomingMessage]) -> tuple[list[InboundEnvelope], int]:
    """Engine inputs for the delivery, in order, plus how many messages had nothing to act on."""
    envelopes: list[InboundEnvelope] = []
    skipped = 0
    for message in messages:
        event = to_event(message)
        if event is None or not message.phone_number:
            skipped += 1
            logger.info(
                "Unsupported inbound message skipped",
                extra={"context": {"phone": mask_phone(message.phone_number), "type": message.message_type}},
            )
            continue
        envelopes.append(
            InboundEnvelope(
                phone_number=message.phone_number,
                event=event,
                external_message_id=message.message_id,
                customer_name=message.profile_name,
            )
        )
    return envelopes, skipped


async def read_messages(request: Request) -> Optional[list[IncomingMessage]]:
    """Parsed messages, or None when the body is not a webhook payload at all."""
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Webhook body is not JSON")
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return parse_webhook(payload)
    except ValidationError as e:
        logger.warning(f"Webhook payload rejected: {e.error_count()} errors")
        return None


def verification_response(mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> PlainTextResponse:
    echoed = verify_webhook(mode, token, challenge, settings.whatsapp_verify_token)
    if echoed is None:
        logger.warning("Webhook verification failed", extra={"context": {"mode": mode}})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")
    logger.info("Webhook verified")
    return PlainTextResponse(echoed or "")


@router.get("/webhook")
async def verify(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Subscription handshake from the WhatsApp Cloud API."""
    return verification_response(hub_mode, hub_verify_token, hub_challenge)


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(
    request: Request,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
):
    """Inbound WhatsApp delivery. Always 200 so the provider stops redelivering."""
    messages = await read_messages(request)
    if messages is None:
        return WebhookResponse(status="ignored")

    envelopes, skipped = build_envelopes(messages)
    results = await process_batch(db, envelopes, WhatsAppPromptSink(whatsapp), hub)
    return WebhookResponse(status="ok", processed=len(results), skipped=skipped, results=results)
