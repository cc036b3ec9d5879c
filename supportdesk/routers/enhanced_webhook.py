"""Enhanced webhook: the plain pipeline plus payload logging and dashboard broadcasts."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from supportdesk.database import get_db
from supportdesk.logging_config import get_logger
from supportdesk.models import WebhookLog
from supportdesk.routers.webhook import build_envelopes, verification_response
from supportdesk.schemas.webhook import WebhookResponse
from supportdesk.services.alert_service import alert_error
from supportdesk.services.customer_service import customer_to_dict, get_customer_by_phone
from supportdesk.services.dispatcher import WhatsAppPromptSink, process_inbound, publish_events
from supportdesk.services.events import AGENTS_CHANNEL, CUSTOMER_UPDATED, NEW_CUSTOMER_MESSAGE, FanoutEvent, event_text
from supportdesk.services.fanout import SessionRegistry, get_hub
from supportdesk.services.whatsapp_service import WhatsAppService, get_whatsapp_service, parse_webhook

logger = get_logger("enhanced_webhook")

router = APIRouter(tags=["webhook"])


def _log_payload(db: Session, payload: dict) -> Optional[WebhookLog]:
    record = WebhookLog(source="whatsapp", payload=payload, processed=False)
    try:
        db.add(record)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store webhook payload: {e}")
        return None
    return record


def _finish_log(db: Session, record: Optional[WebhookLog], error: Optional[str] = None) -> None:
    if record is None:
        return
    try:
        record.processed = error is None
        record.error = error
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to update webhook log: {e}", extra={"context": {"webhook_log_id": record.id}})


def _broadcasts(db: Session, envelope, outcome) -> list[FanoutEvent]:
    events = []
    if outcome.action not in ("message_appended", "duplicate"):
        events.append(
            FanoutEvent(
                AGENTS_CHANNEL,
                NEW_CUSTOMER_MESSAGE,
                {
                    "ticket_id": None,
                    "phone_number": envelope.phone_number,
                    "message": {"text": event_text(envelope.event), "sender_type": "customer"},
                    "action": outcome.action,
                },
            )
        )
    customer = get_customer_by_phone(db, envelope.phone_number)
    if customer is not None:
        events.append(FanoutEvent(AGENTS_CHANNEL, CUSTOMER_UPDATED, customer_to_dict(db, customer)))
    return events


@router.get("/enhanced-webhook")
async def verify_enhanced(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    return verification_response(hub_mode, hub_verify_token, hub_challenge)


@router.post("/enhanced-webhook", response_model=WebhookResponse)
async def handle_enhanced_webhook(
    request: Request,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
):
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Enhanced webhook body is not JSON")
        return WebhookResponse(status="ignored")
    if not isinstance(payload, dict):
        return WebhookResponse(status="ignored")

    record = _log_payload(db, payload)
    try:
        messages = parse_webhook(payload)
    except ValidationError as e:
        _finish_log(db, record, error=f"invalid payload: {e.error_count()} errors")
        return WebhookResponse(status="ignored")

    envelopes, skipped = build_envelopes(messages)
    sink = WhatsAppPromptSink(whatsapp)
    results = []
    try:
        for envelope in envelopes:
            outcome, deliveries = await process_inbound(db, envelope, sink, hub)
            await publish_events(hub, _broadcasts(db, envelope, outcome))
            summary = outcome.to_dict()
            summary["delivered"] = sum(1 for delivery in deliveries if delivery.get("success"))
            results.append(summary)
    except Exception as e:
        logger.error(f"Enhanced webhook processing failed: {e}", exc_info=True)
        alert_error("Enhanced webhook processing failed", {"error": str(e)[:200]})
        _finish_log(db, record, error=str(e)[:500])
        return WebhookResponse(status="error", processed=len(results), skipped=skipped, results=results)

    errors = [result["error_code"] for result in results if result.get("error_code")]
    _finish_log(db, record, error=", ".join(errors) if errors else None)
    return WebhookResponse(status="ok", processed=len(results), skipped=skipped, results=results)
