"""Live bidirectional channel for web customers and agent dashboards.

Frames in both directions are ``{"event": <name>, "data": {...}}``.
"""

import json
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from supportdesk.database import get_db
from supportdesk.logging_config import get_logger
from supportdesk.services.agent_relay import relay_agent_reply
from supportdesk.services.dispatcher import InboundEnvelope, LivePromptSink, process_inbound
from supportdesk.services.events import (
    ConversationEvent,
    Selection,
    TemplateFormSubmitted,
    text_event,
)
from supportdesk.services.fanout import ROLE_AGENT, ROLE_CUSTOMER, LiveSession, SessionRegistry, get_hub
from supportdesk.services.whatsapp_service import WhatsAppService, format_phone_number, get_whatsapp_service

logger = get_logger("live")

router = APIRouter(tags=["live"])


class FrameError(Exception):
    pass


class LiveContext:
    def __init__(self, db: Session, hub: SessionRegistry, session: LiveSession, whatsapp: WhatsAppService):
        self.db = db
        self.hub = hub
        self.session = session
        self.whatsapp = whatsapp
        self.customer_name = None

    async def send(self, event: str, payload: dict) -> None:
        await self.hub.send(self.session, event, payload)


def _require_role(ctx: LiveContext, role: str) -> None:
    if ctx.session.role != role:
        raise FrameError(f"Send {role}Connect first")


async def _customer_connect(ctx: LiveContext, data: dict) -> None:
    phone = format_phone_number(data.get("phone_number") or data.get("phoneNumber"))
    if not phone:
        raise FrameError("phone_number is required")
    ctx.hub.identify_customer(ctx.session.connection_id, phone)
    ctx.customer_name = data.get("name")
    await ctx.send("customerConnected", {"connection_id": ctx.session.connection_id, "phone_number": phone})


async def _run_engine(ctx: LiveContext, event: ConversationEvent, data: dict) -> None:
    _require_role(ctx, ROLE_CUSTOMER)
    envelope = InboundEnvelope(
        phone_number=ctx.session.phone_number,
        event=event,
        external_message_id=data.get("message_id") or data.get("messageId"),
        customer_name=ctx.customer_name,
    )
    outcome, _ = await process_inbound(ctx.db, envelope, LivePromptSink(ctx.hub, ctx.session), ctx.hub)
    if not outcome.ok:
        await ctx.send("error", {"code": outcome.error_code, "message": "Message could not be processed"})


async def _customer_message(ctx: LiveContext, data: dict) -> None:
    text = (data.get("text") or data.get("message") or "").strip()
    if not text:
        raise FrameError("text is required")
    await _run_engine(ctx, text_event(text), data)


async def _interactive_response(ctx: LiveContext, data: dict) -> None:
    option_id = data.get("option_id") or data.get("id")
    title = data.get("title") or ""
    if not option_id and not title:
        raise FrameError("option_id is required")
    await _run_engine(ctx, Selection(option_id=option_id, display_text=title), data)


async def _form_submitted(ctx: LiveContext, data: dict) -> None:
    fields = data.get("fields")
    if not isinstance(fields, dict):
        raise FrameError("fields must be an object")
    await _run_engine(ctx, TemplateFormSubmitted(category=data.get("category"), raw_fields=fields), data)


async def _agent_connect(ctx: LiveContext, data: dict) -> None:
    agent_id = data.get("agent_id") or data.get("agentId")
    ctx.hub.identify_agent(ctx.session.connection_id, int(agent_id) if agent_id is not None else None)
    await ctx.send("agentConnected", {"connection_id": ctx.session.connection_id, "agent_id": ctx.session.agent_id})


async def _agent_message(ctx: LiveContext, data: dict) -> None:
    _require_role(ctx, ROLE_AGENT)
    ticket_id = data.get("ticket_id") or data.get("ticketId")
    if ticket_id is None:
        raise FrameError("ticket_id is required")
    replied = await relay_agent_reply(
        ctx.db, int(ticket_id), data.get("message") or "", ctx.session.agent_id, ctx.whatsapp, ctx.hub
    )
    if not replied.ok:
        raise FrameError(replied.error)


FrameHandler = Callable[[LiveContext, dict], Awaitable[None]]

FRAME_HANDLERS: dict[str, FrameHandler] = {
    "customerConnect": _customer_connect,
    "customerMessage": _customer_message,
    "interactiveResponse": _interactive_response,
    "formSubmitted": _form_submitted,
    "agentConnect": _agent_connect,
    "agentMessage": _agent_message,
}


async def handle_frame(ctx: LiveContext, raw: str) -> None:
    try:
        frame = json.loads(raw)
    except ValueError:
        await ctx.send("error", {"message": "Frames must be JSON"})
        return
    if not isinstance(frame, dict):
        await ctx.send("error", {"message": "Frames must be JSON objects"})
        return

    name = frame.get("event")
    handler = FRAME_HANDLERS.get(name)
    if handler is None:
        await ctx.send("error", {"message": f"Unknown event: {name}"})
        return
    data = frame.get("data") if isinstance(frame.get("data"), dict) else {}
    try:
        await handler(ctx, data)
    except (FrameError, ValueError) as e:
        await ctx.send("error", {"event": name, "message": str(e)})


@router.websocket("/ws/live")
async def live_channel(
    websocket: WebSocket,
    db: Session = Depends(get_db),
    hub: SessionRegistry = Depends(get_hub),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
):
    await websocket.accept()
    session = hub.register(websocket)
    ctx = LiveContext(db, hub, session, whatsapp)
    try:
        while True:
            raw = await websocket.receive_text()
            await handle_frame(ctx, raw)
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(session.connection_id)


@router.get("/ws/live/sessions")
async def list_sessions(hub: SessionRegistry = Depends(get_hub)):
    sessions = hub.describe()
    return {"count": len(sessions), "sessions": sessions}
