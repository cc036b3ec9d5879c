"""Admin endpoints for inspecting and repairing conversation state."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from supportdesk.config import settings
from supportdesk.database import get_db
from supportdesk.logging_config import get_logger, mask_phone
from supportdesk.services.alert_service import alert_warning
from supportdesk.services.escalation_service import find_escalations
from supportdesk.services.result import Result
from supportdesk.services.state_store import clear_state, get_state, phone_lock, repair_corrupted_states
from supportdesk.services.whatsapp_service import format_phone_number

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _unwrap(result: Result):
    if not result.ok:
        raise HTTPException(status_code=500, detail=result.error)
    return result.value


# === CONVERSATION STATE ===


@router.get("/conversations/{phone_number}")
async def view_conversation(
    phone_number: str,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    snapshot = _unwrap(get_state(db, format_phone_number(phone_number)))
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No conversation state")
    return snapshot.to_dict()


def _clear_locked(db: Session, phone: str) -> Result[bool]:
    with phone_lock(phone):
        cleared = clear_state(db, phone)
        if cleared.ok:
            db.commit()
    return cleared


@router.delete("/conversations/{phone_number}")
async def reset_conversation(
    phone_number: str,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Drop the stored state; the customer's next message starts from the greeting."""
    _require_admin_token(x_admin_token)
    phone = format_phone_number(phone_number)
    cleared = _unwrap(await run_in_threadpool(_clear_locked, db, phone))
    logger.info("Conversation state cleared by admin", extra={"context": {"phone": mask_phone(phone)}})
    return {"phone_number": phone, "cleared": cleared}


@router.post("/conversations/repair")
async def repair_conversations(
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Rewrite corrupted form data left by older writers."""
    _require_admin_token(x_admin_token)
    repaired = _unwrap(repair_corrupted_states(db))
    db.commit()
    return {"repaired": repaired}


# === ESCALATIONS ===


@router.post("/escalations/alert")
async def alert_escalations(
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Run the escalation sweep and post the result to the operator chat."""
    _require_admin_token(x_admin_token)
    flagged = find_escalations(db)
    alerted = False
    if flagged:
        alerted = alert_warning(
            "Tickets waiting on an agent",
            {
                ticket.ticket_number: f"{check.minutes_since_last_customer_message} min"
                for ticket, check in flagged
            },
        )
    return {"count": len(flagged), "alerted": alerted}
