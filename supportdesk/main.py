import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from supportdesk.config import settings
from supportdesk.database import get_db, init_db
from supportdesk.logging_config import get_logger, setup_logging
from supportdesk.models import ConversationStateRecord, Customer, Message, Ticket
from supportdesk.routers import admin, customers, enhanced_webhook, live, tickets, webhook
from supportdesk.services.fanout import hub

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Support Desk API",
    description="WhatsApp customer-support ticketing backend",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(enhanced_webhook.router)
app.include_router(live.router)
app.include_router(tickets.router)
app.include_router(customers.router)
app.include_router(admin.router)

app.state.hub = hub


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _should_create_tables() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("AUTO_CREATE_TABLES"), default=settings.auto_create_tables)


@app.on_event("startup")
async def create_tables() -> None:
    if not _should_create_tables():
        return
    init_db()
    logger.info("Database tables ready")
    if not settings.whatsapp_configured:
        logger.warning("WhatsApp credentials missing, outbound messages will be mocked")


@app.get("/health")
async def health():
    return {"status": "ok", "live_sessions": len(hub)}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "customers": db.query(Customer).count(),
        "tickets": db.query(Ticket).count(),
        "messages": db.query(Message).count(),
        "conversations": db.query(ConversationStateRecord).count(),
    }
