from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB

from supportdesk.database import Base
from supportdesk.models.customer import _utcnow


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(Text, nullable=False, default="whatsapp")
    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    processed = Column(Boolean, nullable=False, default=False)
    error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
