from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text

from supportdesk.database import Base
from supportdesk.models.customer import _utcnow


class ConversationStateRecord(Base):
    """One row per phone number; form_data holds a JSON object as text."""

    __tablename__ = "conversation_states"

    phone_number = Column(Text, primary_key=True)
    step = Column(Text, nullable=False, default="idle")
    ticket_type = Column(Text)
    form_data = Column(Text, nullable=False, default="{}")
    bound_ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="SET NULL"), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
