from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from supportdesk.database import Base
from supportdesk.models.customer import _utcnow


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"))
    phone_number = Column(Text, nullable=False, index=True)
    sender_type = Column(Text, nullable=False)  # customer, agent, system
    sender_id = Column(Text)
    text = Column(Text, nullable=False, default="")
    message_type = Column(Text, nullable=False, default="text")  # text, interactive, template_form, command
    external_message_id = Column(Text, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    ticket = relationship("Ticket", back_populates="messages")
