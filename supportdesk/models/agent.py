from sqlalchemy import Boolean, Column, DateTime, Integer, Text
from sqlalchemy.orm import relationship

from supportdesk.database import Base
from supportdesk.models.customer import _utcnow


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    email = Column(Text, unique=True)
    role = Column(Text, nullable=False, default="agent")  # agent, supervisor, admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    tickets = relationship("Ticket", back_populates="assigned_agent")
