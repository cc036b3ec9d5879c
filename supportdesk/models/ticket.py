from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, Text
from sqlalchemy.orm import relationship

from supportdesk.database import Base
from supportdesk.models.customer import _utcnow

TICKET_STATUSES = ("open", "in_progress", "pending_customer", "closed")
OPEN_STATUSES = ("open", "in_progress", "pending_customer")


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_number = Column(Text, nullable=False, unique=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    assigned_agent_id = Column(Integer, ForeignKey("agents.id"))
    status = Column(Text, nullable=False, default="open")  # open, in_progress, pending_customer, closed
    priority = Column(Text, nullable=False, default="medium")  # low, medium, high, urgent
    issue_type = Column(Text, nullable=False)

    vehicle_number = Column(Text)
    driver_number = Column(Text)
    location = Column(Text)
    availability_date = Column(Text)
    availability_time = Column(Text)
    amount = Column(Numeric(12, 2))
    upi_id = Column(Text)
    quantity = Column(Integer)
    fuel_type = Column(Text)  # amount, quantity
    comment = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    closed_at = Column(DateTime(timezone=True))

    customer = relationship("Customer", back_populates="tickets")
    assigned_agent = relationship("Agent", back_populates="tickets")
    messages = relationship("Message", back_populates="ticket", order_by="Message.id")

    @property
    def phone_number(self):
        return self.customer.phone_number if self.customer else None

    @property
    def customer_name(self):
        return self.customer.name if self.customer else None

    @property
    def assigned_agent_name(self):
        return self.assigned_agent.name if self.assigned_agent else None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES
