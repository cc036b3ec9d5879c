from supportdesk.models.agent import Agent
from supportdesk.models.conversation_state import ConversationStateRecord
from supportdesk.models.customer import Customer
from supportdesk.models.message import Message
from supportdesk.models.ticket import OPEN_STATUSES, TICKET_STATUSES, Ticket
from supportdesk.models.webhook_log import WebhookLog

__all__ = [
    "Agent",
    "Customer",
    "Ticket",
    "Message",
    "ConversationStateRecord",
    "WebhookLog",
    "OPEN_STATUSES",
    "TICKET_STATUSES",
]
