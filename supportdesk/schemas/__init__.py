from supportdesk.schemas.customer import CustomerOut
from supportdesk.schemas.ticket import MessageOut, TicketDetail, TicketOut
from supportdesk.schemas.webhook import WebhookResponse, WhatsAppWebhook

__all__ = ["CustomerOut", "MessageOut", "TicketDetail", "TicketOut", "WebhookResponse", "WhatsAppWebhook"]
