from typing import Optional

from sqlalchemy.orm import Session

from supportdesk.models import Message

SENDER_CUSTOMER = "customer"
SENDER_AGENT = "agent"
SENDER_SYSTEM = "system"


def save_message(
    db: Session,
    phone_number: str,
    sender_type: str,
    text: str,
    *,
    ticket_id: Optional[int] = None,
    sender_id: Optional[str] = None,
    message_type: str = "text",
    external_message_id: Optional[str] = None,
) -> Message:
    """Append a message to the log."""
    message = Message(
        ticket_id=ticket_id,
        phone_number=phone_number,
        sender_type=sender_type,
        sender_id=sender_id,
        text=text or "",
        message_type=message_type,
        external_message_id=external_message_id,
    )
    db.add(message)
    db.flush()
    return message


def is_duplicate(db: Session, external_message_id: Optional[str]) -> bool:
    """True when the provider already delivered this message id."""
    if not external_message_id:
        return False
    return (
        db.query(Message.id).filter(Message.external_message_id == external_message_id).first()
        is not None
    )


def list_ticket_messages(db: Session, ticket_id: int) -> list[Message]:
    return db.query(Message).filter(Message.ticket_id == ticket_id).order_by(Message.id.asc()).all()


def list_phone_messages(db: Session, phone_number: str, limit: int = 100) -> list[Message]:
    rows = (
        db.query(Message)
        .filter(Message.phone_number == phone_number)
        .order_by(Message.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


def last_customer_message(db: Session, ticket_id: int) -> Optional[Message]:
    return (
        db.query(Message)
        .filter(Message.ticket_id == ticket_id, Message.sender_type == SENDER_CUSTOMER)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .first()
    )


def mark_processed(db: Session, message_id: int) -> None:
    """Messages are immutable once written; kept so callers have a stable hook."""
    return None


def message_to_dict(message: Message) -> dict:
    return {
        "id": message.id,
        "ticket_id": message.ticket_id,
        "phone_number": message.phone_number,
        "sender_type": message.sender_type,
        "sender_id": message.sender_id,
        "text": message.text,
        "message_type": message.message_type,
        "external_message_id": message.external_message_id,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }
