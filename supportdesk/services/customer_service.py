from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supportdesk.logging_config import get_logger, mask_phone
from supportdesk.models import OPEN_STATUSES, Customer, Ticket

logger = get_logger("customer_service")


def get_customer_by_phone(db: Session, phone_number: str) -> Optional[Customer]:
    return db.query(Customer).filter(Customer.phone_number == phone_number).first()


def find_or_create_customer(db: Session, phone_number: str, name: Optional[str] = None) -> Customer:
    """Find customer by phone number or insert one.

    A concurrent insert for the same number surfaces as a unique violation
    inside a savepoint; the savepoint is rolled back and the existing row is
    returned.
    """
    customer = get_customer_by_phone(db, phone_number)
    if customer:
        if name and not customer.name:
            customer.name = name
            db.flush()
        return customer

    customer = Customer(phone_number=phone_number, name=name)
    try:
        with db.begin_nested():
            db.add(customer)
    except IntegrityError:
        logger.info("Customer created concurrently", extra={"context": {"phone": mask_phone(phone_number)}})
        customer = get_customer_by_phone(db, phone_number)
        if customer is None:
            raise
    return customer


def customer_stats(db: Session, customer_id: int) -> dict:
    total = db.query(func.count(Ticket.id)).filter(Ticket.customer_id == customer_id).scalar() or 0
    open_count = (
        db.query(func.count(Ticket.id))
        .filter(Ticket.customer_id == customer_id, Ticket.status.in_(OPEN_STATUSES))
        .scalar()
        or 0
    )
    return {"total_tickets": total, "open_tickets": open_count}


def customer_to_dict(db: Session, customer: Customer) -> dict:
    return {
        "id": customer.id,
        "phone_number": customer.phone_number,
        "name": customer.name,
        "created_at": customer.created_at.isoformat() if customer.created_at else None,
        **customer_stats(db, customer.id),
    }


def list_customers(db: Session, page: int = 1, limit: int = 20) -> tuple[list[Customer], int]:
    query = db.query(Customer)
    total = query.count()
    customers = query.order_by(Customer.created_at.desc(), Customer.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return customers, total


def update_customer_name(db: Session, phone_number: str, name: str) -> Optional[Customer]:
    customer = get_customer_by_phone(db, phone_number)
    if customer is None:
        return None
    customer.name = name.strip() or None
    db.flush()
    return customer
