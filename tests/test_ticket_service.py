import re
from datetime import datetime, timezone
from unittest.mock import patch

from supportdesk.models import Agent, Customer, Ticket
from supportdesk.services.customer_service import find_or_create_customer
from supportdesk.services.result import NOT_FOUND, VALIDATION_ERROR
from supportdesk.services.ticket_service import (
    add_agent_reply,
    assign_ticket,
    close_ticket,
    create_ticket,
    find_ticket_by_number,
    generate_ticket_number,
    get_open_tickets_for_phone,
    ticket_columns,
    update_status,
)

PHONE = "919876543210"
ANSWERS = {"vehicle_number": "ABC123", "driver_number": "DRV001", "location": "Warsaw"}


class TestGenerateTicketNumber:
    def test_format(self):
        number = generate_ticket_number()
        assert re.fullmatch(r"TKT-\d{6}-[A-Z0-9]{4}", number)

    def test_uses_last_six_millis_digits(self):
        moment = datetime(2025, 1, 1, tzinfo=timezone.utc)
        millis = str(int(moment.timestamp() * 1000))
        assert generate_ticket_number(moment).startswith(f"TKT-{millis[-6:]}-")


class TestTicketColumns:
    def test_blank_optional_becomes_none(self):
        columns = ticket_columns({**ANSWERS, "comment": "  "})
        assert columns["comment"] is None
        assert columns["amount"] is None

    def test_amount_and_quantity(self):
        columns = ticket_columns({"amount": 1500, "quantity": "40"})
        assert str(columns["amount"]) == "1500"
        assert columns["quantity"] == 40


class TestCustomer:
    def test_find_or_create_is_idempotent(self, db_session):
        first = find_or_create_customer(db_session, PHONE, "Ravi")
        second = find_or_create_customer(db_session, PHONE)
        db_session.commit()

        assert first.id == second.id
        assert db_session.query(Customer).count() == 1
        assert second.name == "Ravi"

    def test_name_filled_in_later(self, db_session):
        find_or_create_customer(db_session, PHONE)
        customer = find_or_create_customer(db_session, PHONE, "Ravi")
        assert customer.name == "Ravi"


class TestCreateTicket:
    def test_creates_open_ticket(self, db_session):
        result = create_ticket(db_session, PHONE, "lock_open", ANSWERS, customer_name="Ravi")
        db_session.commit()

        assert result.ok is True
        ticket = result.value
        assert ticket.status == "open"
        assert ticket.priority == "medium"
        assert ticket.phone_number == PHONE
        assert ticket.customer_name == "Ravi"

    def test_unknown_category(self, db_session):
        result = create_ticket(db_session, PHONE, "refund", ANSWERS)
        assert result.ok is False
        assert result.error_code == VALIDATION_ERROR

    def test_number_collision_retries_once(self, db_session, ticket_factory):
        existing = ticket_factory(PHONE)

        with patch(
            "supportdesk.services.ticket_service.generate_ticket_number",
            side_effect=[existing.ticket_number, "TKT-000001-FRSH"],
        ):
            result = create_ticket(db_session, PHONE, "lock_open", ANSWERS)
        db_session.commit()

        assert result.ok is True
        assert result.value.ticket_number == "TKT-000001-FRSH"
        assert db_session.query(Ticket).count() == 2

    def test_lookup_by_number_ignores_case(self, db_session, ticket_factory):
        ticket = ticket_factory(PHONE)
        assert find_ticket_by_number(db_session, ticket.ticket_number.lower()).id == ticket.id


class TestTicketLifecycle:
    def test_close_and_close_again(self, db_session, ticket_factory):
        ticket = ticket_factory(PHONE)

        closed = close_ticket(db_session, ticket.id)
        assert closed.ok is True
        assert closed.value.status == "closed"
        assert closed.value.closed_at is not None

        again = close_ticket(db_session, ticket.id)
        assert again.ok is False
        assert again.error_code == "already_closed"

    def test_close_missing(self, db_session):
        assert close_ticket(db_session, 404).error_code == NOT_FOUND

    def test_closed_tickets_not_offered(self, db_session, ticket_factory):
        first = ticket_factory(PHONE)
        second = ticket_factory(PHONE)
        close_ticket(db_session, first.id)
        db_session.commit()

        assert [t.id for t in get_open_tickets_for_phone(db_session, PHONE)] == [second.id]

    def test_assign_moves_to_in_progress(self, db_session, ticket_factory):
        ticket = ticket_factory(PHONE)
        agent = Agent(name="Anna")
        db_session.add(agent)
        db_session.commit()

        result = assign_ticket(db_session, ticket.id, agent.id)

        assert result.value.status == "in_progress"
        assert result.value.assigned_agent_name == "Anna"

    def test_assign_unknown_agent(self, db_session, ticket_factory):
        ticket = ticket_factory(PHONE)
        assert assign_ticket(db_session, ticket.id, 99).error_code == NOT_FOUND

    def test_invalid_status(self, db_session, ticket_factory):
        ticket = ticket_factory(PHONE)
        assert update_status(db_session, ticket.id, "resolved").error_code == VALIDATION_ERROR

    def test_agent_reply_rules(self, db_session, ticket_factory):
        ticket = ticket_factory(PHONE)

        reply = add_agent_reply(db_session, ticket.id, "  On our way ")
        assert reply.value.text == "On our way"
        assert reply.value.sender_type == "agent"
        assert db_session.get(Ticket, ticket.id).status == "in_progress"

        assert add_agent_reply(db_session, ticket.id, "   ").error_code == VALIDATION_ERROR
        close_ticket(db_session, ticket.id)
        assert add_agent_reply(db_session, ticket.id, "hello").error_code == "ticket_closed"
