from types import SimpleNamespace

from supportdesk.services.selection import (
    is_affirmative,
    is_close_command,
    is_create_request,
    is_create_slot,
    match_ticket,
    menu_tickets,
    parse_ticket_option,
    resolve_category,
    resolve_fuel_subtype,
    select_ticket_option,
)

TICKETS = [
    SimpleNamespace(id=7, ticket_number="TKT-123456-ABCD"),
    SimpleNamespace(id=8, ticket_number="TKT-654321-WXYZ"),
]


class TestResolveCategory:
    def test_option_id(self):
        assert resolve_category("type_fund_request", None) == "fund_request"

    def test_menu_index(self):
        assert resolve_category(None, "1") == "lock_open"
        assert resolve_category(None, "3") == "fund_request"
        assert resolve_category(None, "9") is None

    def test_label(self):
        assert resolve_category(None, "Unlock Repair") == "lock_repair"

    def test_repair_keywords_checked_before_unlock(self):
        assert resolve_category(None, "need to repair my unlock") == "lock_repair"
        assert resolve_category(None, "please unlock the car") == "lock_open"

    def test_fuel_keywords(self):
        assert resolve_category(None, "I need petrol") == "fuel_request"

    def test_unmatched(self):
        assert resolve_category(None, "banana") is None
        assert resolve_category(None, "") is None


class TestResolveFuelSubtype:
    def test_option_id(self):
        assert resolve_fuel_subtype("fuel_quantity", None) == "quantity"

    def test_index_and_keywords(self):
        assert resolve_fuel_subtype(None, "1") == "amount"
        assert resolve_fuel_subtype(None, "2") == "quantity"
        assert resolve_fuel_subtype(None, "20 litres please") == "quantity"
        assert resolve_fuel_subtype(None, "diesel") is None


class TestMatchTicket:
    def test_option_id_first(self):
        assert match_ticket(TICKETS, select_ticket_option(8), "1") is TICKETS[1]

    def test_unknown_option_id(self):
        assert match_ticket(TICKETS, "select_ticket_99", None) is None

    def test_ticket_number_case_insensitive(self):
        assert match_ticket(TICKETS, None, "tkt-654321-wxyz") is TICKETS[1]

    def test_digit_is_menu_position_not_ticket_id(self):
        tickets = [
            SimpleNamespace(id=2, ticket_number="TKT-000002-BBBB"),
            SimpleNamespace(id=1, ticket_number="TKT-000001-AAAA"),
        ]
        assert match_ticket(tickets, None, "1") is tickets[0]
        assert match_ticket(tickets, None, "2") is tickets[1]

    def test_ticket_id_alone_does_not_match(self):
        assert match_ticket(TICKETS, None, "7") is None

    def test_menu_index(self):
        assert match_ticket(TICKETS, None, "2") is TICKETS[1]

    def test_positions_limited_to_menu_rows(self):
        tickets = [SimpleNamespace(id=n, ticket_number=f"TKT-{n:06d}-XXXX") for n in range(1, 13)]
        assert len(menu_tickets(tickets)) == 9
        assert match_ticket(tickets, None, "9") is tickets[8]
        assert match_ticket(tickets, None, "11") is None
        assert match_ticket(tickets, select_ticket_option(12), None) is tickets[11]

    def test_no_match(self):
        assert match_ticket(TICKETS, None, "hello") is None
        assert match_ticket(TICKETS, None, "3") is None


class TestCreateSlot:
    def test_slot_after_last_ticket(self):
        assert is_create_slot(TICKETS, "3") is True
        assert is_create_slot(TICKETS, " 3 ") is True
        assert is_create_slot(TICKETS, "2") is False
        assert is_create_slot(TICKETS, None) is False

    def test_slot_follows_visible_rows(self):
        tickets = [SimpleNamespace(id=n, ticket_number=f"TKT-{n:06d}-XXXX") for n in range(1, 13)]
        assert is_create_slot(tickets, "10") is True
        assert is_create_slot(tickets, "13") is False


class TestReplies:
    def test_affirmative(self):
        assert is_affirmative("create_new_ticket", None) is True
        assert is_affirmative(None, "1") is True
        assert is_affirmative(None, "Yes please") is True
        assert is_affirmative(None, "no thanks") is False
        assert is_affirmative(None, "") is False

    def test_create_request(self):
        assert is_create_request(None, "new ticket") is True
        assert is_create_request(None, "TKT-1") is False

    def test_close_command(self):
        assert is_close_command(" /CLOSE ") is True
        assert is_close_command("close") is False

    def test_parse_ticket_option(self):
        assert parse_ticket_option("select_ticket_12") == 12
        assert parse_ticket_option("select_ticket_abc") is None
        assert parse_ticket_option("type_other") is None
