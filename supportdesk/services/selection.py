"""Option ids offered to customers and the rules that map replies back to them.

Option ids are matched through explicit tables first. The keyword tables are
the fallback for channels that only deliver the label or free text.
"""

import re
from typing import Optional, Protocol, Sequence

from supportdesk.services.field_registry import (
    CATEGORIES,
    CATEGORY_ORDER,
    FUEL_BY_AMOUNT,
    FUEL_BY_QUANTITY,
)

CREATE_NEW_TICKET = "create_new_ticket"
SELECT_TICKET_PREFIX = "select_ticket_"
TYPE_PREFIX = "type_"
FUEL_PREFIX = "fuel_"
CLOSE_COMMAND = "/close"

# A WhatsApp list holds ten rows; the last one is "Create New Ticket".
MENU_TICKET_LIMIT = 9

CATEGORY_OPTIONS: dict[str, str] = {f"{TYPE_PREFIX}{key}": key for key in CATEGORY_ORDER}
FUEL_OPTIONS: dict[str, str] = {
    f"{FUEL_PREFIX}{FUEL_BY_AMOUNT}": FUEL_BY_AMOUNT,
    f"{FUEL_PREFIX}{FUEL_BY_QUANTITY}": FUEL_BY_QUANTITY,
}
FUEL_ORDER = (FUEL_BY_AMOUNT, FUEL_BY_QUANTITY)

# Fallback: every keyword must appear in the text. First matching row wins,
# so more specific rows come first.
CATEGORY_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("unlock", "repair"), "lock_repair"),
    (("lock", "repair"), "lock_repair"),
    (("repair",), "lock_repair"),
    (("unlock",), "lock_open"),
    (("lock", "open"), "lock_open"),
    (("fund",), "fund_request"),
    (("money",), "fund_request"),
    (("fuel",), "fuel_request"),
    (("petrol",), "fuel_request"),
    (("diesel",), "fuel_request"),
    (("other",), "other"),
)

FUEL_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("amount",), FUEL_BY_AMOUNT),
    (("rupee",), FUEL_BY_AMOUNT),
    (("money",), FUEL_BY_AMOUNT),
    (("quantity",), FUEL_BY_QUANTITY),
    (("litre",), FUEL_BY_QUANTITY),
    (("liter",), FUEL_BY_QUANTITY),
)

CREATE_KEYWORDS = ("create", "new")
AFFIRMATIVE_WORDS = frozenset({"1", "yes", "y", "yeah", "yep", "ok", "okay", "sure", "create"})


class TicketLike(Protocol):
    id: int
    ticket_number: str


def normalize_text(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower())


def select_ticket_option(ticket_id: int) -> str:
    return f"{SELECT_TICKET_PREFIX}{ticket_id}"


def type_option(category: str) -> str:
    return f"{TYPE_PREFIX}{category}"


def fuel_option(subtype: str) -> str:
    return f"{FUEL_PREFIX}{subtype}"


def is_close_command(text: Optional[str]) -> bool:
    return normalize_text(text) == CLOSE_COMMAND


def parse_ticket_option(option_id: Optional[str]) -> Optional[int]:
    if not option_id or not option_id.startswith(SELECT_TICKET_PREFIX):
        return None
    raw = option_id[len(SELECT_TICKET_PREFIX):]
    return int(raw) if raw.isdigit() else None


def _match_keywords(text: str, table: tuple[tuple[tuple[str, ...], str], ...]) -> Optional[str]:
    for keywords, value in table:
        if all(keyword in text for keyword in keywords):
            return value
    return None


def _menu_index(text: str, size: int) -> Optional[int]:
    if text.isdigit():
        index = int(text)
        if 1 <= index <= size:
            return index - 1
    return None


def resolve_category(option_id: Optional[str], text: Optional[str]) -> Optional[str]:
    if option_id and option_id in CATEGORY_OPTIONS:
        return CATEGORY_OPTIONS[option_id]
    normalized = normalize_text(text)
    if not normalized:
        return None
    index = _menu_index(normalized, len(CATEGORY_ORDER))
    if index is not None:
        return CATEGORY_ORDER[index]
    for key, category in CATEGORIES.items():
        if normalized in (key, key.replace("_", " "), category.label.lower()):
            return key
    return _match_keywords(normalized, CATEGORY_KEYWORDS)


def resolve_fuel_subtype(option_id: Optional[str], text: Optional[str]) -> Optional[str]:
    if option_id and option_id in FUEL_OPTIONS:
        return FUEL_OPTIONS[option_id]
    normalized = normalize_text(text)
    if not normalized:
        return None
    index = _menu_index(normalized, len(FUEL_ORDER))
    if index is not None:
        return FUEL_ORDER[index]
    return _match_keywords(normalized, FUEL_KEYWORDS)


def is_create_request(option_id: Optional[str], text: Optional[str]) -> bool:
    if option_id == CREATE_NEW_TICKET:
        return True
    normalized = normalize_text(text)
    return any(keyword in normalized for keyword in CREATE_KEYWORDS)


def is_affirmative(option_id: Optional[str], text: Optional[str]) -> bool:
    if option_id == CREATE_NEW_TICKET:
        return True
    normalized = normalize_text(text)
    if not normalized:
        return False
    if normalized in AFFIRMATIVE_WORDS:
        return True
    words = set(re.findall(r"[a-z0-9]+", normalized))
    return bool(words & {"yes", "create"})


def menu_tickets(tickets: Sequence[TicketLike]) -> list[TicketLike]:
    """Tickets shown in the ticket menu, in menu order."""
    return list(tickets[:MENU_TICKET_LIMIT])


def is_create_slot(tickets: Sequence[TicketLike], text: Optional[str]) -> bool:
    """True when the reply is the menu position of "Create New Ticket"."""
    return normalize_text(text) == str(len(menu_tickets(tickets)) + 1)


def match_ticket(
    tickets: Sequence[TicketLike], option_id: Optional[str], text: Optional[str]
) -> Optional[TicketLike]:
    """Resolve a reply to one of the offered tickets.

    Order: option id, position in the menu, full ticket number. A bare number
    is only ever a menu position, never a ticket id.
    """
    selected_id = parse_ticket_option(option_id)
    if selected_id is not None:
        return next((ticket for ticket in tickets if ticket.id == selected_id), None)

    normalized = normalize_text(text)
    if not normalized:
        return None
    if normalized.isdigit():
        offered = menu_tickets(tickets)
        index = _menu_index(normalized, len(offered))
        return offered[index] if index is not None else None
    for ticket in tickets:
        number = ticket.ticket_number.lower()
        if normalized == number or number in normalized:
            return ticket
    return None
