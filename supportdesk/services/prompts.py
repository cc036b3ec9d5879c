"""Outbound prompts and the customer-facing texts that build them."""

from dataclasses import dataclass
from typing import Optional, Sequence, Union

from supportdesk.config import TemplateFormConfig
from supportdesk.services.field_registry import (
    CATEGORIES,
    CATEGORY_ORDER,
    FUEL_SUBTYPE_LABELS,
    FieldSpec,
    bulk_field_order,
    category_label,
)
from supportdesk.services.selection import (
    CREATE_NEW_TICKET,
    FUEL_ORDER,
    fuel_option,
    menu_tickets,
    select_ticket_option,
    type_option,
)

MAX_TICKET_BUTTONS = 2

WELCOME_HEADER = "Welcome!"
WELCOME_BACK_HEADER = "Welcome Back!"
WELCOME_BACK_BODY = (
    "You have {count} open ticket(s). Select a ticket to continue the conversation "
    "or create a new ticket."
)
NEW_TICKET_BODY = "Do you want to create a new ticket?"
CREATE_NEW_TICKET_TITLE = "Create New Ticket"
CATEGORY_HEADER = "New Ticket"
CATEGORY_BODY = "Please select the type of ticket you want to create:"
CATEGORY_BUTTON = "Ticket types"
FUEL_BODY = "How would you like to request fuel?"
FOOTER = "Reply /close to end the conversation"

BOUND_TO_TICKET = "You are now chatting on ticket {number}. Send your message."
TICKET_CREATED = (
    "✅ New ticket has been created!\n\n"
    "Ticket number: {number}\n"
    "Type: {label}\n\n"
    "You can now send messages about this ticket here."
)
CONVERSATION_ENDED = "Conversation ended. You can start a new conversation anytime."
NO_ACTIVE_CONVERSATION = "No active conversation to close."
RETRY_LATER = "Sorry, something went wrong on our side. Please try again in a moment."
TICKET_CLOSED_NOTIFICATION = "This ticket {number} has been closed by agent {agent}."

INVALID_TICKET_SELECTION = (
    "Invalid selection. Reply with one of your ticket numbers ({numbers}) "
    'or "NEW" to create a new ticket.'
)
NEW_TICKET_REPROMPT = 'Please reply "1", "yes" or "create" to create a new ticket.'
INVALID_CATEGORY = (
    "Invalid selection. Please reply with a number from 1 to {count} or the ticket type name:\n{options}"
)
INVALID_FUEL_SUBTYPE = 'Invalid selection. Please reply "1" for By Amount or "2" for By Quantity.'

FORM_INTRO = (
    "Let's create your {label} ticket.\n\n"
    "Answer the questions one at a time, or send all details in one message "
    "separated by commas:\n{labels}\n\n{first_prompt}"
)
FIELD_SAVED = "✅ {label} saved!\n\n{next_prompt}"
FIELD_REJECTED = "❌ {reason}\n\nPlease provide {label}:"
BULK_TOO_FEW = (
    "❌ Expected at least {count} values separated by commas.\n\n"
    "Please send the details again in this order: {labels}"
)
BULK_REJECTED = (
    "❌ Some details are not valid:\n{errors}\n\n"
    "Please send all details again separated by commas: {labels}"
)
TEMPLATE_FORM_PENDING = (
    "Please complete the form we sent you. You can also reply with all details "
    "separated by commas: {labels}"
)
TEMPLATE_FORM_REJECTED = "❌ The form could not be accepted:\n{errors}\n\nPlease fill in the form again."
FORM_NOT_ACTIVE = "This form is no longer active. Send any message to start again."


@dataclass(frozen=True)
class Option:
    id: str
    title: str
    description: Optional[str] = None


@dataclass(frozen=True)
class TextPrompt:
    body: str

    kind = "text"

    def as_text(self) -> str:
        return self.body


@dataclass(frozen=True)
class ButtonsPrompt:
    body: str
    options: tuple[Option, ...]
    header: Optional[str] = None
    footer: Optional[str] = None

    kind = "buttons"

    def as_text(self) -> str:
        lines = [self.header] if self.header else []
        lines.append(self.body)
        lines.extend(f"{i}. {option.title}" for i, option in enumerate(self.options, start=1))
        return "\n".join(lines)


@dataclass(frozen=True)
class ListSection:
    title: str
    rows: tuple[Option, ...]


@dataclass(frozen=True)
class ListPrompt:
    body: str
    button_label: str
    sections: tuple[ListSection, ...]
    header: Optional[str] = None
    footer: Optional[str] = None

    kind = "list"

    @property
    def options(self) -> tuple[Option, ...]:
        return tuple(row for section in self.sections for row in section.rows)

    def as_text(self) -> str:
        lines = [self.header] if self.header else []
        lines.append(self.body)
        lines.extend(f"{i}. {option.title}" for i, option in enumerate(self.options, start=1))
        return "\n".join(lines)


@dataclass(frozen=True)
class TemplateFormPrompt:
    template_name: str
    template_id: str
    locale: str
    category: str
    fields: tuple[str, ...] = ()

    kind = "template_form"

    def as_text(self) -> str:
        return f"[form: {self.template_name}] {category_label(self.category)}"


Prompt = Union[TextPrompt, ButtonsPrompt, ListPrompt, TemplateFormPrompt]


def text(body: str) -> TextPrompt:
    return TextPrompt(body)


def ticket_menu(tickets: Sequence) -> Prompt:
    """Existing tickets plus "create new". Buttons when they fit, a list otherwise."""
    body = WELCOME_BACK_BODY.format(count=len(tickets))
    create = Option(CREATE_NEW_TICKET, CREATE_NEW_TICKET_TITLE)
    if len(tickets) <= MAX_TICKET_BUTTONS:
        options = tuple(Option(select_ticket_option(t.id), t.ticket_number) for t in tickets)
        return ButtonsPrompt(body=body, options=options + (create,), header=WELCOME_BACK_HEADER, footer=FOOTER)

    rows = tuple(
        Option(
            select_ticket_option(t.id),
            t.ticket_number,
            f"{category_label(t.issue_type)} · {t.status.replace('_', ' ')}",
        )
        for t in menu_tickets(tickets)
    )
    return ListPrompt(
        body=body,
        button_label="Select ticket",
        sections=(
            ListSection("Open tickets", rows),
            ListSection("New", (create,)),
        ),
        header=WELCOME_BACK_HEADER,
        footer=FOOTER,
    )


def new_ticket_prompt() -> ButtonsPrompt:
    return ButtonsPrompt(
        body=NEW_TICKET_BODY,
        options=(Option(CREATE_NEW_TICKET, CREATE_NEW_TICKET_TITLE),),
        header=WELCOME_HEADER,
    )


def category_menu() -> ListPrompt:
    rows = tuple(
        Option(type_option(key), CATEGORIES[key].label, CATEGORIES[key].description)
        for key in CATEGORY_ORDER
    )
    return ListPrompt(
        body=CATEGORY_BODY,
        button_label=CATEGORY_BUTTON,
        sections=(ListSection("Ticket types", rows),),
        header=CATEGORY_HEADER,
    )


def fuel_menu() -> ButtonsPrompt:
    options = tuple(Option(fuel_option(subtype), FUEL_SUBTYPE_LABELS[subtype]) for subtype in FUEL_ORDER)
    return ButtonsPrompt(body=FUEL_BODY, options=options, header=category_label("fuel_request"))


def invalid_category() -> TextPrompt:
    options = "\n".join(f"{i}. {CATEGORIES[key].label}" for i, key in enumerate(CATEGORY_ORDER, start=1))
    return text(INVALID_CATEGORY.format(count=len(CATEGORY_ORDER), options=options))


def invalid_ticket_selection(tickets: Sequence) -> TextPrompt:
    numbers = ", ".join(t.ticket_number for t in tickets) or "none"
    return text(INVALID_TICKET_SELECTION.format(numbers=numbers))


def field_labels(category: str, fuel_type: Optional[str] = None) -> str:
    specs = bulk_field_order(category, fuel_type)
    return ", ".join(spec.label if spec.required else f"{spec.label} (optional)" for spec in specs)


def form_intro(category: str, fuel_type: Optional[str], first: FieldSpec) -> TextPrompt:
    return text(
        FORM_INTRO.format(
            label=category_label(category),
            labels=field_labels(category, fuel_type),
            first_prompt=first.prompt,
        )
    )


def field_saved(saved: FieldSpec, following: FieldSpec) -> TextPrompt:
    return text(FIELD_SAVED.format(label=saved.label, next_prompt=following.prompt))


def field_rejected(spec: FieldSpec, reason: str) -> TextPrompt:
    return text(FIELD_REJECTED.format(reason=reason, label=spec.label))


def bulk_too_few(category: str, fuel_type: Optional[str], required_count: int) -> TextPrompt:
    return text(BULK_TOO_FEW.format(count=required_count, labels=field_labels(category, fuel_type)))


def bulk_rejected(category: str, fuel_type: Optional[str], errors: Sequence[str]) -> TextPrompt:
    return text(
        BULK_REJECTED.format(
            errors="\n".join(f"• {error}" for error in errors),
            labels=field_labels(category, fuel_type),
        )
    )


def template_form(config: TemplateFormConfig, locale: str, category: str, fuel_type: Optional[str]) -> TemplateFormPrompt:
    return TemplateFormPrompt(
        template_name=config.name,
        template_id=config.id,
        locale=locale,
        category=category,
        fields=tuple(spec.name for spec in bulk_field_order(category, fuel_type)),
    )


def template_form_pending(category: str, fuel_type: Optional[str]) -> TextPrompt:
    return text(TEMPLATE_FORM_PENDING.format(labels=field_labels(category, fuel_type)))


def template_form_rejected(errors: Sequence[str]) -> TextPrompt:
    return text(TEMPLATE_FORM_REJECTED.format(errors="\n".join(f"• {error}" for error in errors)))


def ticket_created(ticket) -> TextPrompt:
    return text(TICKET_CREATED.format(number=ticket.ticket_number, label=category_label(ticket.issue_type)))


def bound_to_ticket(ticket) -> TextPrompt:
    return text(BOUND_TO_TICKET.format(number=ticket.ticket_number))


def ticket_closed_notification(ticket_number: str, agent_name: str) -> str:
    return TICKET_CLOSED_NOTIFICATION.format(number=ticket_number, agent=agent_name)
