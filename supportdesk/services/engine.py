"""Conversation engine: one inbound event in, state change plus prompts out.

Every entry channel (webhook, enhanced webhook, live channel) feeds the same
``handle_event``. Each call is one unit of work under the phone's lock: the
inbound message, the state write, any created ticket and the recorded prompts
are committed together or not at all. Delivery and fan-out happen afterwards,
in the adapters.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from supportdesk.config import settings
from supportdesk.logging_config import bind_phone, get_logger, mask_phone
from supportdesk.models import Message, Ticket
from supportdesk.services import prompts
from supportdesk.services.alert_service import alert_error
from supportdesk.services.customer_service import customer_to_dict, find_or_create_customer
from supportdesk.services.events import (
    AGENTS_CHANNEL,
    CUSTOMER_UPDATED,
    NEW_CUSTOMER_MESSAGE,
    NEW_TICKET,
    TICKET_UPDATED,
    CloseCommand,
    ConversationEvent,
    FanoutEvent,
    FreeText,
    Selection,
    TemplateFormSubmitted,
    event_message_type,
    event_text,
)
from supportdesk.services.field_registry import (
    FUEL_TYPE,
    bulk_field_order,
    is_category,
    next_unanswered_field,
    required_fields,
)
from supportdesk.services.message_service import (
    SENDER_CUSTOMER,
    SENDER_SYSTEM,
    is_duplicate,
    message_to_dict,
    save_message,
)
from supportdesk.services.result import STORAGE_ERROR, VALIDATION_ERROR, StorageError, require
from supportdesk.services.selection import (
    is_affirmative,
    is_create_request,
    is_create_slot,
    match_ticket,
    resolve_category,
    resolve_fuel_subtype,
)
from supportdesk.services.state_machine import START_STEPS, ConversationStep, transition
from supportdesk.services.state_store import (
    ConversationSnapshot,
    clear_state,
    get_state,
    phone_lock,
    set_state,
)
from supportdesk.services.template_form import map_template_fields
from supportdesk.services.ticket_service import (
    create_ticket,
    get_open_tickets_for_phone,
    get_ticket,
    ticket_payload,
)
from supportdesk.services.validator import is_skip, validate

logger = get_logger("engine")


@dataclass
class EngineOutcome:
    phone_number: str
    prompts: list = field(default_factory=list)
    events: list[FanoutEvent] = field(default_factory=list)
    step: Optional[ConversationStep] = None
    ticket: Optional[dict] = None
    action: str = "noop"
    error_code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_code is None

    def to_dict(self) -> dict:
        return {
            "phone_number": self.phone_number,
            "action": self.action,
            "step": self.step.value if self.step else None,
            "ticket": self.ticket,
            "prompts": [prompt.as_text() for prompt in self.prompts],
            "error_code": self.error_code,
        }


class ConversationTurn:
    """Mutable context for one event: current snapshot plus the outcome being built."""

    def __init__(self, db: Session, snapshot: ConversationSnapshot, customer_name: Optional[str] = None):
        self.db = db
        self.phone = snapshot.phone_number
        self.snapshot = snapshot
        self.customer_name = customer_name
        self.inbound: Optional[Message] = None
        self.outcome = EngineOutcome(snapshot.phone_number, step=snapshot.step)
        self.log = bind_phone(logger, snapshot.phone_number)

    def move(self, step: ConversationStep, **fields) -> None:
        target = transition(self.snapshot.step, step)
        self.snapshot = require(set_state(self.db, self.phone, step=target, **fields))
        if target != self.outcome.step:
            self.log.info("Conversation step changed", context={"from": self.outcome.step.value, "to": target.value})
        self.outcome.step = target

    def reset(self) -> None:
        require(clear_state(self.db, self.phone))
        self.snapshot = ConversationSnapshot(self.phone)
        self.outcome.step = self.snapshot.step

    def say(self, prompt, action: Optional[str] = None) -> None:
        self.outcome.prompts.append(prompt)
        if action:
            self.outcome.action = action

    def publish(self, name: str, payload: dict, channel: str = AGENTS_CHANNEL) -> None:
        self.outcome.events.append(FanoutEvent(channel, name, payload))


def _event_parts(event: ConversationEvent) -> tuple[Optional[str], str]:
    if isinstance(event, Selection):
        return event.option_id, event.display_text or ""
    if isinstance(event, FreeText):
        return None, event.text or ""
    return None, ""


def _resolve_bound_ticket(db: Session, snapshot: ConversationSnapshot) -> Optional[Ticket]:
    if snapshot.step != ConversationStep.BOUND_TO_TICKET or snapshot.bound_ticket_id is None:
        return None
    ticket = get_ticket(db, snapshot.bound_ticket_id)
    if ticket is None or ticket.status == "closed":
        return None
    return ticket


# --- greeting -------------------------------------------------------------


def _greet(turn: ConversationTurn) -> None:
    tickets = get_open_tickets_for_phone(turn.db, turn.phone)
    if tickets:
        turn.move(ConversationStep.TICKET_SELECTION, ticket_type=None, form_data={}, bound_ticket_id=None)
        turn.say(prompts.ticket_menu(tickets), action="ticket_menu")
    else:
        turn.move(ConversationStep.NEW_TICKET_PROMPT, ticket_type=None, form_data={}, bound_ticket_id=None)
        turn.say(prompts.new_ticket_prompt(), action="new_ticket_prompt")


def _show_categories(turn: ConversationTurn) -> None:
    turn.move(ConversationStep.TYPE_SELECTION, ticket_type=None, form_data={}, bound_ticket_id=None)
    turn.say(prompts.category_menu(), action="category_menu")


# --- close ----------------------------------------------------------------


def _handle_close(turn: ConversationTurn, bound: Optional[Ticket]) -> None:
    if turn.snapshot.bound_ticket_id is None:
        turn.say(prompts.text(prompts.NO_ACTIVE_CONVERSATION), action="no_active_conversation")
        return
    turn.move(ConversationStep.CLOSED, ticket_type=None, form_data={}, bound_ticket_id=None)
    turn.say(prompts.text(prompts.CONVERSATION_ENDED), action="conversation_closed")
    if bound is not None:
        turn.publish(TICKET_UPDATED, {"ticket": ticket_payload(bound), "change": "customer_left"})


# --- menus ----------------------------------------------------------------


def _handle_ticket_selection(turn: ConversationTurn, event: ConversationEvent) -> None:
    option_id, raw = _event_parts(event)
    tickets = get_open_tickets_for_phone(turn.db, turn.phone)

    ticket = match_ticket(tickets, option_id, raw)
    if ticket is not None:
        turn.move(ConversationStep.BOUND_TO_TICKET, bound_ticket_id=ticket.id, form_data={})
        turn.say(prompts.bound_to_ticket(ticket), action="ticket_bound")
        turn.outcome.ticket = ticket_payload(ticket)
        turn.publish(TICKET_UPDATED, {"ticket": turn.outcome.ticket, "change": "customer_joined"})
        return

    if is_create_request(option_id, raw) or is_create_slot(tickets, raw):
        _show_categories(turn)
        return

    if not tickets:
        # Every offered ticket was closed meanwhile.
        turn.move(ConversationStep.NEW_TICKET_PROMPT, ticket_type=None, form_data={}, bound_ticket_id=None)
        turn.say(prompts.new_ticket_prompt(), action="new_ticket_prompt")
        return

    turn.say(prompts.invalid_ticket_selection(tickets), action="invalid_selection")


def _handle_new_ticket_prompt(turn: ConversationTurn, event: ConversationEvent) -> None:
    option_id, raw = _event_parts(event)
    if is_affirmative(option_id, raw):
        _show_categories(turn)
        return
    turn.say(prompts.text(prompts.NEW_TICKET_REPROMPT), action="reprompt")


def _handle_type_selection(turn: ConversationTurn, event: ConversationEvent) -> None:
    option_id, raw = _event_parts(event)
    category = resolve_category(option_id, raw)
    if category is None:
        turn.say(prompts.invalid_category(), action="invalid_selection")
        return
    if category == "fuel_request":
        turn.move(ConversationStep.FUEL_SUBTYPE_SELECTION, ticket_type=category, form_data={})
        turn.say(prompts.fuel_menu(), action="fuel_menu")
        return
    _start_form(turn, category, None, {})


def _handle_fuel_subtype(turn: ConversationTurn, event: ConversationEvent) -> None:
    option_id, raw = _event_parts(event)
    checked = validate(FUEL_TYPE, resolve_fuel_subtype(option_id, raw) or "")
    if not checked.accepted:
        turn.say(prompts.text(prompts.INVALID_FUEL_SUBTYPE), action="invalid_selection")
        return
    subtype = str(checked.value)
    _start_form(turn, "fuel_request", subtype, {"fuel_type": subtype})


def _start_form(turn: ConversationTurn, category: str, fuel_type: Optional[str], form_data: dict) -> None:
    form = settings.template_form_for(category)
    if form is not None:
        turn.move(ConversationStep.TEMPLATE_FORM_PENDING, ticket_type=category, form_data=form_data)
        turn.say(
            prompts.template_form(form, settings.template_form_locale, category, fuel_type),
            action="template_form_sent",
        )
        return
    first = next_unanswered_field(category, form_data, fuel_type)
    turn.move(ConversationStep.FORM_FILLING, ticket_type=category, form_data=form_data)
    turn.say(prompts.form_intro(category, fuel_type, first), action="form_started")


# --- form filling ---------------------------------------------------------


def _form_context(turn: ConversationTurn) -> Optional[tuple[str, Optional[str]]]:
    """Category and fuel sub-type of the form in progress, or None if the stored state is unusable."""
    category = turn.snapshot.ticket_type
    if not is_category(category):
        return None
    fuel_type = turn.snapshot.fuel_type if category == "fuel_request" else None
    if category == "fuel_request" and fuel_type is None:
        return None
    return category, fuel_type


def _restart(turn: ConversationTurn) -> None:
    turn.log.warning(
        "Unusable form state, restarting conversation",
        context={"step": turn.snapshot.step.value, "ticket_type": turn.snapshot.ticket_type},
    )
    turn.reset()
    _greet(turn)


def _answered_fields(form_data: dict, category: str, fuel_type: Optional[str]) -> int:
    names = {spec.name for spec in bulk_field_order(category, fuel_type)}
    return len(names & set(form_data))


def _handle_form_filling(turn: ConversationTurn, event: ConversationEvent) -> None:
    context = _form_context(turn)
    if context is None:
        _restart(turn)
        return
    category, fuel_type = context

    if isinstance(event, TemplateFormSubmitted):
        _submit_template(turn, event, category, fuel_type)
        return

    _, raw = _event_parts(event)
    if "," in raw:
        values = raw.split(",")
        required_count = len(required_fields(category, fuel_type))
        # Mid-form, a short comma list is one answer that happens to contain commas.
        if len(values) >= required_count or _answered_fields(turn.snapshot.form_data, category, fuel_type) == 0:
            _submit_bulk(turn, category, fuel_type, raw)
            return
    _submit_single(turn, category, fuel_type, raw)


def _submit_single(turn: ConversationTurn, category: str, fuel_type: Optional[str], raw: str) -> None:
    answers = dict(turn.snapshot.form_data)
    spec = next_unanswered_field(category, answers, fuel_type)
    if spec is None:
        _materialize(turn, category, answers)
        return

    if not spec.required and is_skip(raw):
        value = ""
    else:
        checked = validate(spec, raw)
        if not checked.accepted:
            turn.say(prompts.field_rejected(spec, checked.reason), action="field_rejected")
            return
        value = checked.value

    answers[spec.name] = value
    following = next_unanswered_field(category, answers, fuel_type)
    if following is None:
        _materialize(turn, category, answers)
        return
    turn.move(ConversationStep.FORM_FILLING, form_data=answers)
    turn.say(prompts.field_saved(spec, following), action="field_saved")


def _submit_bulk(turn: ConversationTurn, category: str, fuel_type: Optional[str], raw: str) -> None:
    """Zip comma-separated values against required-then-optional fields."""
    order = bulk_field_order(category, fuel_type)
    required_count = len(required_fields(category, fuel_type))
    values = [value.strip() for value in raw.split(",")]
    if len(values) < required_count:
        turn.say(prompts.bulk_too_few(category, fuel_type, required_count), action="bulk_rejected")
        return
    if len(values) > len(order):
        # Surplus commas belong to the last field (usually the free-text comment).
        values = values[: len(order) - 1] + [", ".join(values[len(order) - 1 :])]

    submitted: dict = {}
    errors: list[str] = []
    for spec, value in zip(order, values):
        if not spec.required and (not value or is_skip(value)):
            submitted[spec.name] = ""
            continue
        checked = validate(spec, value)
        if checked.accepted:
            submitted[spec.name] = checked.value
        else:
            errors.append(checked.reason)

    if errors:
        turn.say(prompts.bulk_rejected(category, fuel_type, errors), action="bulk_rejected")
        return
    _materialize(turn, category, {**turn.snapshot.form_data, **submitted})


# --- template forms -------------------------------------------------------


def _handle_template_pending(turn: ConversationTurn, event: ConversationEvent) -> None:
    context = _form_context(turn)
    if context is None:
        _restart(turn)
        return
    category, fuel_type = context

    if isinstance(event, TemplateFormSubmitted):
        _submit_template(turn, event, category, fuel_type)
        return
    _, raw = _event_parts(event)
    if "," in raw:
        _submit_bulk(turn, category, fuel_type, raw)
        return
    turn.say(prompts.template_form_pending(category, fuel_type), action="reprompt")


def _submit_template(
    turn: ConversationTurn, event: TemplateFormSubmitted, category: str, fuel_type: Optional[str]
) -> None:
    if event.category and is_category(event.category) and event.category != category:
        turn.log.warning(
            "Form category differs from conversation, using conversation category",
            context={"form_category": event.category, "category": category},
        )

    mapped = map_template_fields(category, event.raw_fields, fuel_type)
    answers: dict = {"fuel_type": fuel_type} if fuel_type else {}
    errors: list[str] = []
    for spec in bulk_field_order(category, fuel_type):
        raw = mapped.get(spec.name)
        if raw is None or (isinstance(raw, str) and not raw):
            if spec.required:
                errors.append(f"{spec.label} is required")
            continue
        checked = validate(spec, raw)
        if checked.accepted:
            answers[spec.name] = checked.value
        else:
            errors.append(checked.reason)

    if errors:
        turn.say(prompts.template_form_rejected(errors), action="form_rejected")
        return
    _materialize(turn, category, answers)


# --- ticket creation and bound conversations ------------------------------


def _materialize(turn: ConversationTurn, category: str, answers: dict) -> None:
    created = create_ticket(turn.db, turn.phone, category, answers, customer_name=turn.customer_name)
    if not created.ok:
        if created.error_code == VALIDATION_ERROR:
            turn.log.warning("Ticket rejected", context={"error": created.error})
        raise StorageError.from_result(created)

    ticket = created.value
    turn.move(ConversationStep.BOUND_TO_TICKET, ticket_type=category, form_data={}, bound_ticket_id=ticket.id)
    turn.say(prompts.ticket_created(ticket), action="ticket_created")

    payload = ticket_payload(ticket)
    turn.outcome.ticket = payload
    turn.publish(NEW_TICKET, payload)
    turn.publish(CUSTOMER_UPDATED, customer_to_dict(turn.db, ticket.customer))


def _handle_bound(turn: ConversationTurn, event: ConversationEvent, ticket: Ticket) -> None:
    if isinstance(event, TemplateFormSubmitted):
        turn.say(prompts.text(prompts.FORM_NOT_ACTIVE), action="form_not_active")
        return
    turn.outcome.action = "message_appended"
    turn.outcome.ticket = ticket_payload(ticket)
    turn.publish(
        NEW_CUSTOMER_MESSAGE,
        {
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "phone_number": turn.phone,
            "message": message_to_dict(turn.inbound),
        },
    )


_STEP_HANDLERS = {
    ConversationStep.TICKET_SELECTION: _handle_ticket_selection,
    ConversationStep.NEW_TICKET_PROMPT: _handle_new_ticket_prompt,
    ConversationStep.TYPE_SELECTION: _handle_type_selection,
    ConversationStep.FUEL_SUBTYPE_SELECTION: _handle_fuel_subtype,
    ConversationStep.FORM_FILLING: _handle_form_filling,
    ConversationStep.TEMPLATE_FORM_PENDING: _handle_template_pending,
}


def _dispatch(turn: ConversationTurn, event: ConversationEvent, bound: Optional[Ticket]) -> None:
    step = turn.snapshot.step
    if isinstance(event, CloseCommand):
        _handle_close(turn, bound)
        return
    if step == ConversationStep.BOUND_TO_TICKET:
        if bound is not None:
            _handle_bound(turn, event, bound)
            return
        turn.log.info("Bound ticket unavailable, restarting", context={"ticket_id": turn.snapshot.bound_ticket_id})
        _greet(turn)
        return
    if step in START_STEPS:
        _greet(turn)
        return
    if isinstance(event, TemplateFormSubmitted) and step not in (
        ConversationStep.FORM_FILLING,
        ConversationStep.TEMPLATE_FORM_PENDING,
    ):
        turn.say(prompts.text(prompts.FORM_NOT_ACTIVE), action="form_not_active")
        return
    _STEP_HANDLERS[step](turn, event)


def _record_prompts(turn: ConversationTurn) -> None:
    ticket_id = turn.snapshot.bound_ticket_id if turn.snapshot.step == ConversationStep.BOUND_TO_TICKET else None
    for prompt in turn.outcome.prompts:
        save_message(turn.db, turn.phone, SENDER_SYSTEM, prompt.as_text(), ticket_id=ticket_id, message_type=prompt.kind)


def handle_event(
    db: Session,
    phone_number: str,
    event: ConversationEvent,
    *,
    external_message_id: Optional[str] = None,
    customer_name: Optional[str] = None,
) -> EngineOutcome:
    """Apply one inbound event and commit. Never raises for storage failures."""
    with phone_lock(phone_number):
        try:
            if is_duplicate(db, external_message_id):
                logger.info(
                    "Duplicate inbound message skipped",
                    extra={"context": {"phone": mask_phone(phone_number), "external_id": external_message_id}},
                )
                return EngineOutcome(phone_number, action="duplicate")

            find_or_create_customer(db, phone_number, customer_name)
            snapshot = require(get_state(db, phone_number)) or ConversationSnapshot(phone_number)
            turn = ConversationTurn(db, snapshot, customer_name)
            bound = _resolve_bound_ticket(db, snapshot)

            turn.inbound = save_message(
                db,
                phone_number,
                SENDER_CUSTOMER,
                event_text(event),
                ticket_id=bound.id if bound is not None else None,
                message_type=event_message_type(event),
                external_message_id=external_message_id,
            )
            _dispatch(turn, event, bound)
            _record_prompts(turn)
            db.commit()
        except Exception as e:
            db.rollback()
            code = e.code if isinstance(e, StorageError) else STORAGE_ERROR
            logger.error(
                f"Conversation event failed: {e}",
                extra={"context": {"phone": mask_phone(phone_number), "event": type(event).__name__}},
                exc_info=True,
            )
            alert_error("Conversation event failed", {"phone": mask_phone(phone_number), "error": str(e)[:200]})
            return EngineOutcome(
                phone_number,
                prompts=[prompts.text(prompts.RETRY_LATER)],
                action="error",
                error_code=code,
            )

    turn.log.info(
        "Conversation event handled",
        context={"event": type(event).__name__, "action": turn.outcome.action, "step": turn.outcome.step.value},
    )
    return turn.outcome
