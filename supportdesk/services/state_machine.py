from enum import Enum
from typing import Optional


class ConversationStep(str, Enum):
    IDLE = "idle"
    TICKET_SELECTION = "ticket_selection"
    NEW_TICKET_PROMPT = "new_ticket_prompt"
    TYPE_SELECTION = "type_selection"
    FUEL_SUBTYPE_SELECTION = "fuel_subtype_selection"
    FORM_FILLING = "form_filling"
    TEMPLATE_FORM_PENDING = "template_form_pending"
    BOUND_TO_TICKET = "bound_to_ticket"
    CLOSED = "closed"


# Steps from which an inbound event restarts the greeting flow.
START_STEPS = frozenset({ConversationStep.IDLE, ConversationStep.CLOSED})

_GREETING = [ConversationStep.TICKET_SELECTION, ConversationStep.NEW_TICKET_PROMPT]
_FORM_ENTRY = [ConversationStep.FORM_FILLING, ConversationStep.TEMPLATE_FORM_PENDING]

VALID_TRANSITIONS = {
    ConversationStep.IDLE: _GREETING,
    ConversationStep.CLOSED: _GREETING,
    ConversationStep.TICKET_SELECTION: [
        ConversationStep.NEW_TICKET_PROMPT,
        ConversationStep.TYPE_SELECTION,
        ConversationStep.BOUND_TO_TICKET,
        ConversationStep.CLOSED,
    ],
    ConversationStep.NEW_TICKET_PROMPT: [ConversationStep.TYPE_SELECTION, ConversationStep.CLOSED],
    ConversationStep.TYPE_SELECTION: [
        ConversationStep.FUEL_SUBTYPE_SELECTION,
        *_FORM_ENTRY,
        ConversationStep.CLOSED,
    ],
    ConversationStep.FUEL_SUBTYPE_SELECTION: [*_FORM_ENTRY, ConversationStep.CLOSED],
    ConversationStep.FORM_FILLING: [ConversationStep.BOUND_TO_TICKET, ConversationStep.CLOSED],
    ConversationStep.TEMPLATE_FORM_PENDING: [ConversationStep.BOUND_TO_TICKET, ConversationStep.CLOSED],
    # A stale binding (ticket closed or gone) restarts the greeting.
    ConversationStep.BOUND_TO_TICKET: [ConversationStep.CLOSED, *_GREETING],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_step: ConversationStep, to_step: ConversationStep):
        self.from_step = from_step
        self.to_step = to_step
        super().__init__(f"Invalid transition: {from_step.value} -> {to_step.value}")


def parse_step(value: Optional[str]) -> ConversationStep:
    """Map a stored step value to the enum; unknown values read as IDLE."""
    if not value:
        return ConversationStep.IDLE
    try:
        return ConversationStep(value)
    except ValueError:
        return ConversationStep.IDLE


def can_transition(from_step: ConversationStep, to_step: ConversationStep) -> bool:
    """Staying on the same step is always allowed."""
    if from_step == to_step:
        return True
    return to_step in VALID_TRANSITIONS.get(from_step, [])


def transition(from_step: ConversationStep, to_step: ConversationStep) -> ConversationStep:
    """Perform step transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_step, to_step):
        raise InvalidTransitionError(from_step, to_step)
    return to_step


def bind(current_step: ConversationStep) -> ConversationStep:
    """Attach the conversation to a ticket."""
    return transition(current_step, ConversationStep.BOUND_TO_TICKET)


def close(current_step: ConversationStep) -> ConversationStep:
    """End the conversation (customer /close or agent closing the bound ticket)."""
    return transition(current_step, ConversationStep.CLOSED)
