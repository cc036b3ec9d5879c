from supportdesk.services.engine import EngineOutcome, handle_event
from supportdesk.services.state_machine import (
    ConversationStep,
    InvalidTransitionError,
    can_transition,
    transition,
)
from supportdesk.services.state_store import get_state, set_state

__all__ = [
    "ConversationStep",
    "EngineOutcome",
    "InvalidTransitionError",
    "can_transition",
    "get_state",
    "handle_event",
    "set_state",
    "transition",
]
