import pytest

from supportdesk.services.state_machine import (
    START_STEPS,
    ConversationStep,
    InvalidTransitionError,
    bind,
    can_transition,
    close,
    parse_step,
    transition,
)


class TestValidTransitions:
    def test_idle_to_new_ticket_prompt(self):
        result = transition(ConversationStep.IDLE, ConversationStep.NEW_TICKET_PROMPT)
        assert result == ConversationStep.NEW_TICKET_PROMPT

    def test_closed_to_ticket_selection(self):
        result = transition(ConversationStep.CLOSED, ConversationStep.TICKET_SELECTION)
        assert result == ConversationStep.TICKET_SELECTION

    def test_type_selection_to_fuel_subtype(self):
        result = transition(ConversationStep.TYPE_SELECTION, ConversationStep.FUEL_SUBTYPE_SELECTION)
        assert result == ConversationStep.FUEL_SUBTYPE_SELECTION

    def test_fuel_subtype_to_template_form(self):
        result = transition(ConversationStep.FUEL_SUBTYPE_SELECTION, ConversationStep.TEMPLATE_FORM_PENDING)
        assert result == ConversationStep.TEMPLATE_FORM_PENDING

    def test_stale_binding_restarts_greeting(self):
        result = transition(ConversationStep.BOUND_TO_TICKET, ConversationStep.NEW_TICKET_PROMPT)
        assert result == ConversationStep.NEW_TICKET_PROMPT

    def test_same_step_is_allowed(self):
        result = transition(ConversationStep.FORM_FILLING, ConversationStep.FORM_FILLING)
        assert result == ConversationStep.FORM_FILLING


class TestInvalidTransitions:
    def test_idle_cannot_jump_to_form(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStep.IDLE, ConversationStep.FORM_FILLING)

    def test_new_ticket_prompt_cannot_bind(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStep.NEW_TICKET_PROMPT, ConversationStep.BOUND_TO_TICKET)

    def test_error_carries_steps(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(ConversationStep.FORM_FILLING, ConversationStep.TYPE_SELECTION)
        assert exc_info.value.from_step == ConversationStep.FORM_FILLING
        assert exc_info.value.to_step == ConversationStep.TYPE_SELECTION
        assert "form_filling -> type_selection" in str(exc_info.value)


class TestHelperFunctions:
    def test_bind_from_form_filling(self):
        assert bind(ConversationStep.FORM_FILLING) == ConversationStep.BOUND_TO_TICKET

    def test_bind_from_idle_fails(self):
        with pytest.raises(InvalidTransitionError):
            bind(ConversationStep.IDLE)

    def test_close_from_bound(self):
        assert close(ConversationStep.BOUND_TO_TICKET) == ConversationStep.CLOSED

    def test_start_steps(self):
        assert START_STEPS == {ConversationStep.IDLE, ConversationStep.CLOSED}


class TestParseStep:
    def test_known_value(self):
        assert parse_step("bound_to_ticket") == ConversationStep.BOUND_TO_TICKET

    def test_unknown_value_reads_as_idle(self):
        assert parse_step("CLOSE") == ConversationStep.IDLE
        assert parse_step(None) == ConversationStep.IDLE


class TestCanTransition:
    def test_valid_returns_true(self):
        assert can_transition(ConversationStep.TICKET_SELECTION, ConversationStep.BOUND_TO_TICKET) is True

    def test_invalid_returns_false(self):
        assert can_transition(ConversationStep.CLOSED, ConversationStep.BOUND_TO_TICKET) is False
