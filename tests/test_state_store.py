import threading
import time
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from supportdesk.models import ConversationStateRecord
from supportdesk.services.result import STORAGE_ERROR
from supportdesk.services.state_machine import ConversationStep
from supportdesk.services.state_store import (
    bind_ticket,
    clear_state,
    close_states_for_ticket,
    deserialize_form_data,
    get_state,
    phone_lock,
    repair_corrupted_states,
    serialize_form_data,
    set_state,
)

PHONE = "919876543210"


class TestFormDataBoundary:
    def test_serialize_mapping(self):
        assert serialize_form_data({"vehicle_number": "ABC123"}) == '{"vehicle_number": "ABC123"}'

    def test_serialize_non_mapping_becomes_empty(self):
        assert serialize_form_data(["a"]) == "{}"
        assert serialize_form_data(None) == "{}"

    def test_deserialize_placeholder(self):
        assert deserialize_form_data("[object Object]") == {}

    def test_deserialize_invalid_json(self):
        assert deserialize_form_data("{vehicle") == {}

    def test_deserialize_non_object_json(self):
        assert deserialize_form_data("[1, 2]") == {}

    def test_deserialize_valid(self):
        assert deserialize_form_data('{"amount": 500}') == {"amount": 500}


class TestGetSet:
    def test_missing_state_is_none(self, db_session):
        result = get_state(db_session, PHONE)
        assert result.ok is True
        assert result.value is None

    def test_set_creates_record(self, db_session):
        result = set_state(db_session, PHONE, step=ConversationStep.TYPE_SELECTION)
        assert result.ok is True
        assert result.value.step == ConversationStep.TYPE_SELECTION
        assert result.value.form_data == {}

    def test_sequential_sets_keep_latest_of_each_field(self, db_session):
        set_state(db_session, PHONE, step=ConversationStep.TYPE_SELECTION)
        set_state(db_session, PHONE, step=ConversationStep.FORM_FILLING, ticket_type="lock_open")
        set_state(db_session, PHONE, form_data={"vehicle_number": "ABC123"})
        db_session.commit()

        snapshot = get_state(db_session, PHONE).value
        assert snapshot.step == ConversationStep.FORM_FILLING
        assert snapshot.ticket_type == "lock_open"
        assert snapshot.form_data == {"vehicle_number": "ABC123"}
        assert snapshot.bound_ticket_id is None

    def test_corrupted_row_reads_as_empty(self, db_session):
        db_session.add(
            ConversationStateRecord(phone_number=PHONE, step="form_filling", form_data="[object Object]")
        )
        db_session.commit()

        snapshot = get_state(db_session, PHONE).value
        assert snapshot.form_data == {}
        assert snapshot.step == ConversationStep.FORM_FILLING

    def test_unknown_step_reads_as_idle(self, db_session):
        db_session.add(ConversationStateRecord(phone_number=PHONE, step="CLOSE", form_data="{}"))
        db_session.commit()
        assert get_state(db_session, PHONE).value.step == ConversationStep.IDLE

    def test_storage_failure_returns_result(self, db_session):
        with patch.object(db_session, "get", side_effect=OperationalError("select", {}, Exception("gone"))):
            result = set_state(db_session, PHONE, step=ConversationStep.TYPE_SELECTION)
        assert result.ok is False
        assert result.error_code == STORAGE_ERROR

    def test_clear_state(self, db_session):
        set_state(db_session, PHONE, step=ConversationStep.TYPE_SELECTION)
        assert clear_state(db_session, PHONE).value is True
        assert get_state(db_session, PHONE).value is None
        assert clear_state(db_session, PHONE).value is False


class TestTicketRelease:
    def test_close_states_for_ticket(self, db_session, ticket_factory):
        ticket = ticket_factory(PHONE)
        bind_ticket(db_session, PHONE, ticket.id)
        set_state(db_session, PHONE, form_data={"leftover": "x"})

        released = close_states_for_ticket(db_session, ticket.id, PHONE)
        assert released.value == 1

        snapshot = get_state(db_session, PHONE).value
        assert snapshot.step == ConversationStep.CLOSED
        assert snapshot.bound_ticket_id is None
        assert snapshot.form_data == {}

    def test_other_conversations_untouched(self, db_session, ticket_factory):
        ticket = ticket_factory(PHONE)
        set_state(db_session, "911111111111", step=ConversationStep.TYPE_SELECTION)

        assert close_states_for_ticket(db_session, ticket.id, PHONE).value == 0
        assert get_state(db_session, "911111111111").value.step == ConversationStep.TYPE_SELECTION


class TestRepair:
    def test_repairs_only_corrupted_rows(self, db_session):
        db_session.add_all(
            [
                ConversationStateRecord(phone_number="1", step="idle", form_data="[object Object]"),
                ConversationStateRecord(phone_number="2", step="idle", form_data="not json"),
                ConversationStateRecord(phone_number="3", step="idle", form_data='{"amount": 5}'),
                ConversationStateRecord(phone_number="4", step="idle", form_data="{}"),
            ]
        )
        db_session.commit()

        assert repair_corrupted_states(db_session).value == 2
        assert db_session.get(ConversationStateRecord, "1").form_data == "{}"
        assert db_session.get(ConversationStateRecord, "3").form_data == '{"amount": 5}'


class TestPhoneLock:
    def test_lock_is_reentrant(self):
        with phone_lock(PHONE):
            with phone_lock(PHONE):
                pass

    def test_lock_serializes_same_phone(self):
        order = []
        entered = threading.Event()
        release = threading.Event()

        def first():
            with phone_lock(PHONE):
                entered.set()
                release.wait(timeout=2)
                order.append("first")

        def second():
            entered.wait(timeout=2)
            with phone_lock(PHONE):
                order.append("second")

        t1 = threading.Thread(target=first)
        t2 = threading.Thread(target=second)
        t1.start()
        t2.start()
        release.set()
        t1.join(timeout=5)
        t2.join(timeout=5)
        assert order == ["first", "second"]

    def test_lock_entry_dropped_after_release(self):
        from supportdesk.services import state_store

        with phone_lock("919000000001"):
            with phone_lock("919000000001"):
                assert state_store._locks["919000000001"].users == 2
            assert "919000000001" in state_store._locks
        assert "919000000001" not in state_store._locks

    def test_lock_entry_kept_while_waiter_pending(self):
        from supportdesk.services import state_store

        phone = "919000000002"
        waiting = threading.Event()
        done = []

        def waiter():
            waiting.set()
            with phone_lock(phone):
                done.append(True)

        with phone_lock(phone):
            thread = threading.Thread(target=waiter)
            thread.start()
            waiting.wait(timeout=2)
            for _ in range(100):
                if state_store._locks[phone].users == 2:
                    break
                time.sleep(0.01)
            assert state_store._locks[phone].users == 2
        thread.join(timeout=5)

        assert done == [True]
        assert phone not in state_store._locks

    def test_many_phones_leave_no_entries(self):
        from supportdesk.services import state_store

        for n in range(50):
            with phone_lock(f"91800000{n:04d}"):
                pass
        assert not any(key.startswith("91800000") for key in state_store._locks)
