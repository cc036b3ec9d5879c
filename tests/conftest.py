import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import supportdesk.models  # noqa: F401
from supportdesk.database import Base, get_db
from supportdesk.services.fanout import SessionRegistry, get_hub
from supportdesk.services.whatsapp_service import get_whatsapp_service


class FakeSink:
    """Records delivered prompts instead of calling WhatsApp."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.delivered = []

    async def deliver(self, phone_number, prompt):
        self.delivered.append((phone_number, prompt))
        if self.fail:
            return {"success": False, "error": "provider down"}
        return {"success": True, "id": f"wamid.{len(self.delivered)}"}

    def texts(self):
        return [prompt.as_text() for _, prompt in self.delivered]


class FakeHub:
    """Records fan-out events."""

    def __init__(self):
        self.published = []

    async def publish(self, channel, event, payload):
        self.published.append((channel, event, payload))
        return 1

    def names(self, channel=None):
        return [name for ch, name, _ in self.published if channel is None or ch == channel]


class FakeWhatsApp:
    """Stands in for WhatsAppService; every send succeeds and is recorded."""

    def __init__(self):
        self.sent = []

    def _record(self, kind, phone, *args):
        self.sent.append((kind, phone, args))
        return {"success": True, "id": f"wamid.{len(self.sent)}"}

    def send_text(self, phone, body):
        return self._record("text", phone, body)

    def send_buttons(self, phone, header, body, footer, options):
        return self._record("buttons", phone, header, body, footer, options)

    def send_list(self, phone, header, body, footer, button_label, sections):
        return self._record("list", phone, header, body, footer, button_label, sections)

    def send_template_form(self, phone, template_name, template_id, locale):
        return self._record("template", phone, template_name, template_id, locale)

    def texts(self, phone=None):
        return [args[0] for kind, to, args in self.sent if kind == "text" and (phone is None or to == phone)]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for savepoints to work.
    @event.listens_for(engine, "connect")
    def _set_isolation(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_sink():
    return FakeSink()


@pytest.fixture
def fake_hub():
    return FakeHub()


@pytest.fixture
def fake_whatsapp():
    return FakeWhatsApp()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def client(db_session, fake_whatsapp, registry):
    from supportdesk.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_whatsapp_service] = lambda: fake_whatsapp
    app.dependency_overrides[get_hub] = lambda: registry
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def ticket_factory(db_session):
    """Create committed lock_open tickets for a phone number."""
    from supportdesk.services.ticket_service import create_ticket

    def _make(phone_number, category="lock_open", **answers):
        defaults = {"vehicle_number": "ABC123", "driver_number": "DRV001", "location": "Warsaw"}
        result = create_ticket(db_session, phone_number, category, {**defaults, **answers})
        assert result.ok, result.error
        db_session.commit()
        return result.value

    return _make
