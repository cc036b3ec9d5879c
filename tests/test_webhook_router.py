from supportdesk.config import settings
from supportdesk.models import Customer, Message, WebhookLog

PHONE = "919876543210"


def delivery(*messages):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "contacts": [{"wa_id": PHONE, "profile": {"name": "Ravi"}}],
                            "messages": list(messages),
                        },
                    }
                ],
            }
        ],
    }


def text_message(body, message_id="wamid.1"):
    return {"from": PHONE, "id": message_id, "type": "text", "text": {"body": body}}


class TestVerification:
    def test_valid_token_echoes_challenge(self, client):
        response = client.get(
            "/webhook",
            params={
                "hub.mode": "subscribe",
                "hub.verify_token": settings.whatsapp_verify_token,
                "hub.challenge": "challenge-42",
            },
        )
        assert response.status_code == 200
        assert response.text == "challenge-42"

    def test_invalid_token_forbidden(self, client):
        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "x"},
        )
        assert response.status_code == 403

    def test_enhanced_webhook_verifies_too(self, client):
        response = client.get(
            "/enhanced-webhook",
            params={
                "hub.mode": "subscribe",
                "hub.verify_token": settings.whatsapp_verify_token,
                "hub.challenge": "abc",
            },
        )
        assert response.text == "abc"


class TestInbound:
    def test_greeting_sent_back(self, client, db_session, fake_whatsapp):
        response = client.post("/webhook", json=delivery(text_message("Hello")))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["processed"] == 1
        assert data["results"][0]["action"] == "new_ticket_prompt"
        assert data["results"][0]["delivered"] == 1
        assert fake_whatsapp.sent[0][0] == "buttons"
        assert fake_whatsapp.sent[0][1] == PHONE
        assert db_session.query(Customer).one().name == "Ravi"

    def test_messages_processed_in_order(self, client, db_session):
        payload = delivery(text_message("Hello", "wamid.1"), text_message("yes", "wamid.2"))

        data = client.post("/webhook", json=payload).json()

        assert [result["step"] for result in data["results"]] == ["new_ticket_prompt", "type_selection"]

    def test_redelivery_is_not_processed_twice(self, client, db_session):
        client.post("/webhook", json=delivery(text_message("Hello")))
        data = client.post("/webhook", json=delivery(text_message("Hello"))).json()

        assert data["results"][0]["action"] == "duplicate"
        assert db_session.query(Message).filter_by(sender_type="customer").count() == 1

    def test_status_callback_ignored(self, client):
        payload = delivery()
        payload["entry"][0]["changes"][0]["value"]["statuses"] = [{"id": "wamid.1", "status": "read"}]
        data = client.post("/webhook", json=payload).json()
        assert data["status"] == "ok"
        assert data["processed"] == 0

    def test_unsupported_message_skipped(self, client):
        data = client.post("/webhook", json=delivery({"from": PHONE, "type": "sticker"})).json()
        assert data["skipped"] == 1
        assert data["processed"] == 0

    def test_malformed_body_still_200(self, client):
        response = client.post("/webhook", content=b"not json", headers={"content-type": "application/json"})
        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_invalid_payload_shape(self, client):
        response = client.post("/webhook", json={"entry": [{"changes": [{"value": {"messages": [{"id": "x"}]}}]}]})
        assert response.status_code == 200
        assert response.json()["status"] == "ignored"


class TestEnhancedWebhook:
    def test_payload_logged_and_processed(self, client, db_session):
        response = client.post("/enhanced-webhook", json=delivery(text_message("Hello")))

        assert response.json()["status"] == "ok"
        log = db_session.query(WebhookLog).one()
        assert log.processed is True
        assert log.error is None
        assert log.payload["object"] == "whatsapp_business_account"

    def test_dashboard_receives_broadcasts(self, client, registry):
        class Socket:
            def __init__(self):
                self.frames = []

            async def send_json(self, frame):
                self.frames.append(frame)

        socket = Socket()
        session = registry.register(socket)
        registry.identify_agent(session.connection_id, 1)

        client.post("/enhanced-webhook", json=delivery(text_message("Hello")))

        assert [frame["event"] for frame in socket.frames] == ["newCustomerMessage", "customerUpdated"]
        assert socket.frames[1]["data"]["phone_number"] == PHONE

    def test_invalid_payload_recorded(self, client, db_session):
        client.post("/enhanced-webhook", json={"entry": "nope"})
        log = db_session.query(WebhookLog).one()
        assert log.processed is False
        assert log.error.startswith("invalid payload")
