import json
from unittest.mock import MagicMock, patch

import httpx

from supportdesk.services.events import CloseCommand, FreeText, Selection, TemplateFormSubmitted
from supportdesk.services.prompts import Option
from supportdesk.services.whatsapp_service import (
    WhatsAppService,
    format_phone_number,
    parse_webhook,
    to_event,
    verify_webhook,
)


def delivery(*messages, contacts=None, statuses=None):
    value = {"messaging_product": "whatsapp", "messages": list(messages)}
    if contacts is not None:
        value["contacts"] = contacts
    if statuses is not None:
        value["statuses"] = statuses
    return {"object": "whatsapp_business_account", "entry": [{"id": "1", "changes": [{"field": "messages", "value": value}]}]}


def text_message(body, sender="919876543210", message_id="wamid.1"):
    return {"from": sender, "id": message_id, "type": "text", "text": {"body": body}}


class TestVerifyWebhook:
    def test_matching_token_returns_challenge(self):
        assert verify_webhook("subscribe", "secret", "12345", "secret") == "12345"

    def test_wrong_token(self):
        assert verify_webhook("subscribe", "nope", "12345", "secret") is None

    def test_wrong_mode(self):
        assert verify_webhook("unsubscribe", "secret", "12345", "secret") is None


class TestFormatPhoneNumber:
    def test_strips_formatting(self):
        assert format_phone_number("+91 98765-43210") == "919876543210"

    def test_national_number_gets_country_code(self):
        assert format_phone_number("9876543210", "91") == "919876543210"

    def test_empty(self):
        assert format_phone_number(None) == ""


class TestParseWebhook:
    def test_text_with_profile_name(self):
        payload = delivery(
            text_message("Hello"),
            contacts=[{"wa_id": "919876543210", "profile": {"name": "Ravi"}}],
        )
        [message] = parse_webhook(payload)
        assert message.phone_number == "919876543210"
        assert message.text == "Hello"
        assert message.profile_name == "Ravi"
        assert message.message_id == "wamid.1"

    def test_button_reply(self):
        payload = delivery(
            {
                "from": "919876543210",
                "id": "wamid.2",
                "type": "interactive",
                "interactive": {
                    "type": "button_reply",
                    "button_reply": {"id": "create_new_ticket", "title": "Create New Ticket"},
                },
            }
        )
        [message] = parse_webhook(payload)
        assert message.option_id == "create_new_ticket"
        assert to_event(message) == Selection("create_new_ticket", "Create New Ticket")

    def test_list_reply(self):
        payload = delivery(
            {
                "from": "919876543210",
                "type": "interactive",
                "interactive": {"type": "list_reply", "list_reply": {"id": "type_other", "title": "Other"}},
            }
        )
        [message] = parse_webhook(payload)
        assert message.option_id == "type_other"

    def test_form_reply(self):
        fields = {"screen_0_Vehicle_Number_0": "ABC123", "flow_token": "1001"}
        payload = delivery(
            {
                "from": "919876543210",
                "type": "interactive",
                "interactive": {"type": "nfm_reply", "nfm_reply": {"response_json": json.dumps(fields)}},
            }
        )
        [message] = parse_webhook(payload)
        event = to_event(message)
        assert isinstance(event, TemplateFormSubmitted)
        assert event.raw_fields == fields

    def test_status_callbacks_carry_no_messages(self):
        payload = delivery(statuses=[{"id": "wamid.1", "status": "delivered"}])
        assert parse_webhook(payload) == []

    def test_messages_keep_order(self):
        payload = delivery(text_message("one", message_id="a"), text_message("two", message_id="b"))
        assert [m.text for m in parse_webhook(payload)] == ["one", "two"]


class TestToEvent:
    def test_close_command(self):
        [message] = parse_webhook(delivery(text_message("/close")))
        assert isinstance(to_event(message), CloseCommand)

    def test_free_text(self):
        [message] = parse_webhook(delivery(text_message("Any update?")))
        assert to_event(message) == FreeText("Any update?")

    def test_unsupported_content(self):
        [message] = parse_webhook(delivery({"from": "919876543210", "type": "image", "image": {"id": "x"}}))
        assert to_event(message) is None


class TestWhatsAppService:
    def test_unconfigured_send_is_mocked(self):
        service = WhatsAppService("https://graph.example/v18.0", None, None)
        result = service.send_text("919876543210", "hi")
        assert result == {"success": True, "id": None, "mocked": True}

    @patch("supportdesk.services.whatsapp_service.httpx.Client")
    def test_send_text_posts_payload(self, mock_client_cls):
        response = MagicMock(status_code=200)
        response.json.return_value = {"messages": [{"id": "wamid.OUT"}]}
        client = mock_client_cls.return_value.__enter__.return_value
        client.post.return_value = response

        service = WhatsAppService("https://graph.example/v18.0/", "token", "555")
        result = service.send_text("+91 98765 43210", "Hello")

        assert result == {"success": True, "id": "wamid.OUT"}
        url = client.post.call_args.args[0]
        body = client.post.call_args.kwargs["json"]
        assert url == "https://graph.example/v18.0/555/messages"
        assert body["to"] == "919876543210"
        assert body["text"]["body"] == "Hello"

    @patch("supportdesk.services.whatsapp_service.httpx.Client")
    def test_api_error_reported(self, mock_client_cls):
        response = MagicMock(status_code=400)
        response.json.return_value = {"error": {"message": "Invalid parameter"}}
        mock_client_cls.return_value.__enter__.return_value.post.return_value = response

        service = WhatsAppService("https://graph.example/v18.0", "token", "555")
        assert service.send_text("919876543210", "Hello") == {"success": False, "error": "Invalid parameter"}

    @patch("supportdesk.services.whatsapp_service.httpx.Client")
    def test_network_error_reported(self, mock_client_cls):
        mock_client_cls.return_value.__enter__.return_value.post.side_effect = httpx.ConnectError("refused")

        service = WhatsAppService("https://graph.example/v18.0", "token", "555")
        result = service.send_text("919876543210", "Hello")
        assert result["success"] is False

    @patch("supportdesk.services.whatsapp_service.httpx.Client")
    def test_buttons_truncate_titles(self, mock_client_cls):
        response = MagicMock(status_code=200)
        response.json.return_value = {"messages": [{"id": "wamid.B"}]}
        client = mock_client_cls.return_value.__enter__.return_value
        client.post.return_value = response

        service = WhatsAppService("https://graph.example/v18.0", "token", "555")
        service.send_buttons("919876543210", "Welcome!", "Pick one", None, [Option("a", "A" * 30)])

        interactive = client.post.call_args.kwargs["json"]["interactive"]
        assert interactive["action"]["buttons"][0]["reply"]["title"] == "A" * 20
        assert interactive["header"]["text"] == "Welcome!"
        assert "footer" not in interactive
