from datetime import datetime

import pytest

from realtime_chat.shared.events import (
    Authenticate,
    ChatMessage,
    Disconnect,
    MalformedEvent,
    MessageSent,
    SendMessage,
    UserStatus,
    parse_inbound,
    parse_outbound,
)


def test_parse_inbound_uses_camel_case_keys():
    event = parse_inbound('{"type": "authenticate", "userId": 7}')
    assert isinstance(event, Authenticate)
    assert event.user_id == 7


def test_parse_inbound_coerces_numeric_strings():
    event = parse_inbound({"type": "send_message", "content": "hi", "receiverId": "2", "clientMessageId": "abc"})
    assert isinstance(event, SendMessage)
    assert event.receiver_id == 2
    assert event.client_message_id == "abc"


def test_send_message_fields_are_optional_at_the_boundary():
    event = parse_inbound({"type": "send_message"})
    assert event.content == ""
    assert event.receiver_id is None


def test_parse_inbound_disconnect():
    assert isinstance(parse_inbound({"type": "disconnect"}), Disconnect)


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"type": "launch_missiles"}',
        '{"type": "typing"}',
        '{"type": "authenticate", "userId": "abc"}',
    ],
)
def test_parse_inbound_rejects_malformed_frames(raw):
    with pytest.raises(MalformedEvent):
        parse_inbound(raw)


def test_outbound_wire_format_omits_unset_client_id():
    message = ChatMessage(id=4, content="hi", sender_id=1, receiver_id=2, timestamp=datetime(2024, 1, 1, 12, 0))
    wire = MessageSent(message=message).to_wire()
    assert wire == {
        "type": "message_sent",
        "message": {"id": 4, "content": "hi", "senderId": 1, "receiverId": 2, "timestamp": "2024-01-01T12:00:00"},
    }


def test_parse_outbound_reads_server_events():
    event = parse_outbound(UserStatus(user_id=3, status="offline").to_wire())
    assert isinstance(event, UserStatus)
    assert event.user_id == 3
    assert event.status == "offline"
