import pytest

from realtime_chat.server.errors import MessageAccessError, UnknownUserError


def test_create_message_assigns_id_and_timestamp(store):
    message = store.create_message("hi", 1, 2)
    assert message.id > 0
    assert message.timestamp is not None
    assert (message.content, message.sender_id, message.receiver_id) == ("hi", 1, 2)


def test_persisted_message_is_listed_for_both_participants(store):
    message = store.create_message("hello bob", 1, 2)
    for user_id in (1, 2):
        history = store.list_recent_for_user(user_id)
        assert history == [message]
    assert store.list_recent_for_user(3) == []


def test_unknown_receiver_is_rejected_without_writing(store):
    with pytest.raises(UnknownUserError):
        store.create_message("into the void", 1, 99)
    assert store.list_recent_for_user(1) == []


def test_recent_history_is_capped_newest_first_then_returned_ascending(store):
    for i in range(55):
        store.create_message(f"m{i}", 1 if i % 2 else 2, 2 if i % 2 else 1)
    store.create_message("between others", 2, 3)

    history = store.list_recent_for_user(1, limit=50)
    assert len(history) == 50
    assert [m.content for m in history] == [f"m{i}" for i in range(5, 55)]
    assert [m.id for m in history] == sorted(m.id for m in history)
    assert all(1 in (m.sender_id, m.receiver_id) for m in history)


def test_delete_is_limited_to_the_sender(store):
    message = store.create_message("oops", 1, 2)
    with pytest.raises(MessageAccessError):
        store.delete_message(message.id, 2)
    with pytest.raises(MessageAccessError):
        store.delete_message(12345, 1)

    store.delete_message(message.id, 1)
    assert store.list_recent_for_user(1) == []
