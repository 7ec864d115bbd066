import asyncio

from realtime_chat.server.presence import PresenceRegistry
from realtime_chat.server.auth import TokenStore
from realtime_chat.server.session import ConnectionSession, RecentSends, SessionState
from realtime_chat.shared.events import Authenticate, Disconnect, SendMessage, StopTyping, Typing


def _run(coro):
    return asyncio.run(coro)


async def _online(user_id, connection, registry, store, **kwargs):
    session = ConnectionSession(connection, registry, store, **kwargs)
    await session.handle(Authenticate(user_id=user_id))
    return session


def test_events_before_authentication_are_ignored(make_connection, fake_store):
    async def scenario():
        conn = make_connection()
        session = ConnectionSession(conn, PresenceRegistry(), fake_store)
        await session.handle(SendMessage(content="hi", receiver_id=2))
        await session.handle(Typing(receiver_id=2))
        return session, conn

    session, conn = _run(scenario())
    assert session.state is SessionState.UNAUTHENTICATED
    assert conn.sent == []
    assert fake_store.rows == []


def test_authenticate_registers_broadcasts_and_sends_history(make_connection, fake_store):
    fake_store.create_message("old", 1, 2)
    fake_store.create_message("unrelated", 2, 3)

    async def scenario():
        registry = PresenceRegistry()
        carol = make_connection("carol")
        await _online(3, carol, registry, fake_store)
        alice = make_connection("alice")
        session = await _online(1, alice, registry, fake_store, history_limit=10)
        return registry, session, alice, carol

    registry, session, alice, carol = _run(scenario())
    assert session.state is SessionState.AUTHENTICATED
    assert session.user_id == 1
    assert carol.of_type("user_status")[-1] == {"type": "user_status", "userId": 1, "status": "online"}
    assert alice.types() == ["user_status", "recent_messages"]
    history = alice.of_type("recent_messages")[0]["messages"]
    assert [m["content"] for m in history] == ["old"]
    assert fake_store.limits[-1] == 10
    assert len(carol.of_type("recent_messages")) == 1


def test_send_message_to_online_receiver(make_connection, fake_store):
    async def scenario():
        registry = PresenceRegistry()
        alice, bob = make_connection("alice"), make_connection("bob")
        sender = await _online(1, alice, registry, fake_store)
        await _online(2, bob, registry, fake_store)
        await sender.handle(SendMessage(content="hi", receiver_id=2))
        return alice, bob

    alice, bob = _run(scenario())
    assert len(fake_store.rows) == 1
    row = fake_store.rows[0]
    assert (row.content, row.sender_id, row.receiver_id) == ("hi", 1, 2)
    acks = alice.of_type("message_sent")
    deliveries = bob.of_type("new_message")
    assert len(acks) == 1 and len(deliveries) == 1
    assert acks[0]["message"]["id"] == deliveries[0]["message"]["id"] == row.id
    assert alice.of_type("new_message") == []


def test_send_message_to_offline_receiver_is_stored_only(make_connection, fake_store):
    async def scenario():
        registry = PresenceRegistry()
        alice = make_connection("alice")
        sender = await _online(1, alice, registry, fake_store)
        await sender.handle(SendMessage(content="are you there?", receiver_id=2))
        bob = make_connection("bob")
        await _online(2, bob, registry, fake_store)
        return alice, bob

    alice, bob = _run(scenario())
    assert len(alice.of_type("message_sent")) == 1
    assert bob.of_type("new_message") == []
    history = bob.of_type("recent_messages")[0]["messages"]
    assert [m["content"] for m in history] == ["are you there?"]


def test_invalid_sends_yield_error_and_persist_nothing(make_connection, fake_store):
    async def scenario():
        alice = make_connection("alice")
        sender = await _online(1, alice, PresenceRegistry(), fake_store)
        await sender.handle(SendMessage(content="me", receiver_id=1))
        await sender.handle(SendMessage(content="", receiver_id=2))
        await sender.handle(SendMessage(content="   ", receiver_id=2))
        await sender.handle(SendMessage(content="nobody"))
        await sender.handle(SendMessage(content="spoof", receiver_id=2, sender_id=3))
        return alice

    alice = _run(scenario())
    errors = alice.of_type("error")
    assert len(errors) == 5
    assert errors[0]["message"] == "You cannot send a message to yourself"
    assert errors[4]["message"] == "Sender does not match the authenticated user"
    assert fake_store.rows == []
    assert alice.of_type("message_sent") == []


def test_persistence_failure_is_reported_to_sender_only(make_connection, fake_store):
    fake_store.fail = True

    async def scenario():
        registry = PresenceRegistry()
        alice, bob = make_connection("alice"), make_connection("bob")
        sender = await _online(1, alice, registry, fake_store)
        await _online(2, bob, registry, fake_store)
        await sender.handle(SendMessage(content="hi", receiver_id=2))
        return alice, bob

    alice, bob = _run(scenario())
    assert alice.of_type("error") == [{"type": "error", "message": "Failed to send message"}]
    assert bob.of_type("new_message") == []
    assert bob.of_type("error") == []


def test_retried_send_with_same_client_id_is_not_persisted_twice(make_connection, fake_store):
    async def scenario():
        registry = PresenceRegistry()
        alice, bob = make_connection("alice"), make_connection("bob")
        sender = await _online(1, alice, registry, fake_store)
        await _online(2, bob, registry, fake_store)
        event = SendMessage(content="once", receiver_id=2, client_message_id="c-1")
        await sender.handle(event)
        await sender.handle(event)
        return alice, bob

    alice, bob = _run(scenario())
    assert len(fake_store.rows) == 1
    acks = alice.of_type("message_sent")
    assert len(acks) == 2
    assert {ack["clientMessageId"] for ack in acks} == {"c-1"}
    assert acks[0]["message"] == acks[1]["message"]
    assert len(bob.of_type("new_message")) == 1


def test_send_from_dead_connection_still_persists_and_delivers(make_connection, fake_store):
    async def scenario():
        registry = PresenceRegistry()
        alice, bob = make_connection("alice"), make_connection("bob")
        sender = await _online(1, alice, registry, fake_store)
        await _online(2, bob, registry, fake_store)
        alice.alive = False
        await sender.handle(SendMessage(content="last words", receiver_id=2))
        return bob

    bob = _run(scenario())
    assert len(fake_store.rows) == 1
    assert bob.of_type("new_message")[0]["message"]["content"] == "last words"


def test_typing_is_relayed_with_the_session_identity(make_connection, fake_store):
    async def scenario():
        registry = PresenceRegistry()
        alice, bob = make_connection("alice"), make_connection("bob")
        sender = await _online(1, alice, registry, fake_store)
        await _online(2, bob, registry, fake_store)
        await sender.handle(Typing(receiver_id=2))
        await sender.handle(StopTyping(receiver_id=2, user_id=1))
        await sender.handle(Typing(receiver_id=9))
        return alice, bob

    alice, bob = _run(scenario())
    assert bob.of_type("user_typing") == [{"type": "user_typing", "userId": 1}]
    assert bob.of_type("user_stop_typing") == [{"type": "user_stop_typing", "userId": 1}]
    assert alice.of_type("error") == []


def test_disconnect_broadcasts_offline_once_and_unregisters(make_connection, fake_store):
    async def scenario():
        registry = PresenceRegistry()
        alice, bob = make_connection("alice"), make_connection("bob")
        await _online(1, alice, registry, fake_store)
        leaving = await _online(2, bob, registry, fake_store)
        await leaving.handle(Disconnect())
        await leaving.close()
        await leaving.handle(Typing(receiver_id=1))
        return registry, leaving, alice

    registry, leaving, alice = _run(scenario())
    assert leaving.state is SessionState.CLOSED
    offline = [e for e in alice.of_type("user_status") if e["status"] == "offline"]
    assert offline == [{"type": "user_status", "userId": 2, "status": "offline"}]
    assert alice.of_type("user_typing") == []
    assert _run(registry.get(2)) is None


def test_closing_a_superseded_connection_keeps_user_online(make_connection, fake_store):
    async def scenario():
        registry = PresenceRegistry()
        watcher, old, new = make_connection("watcher"), make_connection("old"), make_connection("new")
        await _online(3, watcher, registry, fake_store)
        stale = await _online(1, old, registry, fake_store)
        await _online(1, new, registry, fake_store)
        await stale.close()
        return registry, watcher, new

    registry, watcher, new = _run(scenario())
    assert [e for e in watcher.of_type("user_status") if e["status"] == "offline"] == []
    assert _run(registry.get(1)) is new


def test_second_authenticate_is_ignored(make_connection, fake_store):
    async def scenario():
        registry = PresenceRegistry()
        alice = make_connection("alice")
        session = await _online(1, alice, registry, fake_store)
        await session.handle(Authenticate(user_id=2))
        return registry, session

    registry, session = _run(scenario())
    assert session.user_id == 1
    assert _run(registry.online_user_ids()) == [1]


def test_send_replayed_on_a_new_connection_is_not_persisted_twice(make_connection, fake_store):
    async def scenario():
        registry, sends = PresenceRegistry(), RecentSends()
        event = SendMessage(content="once", receiver_id=2, client_message_id="c-1")
        first = await _online(1, make_connection("dropped"), registry, fake_store, sends=sends)
        await first.handle(event)
        await first.close()

        again = make_connection("again")
        second = await _online(1, again, registry, fake_store, sends=sends)
        await second.handle(event)
        other = await _online(3, make_connection("carol"), registry, fake_store, sends=sends)
        await other.handle(SendMessage(content="mine", receiver_id=2, client_message_id="c-1"))
        return again

    again = _run(scenario())
    assert [row.content for row in fake_store.rows] == ["once", "mine"]
    ack = again.of_type("message_sent")[0]
    assert ack["clientMessageId"] == "c-1"
    assert ack["message"]["id"] == fake_store.rows[0].id


def test_recent_sends_are_bounded():
    sends = RecentSends(limit=2)
    for n in range(3):
        sends.remember(1, f"c-{n}", object())
    assert len(sends) == 2
    assert sends.get(1, "c-0") is None
    assert sends.get(1, "c-2") is not None
    assert sends.get(2, "c-2") is None


def test_authenticate_with_token_must_match_user(make_connection, fake_store):
    store = TokenStore(ttl_minutes=5)
    token = store.issue(1)

    async def scenario():
        registry = PresenceRegistry()
        impostor = make_connection("impostor")
        refused = ConnectionSession(impostor, registry, fake_store, tokens=store)
        await refused.handle(Authenticate(user_id=2, token=token))
        await refused.handle(Authenticate(user_id=1, token="made-up"))
        alice = make_connection("alice")
        accepted = ConnectionSession(alice, registry, fake_store, tokens=store)
        await accepted.handle(Authenticate(user_id=1, token=token))
        return registry, refused, impostor, accepted

    registry, refused, impostor, accepted = _run(scenario())
    assert refused.state is SessionState.UNAUTHENTICATED
    assert impostor.types() == ["error", "error"]
    assert impostor.of_type("error")[0]["message"] == "Authentication failed"
    assert accepted.state is SessionState.AUTHENTICATED
    assert _run(registry.online_user_ids()) == [1]
