"""Tests for the connection lifecycle manager."""
import pytest

from friendstalk.events import EventType
from friendstalk.realtime import parse_command

OFFER = {"type": "offer", "sdp": "v=0"}


async def _connect(lifecycle, make_connection, user_id):
    conn, transport = make_connection(user_id)
    await lifecycle.connect(conn)
    return conn, transport


class TestConnectDisconnect:
    @pytest.mark.asyncio
    async def test_connect_registers_presence(self, lifecycle, make_connection):
        conn, transport = await _connect(lifecycle, make_connection, "alice")

        assert lifecycle.presence.resolve("alice") == conn.id
        assert transport.last("presence-changed")["userIds"] == ["alice"]

    @pytest.mark.asyncio
    async def test_disconnect_ends_call_before_unregistering(self, lifecycle, make_connection):
        alice, _ = await _connect(lifecycle, make_connection, "alice")
        _, bob_ws = await _connect(lifecycle, make_connection, "bob")
        await lifecycle.calls.invite("alice", "bob", OFFER)
        bob_ws.clear()

        await lifecycle.disconnect(alice)

        types = [event["type"] for event in bob_ws.sent]
        assert types == ["call-ended", "presence-changed"]
        assert bob_ws.last("call-ended")["reason"] == "peer-disconnected"
        assert bob_ws.last("presence-changed")["userIds"] == ["bob"]
        assert not lifecycle.calls.is_busy("bob")

    @pytest.mark.asyncio
    async def test_superseded_session_ends_its_call(self, lifecycle, make_connection):
        await _connect(lifecycle, make_connection, "alice")
        _, bob_ws = await _connect(lifecycle, make_connection, "bob")
        await lifecycle.calls.invite("alice", "bob", OFFER)

        await _connect(lifecycle, make_connection, "alice")

        assert bob_ws.last("call-ended")["reason"] == "peer-disconnected"
        assert lifecycle.calls.active_sessions() == []

    @pytest.mark.asyncio
    async def test_disconnect_of_superseded_connection_keeps_new_session(self, lifecycle, make_connection):
        old, _ = await _connect(lifecycle, make_connection, "alice")
        new, _ = await _connect(lifecycle, make_connection, "alice")

        await lifecycle.disconnect(old)

        assert lifecycle.presence.resolve("alice") == new.id


class TestDispatch:
    @pytest.mark.asyncio
    async def test_send_message_is_acknowledged(self, lifecycle, make_connection):
        alice, alice_ws = await _connect(lifecycle, make_connection, "alice")
        _, bob_ws = await _connect(lifecycle, make_connection, "bob")

        await lifecycle.dispatch(
            alice,
            parse_command('{"type": "send-message", "receiverId": "bob", "content": "hi", "clientSuppliedId": "c1"}'),
        )

        assert bob_ws.last("message-received")["content"] == "hi"
        assert alice_ws.last("message-status")["clientSuppliedId"] == "c1"

    @pytest.mark.asyncio
    async def test_invalid_message_gets_error_event(self, lifecycle, make_connection):
        alice, alice_ws = await _connect(lifecycle, make_connection, "alice")

        await lifecycle.dispatch(
            alice, parse_command('{"type": "send-message", "receiverId": "bob", "content": "  "}')
        )

        assert "error" in alice_ws.last("error")
        assert alice_ws.events("message-status") == []

    @pytest.mark.asyncio
    async def test_invalid_invite_gets_error_event(self, lifecycle, make_connection):
        alice, alice_ws = await _connect(lifecycle, make_connection, "alice")

        await lifecycle.dispatch(
            alice, parse_command('{"type": "call-invite", "calleeId": "alice", "offer": {"sdp": "x"}}')
        )

        assert alice_ws.last("error")["error"] == "Invalid call invite"

    @pytest.mark.asyncio
    async def test_events_from_superseded_connection_are_dropped(self, lifecycle, make_connection):
        old, _ = await _connect(lifecycle, make_connection, "alice")
        await _connect(lifecycle, make_connection, "alice")
        _, bob_ws = await _connect(lifecycle, make_connection, "bob")
        bob_ws.clear()

        await lifecycle.dispatch(
            old, parse_command('{"type": "send-message", "receiverId": "bob", "content": "ghost"}')
        )

        assert bob_ws.sent == []
        assert await lifecycle.messages.history("bob", "alice") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", ["typing", "stop-typing"])
    async def test_typing_is_relayed_not_stored(self, lifecycle, make_connection, event_type):
        alice, _ = await _connect(lifecycle, make_connection, "alice")
        _, bob_ws = await _connect(lifecycle, make_connection, "bob")

        await lifecycle.dispatch(alice, parse_command(f'{{"type": "{event_type}", "to": "bob"}}'))

        assert bob_ws.last(event_type) == {"type": event_type, "fromId": "alice"}
        assert await lifecycle.messages.history("alice", "bob") == []

    @pytest.mark.asyncio
    async def test_full_call_flow(self, lifecycle, make_connection):
        alice, alice_ws = await _connect(lifecycle, make_connection, "alice")
        bob, bob_ws = await _connect(lifecycle, make_connection, "bob")

        await lifecycle.dispatch(
            alice,
            parse_command('{"type": "call-invite", "calleeId": "bob", "offer": {"sdp": "o"}, "callId": "k1"}'),
        )
        await lifecycle.dispatch(
            bob, parse_command('{"type": "call-answer", "callId": "k1", "answer": {"sdp": "a"}}')
        )
        await lifecycle.dispatch(
            bob, parse_command('{"type": "ice-candidate", "callId": "k1", "candidate": {"c": 1}}')
        )
        await lifecycle.dispatch(alice, parse_command('{"type": "call-end", "callId": "k1"}'))

        assert bob_ws.last("call-incoming")["callId"] == "k1"
        assert alice_ws.last("call-answered")["answer"] == {"sdp": "a"}
        assert alice_ws.last("ice-candidate")["candidate"] == {"c": 1}
        assert bob_ws.last("call-ended")["missed"] is False
        assert lifecycle.calls.active_sessions() == []

    @pytest.mark.asyncio
    async def test_mark_read_dispatch(self, lifecycle, make_connection):
        alice, alice_ws = await _connect(lifecycle, make_connection, "alice")
        bob, _ = await _connect(lifecycle, make_connection, "bob")
        await lifecycle.messages.send("alice", "bob", "hi")

        await lifecycle.dispatch(bob, parse_command('{"type": "mark-read", "peerId": "alice"}'))

        assert alice_ws.last("messages-read")["readerId"] == "bob"

    def test_every_inbound_event_has_a_handler(self, lifecycle):
        inbound = {
            EventType.SEND_MESSAGE,
            EventType.MARK_READ,
            EventType.CALL_INVITE,
            EventType.CALL_ANSWER,
            EventType.CALL_REJECT,
            EventType.CALL_END,
            EventType.ICE_CANDIDATE,
            EventType.TYPING,
            EventType.STOP_TYPING,
        }
        assert set(lifecycle._handlers) == inbound
