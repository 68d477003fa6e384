from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
import socketio

from buzzcore.container import build_container
from buzzcore.domain.live.sockets import LiveNamespace
from buzzcore.domain.meet.venues import StaticVenueSearch
from buzzcore.settings import settings


def _environ(user_id=None):
	headers = [(b"x-user-id", user_id.encode())] if user_id else []
	return {"asgi.scope": {"headers": headers}}


@pytest_asyncio.fixture
async def live():
	container = build_container(venues=StaticVenueSearch())
	server = socketio.AsyncServer(async_mode="asgi")
	namespace = LiveNamespace(container)
	server.register_namespace(namespace)
	namespace.emit = AsyncMock()
	try:
		yield namespace, container
	finally:
		await container.aclose()


def _emitted(namespace, event, room=None):
	return [
		call.args[1]
		for call in namespace.emit.await_args_list
		if call.args[0] == event and (room is None or call.kwargs.get("room") == room)
	]


async def _connect(namespace, sid, user_id):
	await namespace.trigger_event("connect", sid, _environ(user_id))


@pytest.mark.asyncio
async def test_connect_registers_presence_and_acknowledges(live):
	namespace, container = live
	await _connect(namespace, "sid-a", "alice")
	assert container.presence.lookup("alice") == "sid-a"
	assert _emitted(namespace, "sys.ok", room="sid-a") == [{"ok": True, "userId": "alice"}]
	assert {"userId": "alice"} in _emitted(namespace, "presence:online")

	await namespace.trigger_event("disconnect", "sid-a")
	assert not container.presence.is_online("alice")
	assert {"userId": "alice"} in _emitted(namespace, "presence:offline")


@pytest.mark.asyncio
async def test_anonymous_connection_registers_in_dev(live):
	namespace, container = live
	await _connect(namespace, "sid-z", None)
	result = await namespace.trigger_event("register", "sid-z", {"userId": "zed"})
	assert result == {"ok": True, "userId": "zed"}
	assert container.presence.lookup("zed") == "sid-z"


@pytest.mark.asyncio
async def test_register_rejected_outside_dev(live):
	namespace, container = live
	settings.environment = "production"
	await _connect(namespace, "sid-z", None)
	result = await namespace.trigger_event("user:register", "sid-z", "zed")
	assert result == {"ok": False, "reason": "unauthenticated"}
	assert not container.presence.is_online("zed")


@pytest.mark.asyncio
async def test_register_cannot_claim_another_identity(live):
	namespace, container = live
	await _connect(namespace, "sid-a", "alice")
	result = await namespace.trigger_event("register", "sid-a", {"userId": "bob"})
	assert result == {"ok": False, "reason": "identity_mismatch"}
	assert _emitted(namespace, "sys.warn", room="sid-a")[-1]["reason"] == "identity_mismatch"


@pytest.mark.asyncio
async def test_unregistered_socket_events_warn(live):
	namespace, _ = live
	result = await namespace.trigger_event("sendMessage", "sid-ghost", {"to": "bob", "text": "hi"})
	assert result == {"ok": False, "reason": "unregistered"}


@pytest.mark.asyncio
async def test_send_message_relays_to_peer(live):
	namespace, _ = live
	await _connect(namespace, "sid-a", "alice")
	await _connect(namespace, "sid-b", "bob")
	result = await namespace.trigger_event("sendMessage", "sid-a", {"roomId": "alice_bob", "text": "hi"})
	assert result["ok"] is True and result["delivered"] is True
	[message] = _emitted(namespace, "chat:message", room="sid-b")
	assert message["from"] == "alice"
	assert message["to"] == "bob"
	assert message["text"] == "hi"
	assert message["id"] == result["id"]


@pytest.mark.asyncio
async def test_send_message_to_blocked_peer_warns_sender(live):
	namespace, container = live
	await _connect(namespace, "sid-a", "alice")
	await _connect(namespace, "sid-b", "bob")
	await container.relationships.block("bob", "alice")
	result = await namespace.trigger_event("sendMessage", "sid-a", {"to": "bob", "text": "hi"})
	assert result == {"ok": False, "reason": "blocked"}
	[warning] = _emitted(namespace, "warn", room="sid-a")
	assert warning["reason"] == "blocked"
	assert _emitted(namespace, "chat:message") == []


@pytest.mark.asyncio
async def test_message_rate_limit(live):
	namespace, _ = live
	original = settings.live_messages_per_minute
	settings.live_messages_per_minute = 1
	try:
		await _connect(namespace, "sid-a", "alice")
		await namespace.trigger_event("sendMessage", "sid-a", {"to": "bob", "text": "1"})
		result = await namespace.trigger_event("sendMessage", "sid-a", {"to": "bob", "text": "2"})
	finally:
		settings.live_messages_per_minute = original
	assert result == {"ok": False, "reason": "rate_limited"}


@pytest.mark.asyncio
async def test_typing_and_seen_reach_peer(live):
	namespace, _ = live
	await _connect(namespace, "sid-a", "alice")
	await _connect(namespace, "sid-b", "bob")
	await namespace.trigger_event("typing", "sid-a", {"roomId": "alice_bob"})
	await namespace.trigger_event("message:seen", "sid-b", {"roomId": "alice_bob", "msgId": "m1"})
	assert _emitted(namespace, "typing", room="sid-b") == [{"fromId": "alice", "roomId": "alice_bob", "isTyping": True}]
	assert _emitted(namespace, "message:seen", room="sid-a") == [{"roomId": "alice_bob", "msgId": "m1", "fromId": "bob"}]


@pytest.mark.asyncio
async def test_call_offer_carries_authenticated_sender(live):
	namespace, _ = live
	await _connect(namespace, "sid-a", "alice")
	await _connect(namespace, "sid-b", "bob")
	result = await namespace.trigger_event("call:offer", "sid-a", {"to": "bob", "from": "mallory", "sdp": "v=0"})
	assert result == {"ok": True, "delivered": True}
	[offer] = _emitted(namespace, "call:offer", room="sid-b")
	assert offer["from"] == "alice"
	assert offer["sdp"] == "v=0"


@pytest.mark.asyncio
async def test_join_and_leave_room(live):
	namespace, container = live
	await _connect(namespace, "sid-a", "alice")
	assert await namespace.trigger_event("joinRoom", "sid-a", "alice_bob") == {"ok": True, "joined": True}
	assert await namespace.trigger_event("joinRoom", "sid-a", {"roomId": "alice_bob"}) == {"ok": True, "joined": False}
	assert await namespace.trigger_event("leaveRoom", "sid-a", "alice_bob") == {"ok": True, "left": True}
	assert container.router.members("alice_bob") == set()


@pytest.mark.asyncio
async def test_meet_request_to_offline_peer(live):
	namespace, _ = live
	await _connect(namespace, "sid-a", "alice")
	result = await namespace.trigger_event("meet:request", "sid-a", {"to": "carol"})
	assert result == {"ok": False, "reason": "offline"}
	assert _emitted(namespace, "meet:undeliverable", room="sid-a") == [{"to": "carol", "reason": "offline"}]


@pytest.mark.asyncio
async def test_meet_flow_over_socket(live):
	namespace, container = live
	await _connect(namespace, "sid-a", "alice")
	await _connect(namespace, "sid-b", "bob")
	requested = await namespace.trigger_event("meet:request", "sid-a", {"to": "bob", "coords": {"lat": 0, "lng": 0}})
	assert requested == {"ok": True, "state": "requested"}
	accepted = await namespace.trigger_event("meet:accept", "sid-b", {"to": "alice", "coords": {"lat": 2, "lng": 0}})
	assert accepted == {"ok": True, "state": "suggested"}
	[suggestion] = _emitted(namespace, "meet:suggest", room="sid-a")
	assert suggestion["midpoint"] == {"lat": 1.0, "lng": 0.0}
	assert suggestion["canExpand"] is True

	chosen = await namespace.trigger_event("meet:chosen", "sid-a", {"to": "bob", "place": {"id": "midpoint"}})
	assert chosen == {"ok": True, "state": "place_proposed"}
	confirmed = await namespace.trigger_event("meet:place:accepted", "sid-b", {"to": "alice"})
	assert confirmed == {"ok": True, "state": "confirmed"}
	assert container.meet.get("alice", "bob") is None


@pytest.mark.asyncio
async def test_meet_accept_without_session_warns(live):
	namespace, _ = live
	await _connect(namespace, "sid-b", "bob")
	result = await namespace.trigger_event("meet:accept", "sid-b", {"to": "alice", "coords": {"lat": 1, "lng": 1}})
	assert result == {"ok": False, "reason": "meet_not_found"}
	assert _emitted(namespace, "sys.warn", room="sid-b")[-1] == {"event": "meet:accept", "reason": "meet_not_found"}
