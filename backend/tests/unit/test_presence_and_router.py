import asyncio
from contextlib import asynccontextmanager

import pytest

from buzzcore.domain.common import errors
from buzzcore.domain.live.calls import CallSignalRelay
from buzzcore.domain.live.router import SessionRouter
from buzzcore.domain.live.transport import RecordingTransport
from buzzcore.domain.presence.mirror import RedisPresenceMirror
from buzzcore.domain.presence.registry import InMemoryPresenceRegistry
from buzzcore.infra.pair_lock import PairLocks


@pytest.fixture
def presence():
	return InMemoryPresenceRegistry()


@pytest.fixture
def transport():
	return RecordingTransport()


@pytest.fixture
def router(presence, transport):
	return SessionRouter(presence, transport)


@pytest.mark.asyncio
async def test_reconnect_replaces_previous_handle(presence):
	assert await presence.register("bob", "sid-1") is None
	assert await presence.register("bob", "sid-2") == "sid-1"
	assert presence.lookup("bob") == "sid-2"
	# The stale connection dropping must not take bob offline.
	assert await presence.unregister("sid-1") is None
	assert presence.is_online("bob")
	assert await presence.unregister("sid-2") == "bob"
	assert not presence.is_online("bob")


@pytest.mark.asyncio
async def test_listeners_see_transitions_and_failures_are_contained(presence):
	seen = []

	async def record(user_id, online):
		seen.append((user_id, online))

	async def explode(user_id, online):
		raise RuntimeError("listener down")

	presence.add_listener(explode)
	presence.add_listener(record)
	await presence.register("alice", "sid-a")
	await presence.unregister("sid-a")
	assert seen == [("alice", True), ("alice", False)]


@pytest.mark.asyncio
async def test_relay_to_offline_peer_is_dropped_quietly(router, transport):
	delivered = await router.relay("alice", "typing", {"isTyping": True}, recipient_id="bob")
	assert delivered is False
	assert transport.sent == []


@pytest.mark.asyncio
async def test_relay_after_reconnect_reaches_only_new_connection(router, presence, transport):
	await presence.register("bob", "sid-old")
	await presence.register("bob", "sid-new")
	assert await router.relay("alice", "chat:message", {"text": "hi"}, pair="alice_bob") is True
	assert transport.events_for("sid-old") == []
	assert transport.events_for("sid-new") == [("chat:message", {"text": "hi"})]


@pytest.mark.asyncio
async def test_relay_preserves_emission_order(router, presence, transport):
	await presence.register("bob", "sid-b")
	await asyncio.gather(
		*(router.relay("alice", "chat:message", {"seq": seq}, recipient_id="bob") for seq in range(5))
	)
	assert [payload["seq"] for _, payload in transport.events_for("sid-b")] == [0, 1, 2, 3, 4]


class RecordingLocks(PairLocks):
	def __init__(self):
		super().__init__("relay")
		self.keys = []

	@asynccontextmanager
	async def hold_key(self, key):
		self.keys.append(key)
		async with super().hold_key(key):
			yield


@pytest.mark.asyncio
async def test_relay_serialises_on_the_normalised_sender(presence, transport):
	locks = RecordingLocks()
	router = SessionRouter(presence, transport, locks=locks)
	await presence.register("bob", "sid-b")
	await router.relay(" alice ", "chat:message", {"seq": 0}, recipient_id="bob")
	await router.relay("alice", "chat:message", {"seq": 1}, pair="alice_bob")
	assert locks.keys == ["alice_bob", "alice_bob"]
	assert [payload["seq"] for _, payload in transport.events_for("sid-b")] == [0, 1]


@pytest.mark.asyncio
async def test_relay_rejects_bad_routing(router):
	with pytest.raises(errors.ValidationError):
		await router.relay("alice", "typing", {})
	with pytest.raises(errors.ValidationError):
		await router.relay("alice", "typing", {}, recipient_id="alice")
	with pytest.raises(errors.ValidationError):
		await router.relay("alice", "typing", {}, pair="bob_carol")


def test_rooms_are_idempotent(router):
	assert router.join_room("alice", "alice_bob") is True
	assert router.join_room("alice", "alice_bob") is False
	assert router.members("alice_bob") == {"alice"}
	assert router.leave_all("alice") == 1
	assert router.leave_room("alice", "alice_bob") is False
	with pytest.raises(errors.ValidationError):
		router.join_room("alice", "  ")


@pytest.mark.asyncio
async def test_call_signals_are_forwarded_verbatim(router, presence, transport):
	calls = CallSignalRelay(router)
	await presence.register("bob", "sid-b")
	payload = {"sdp": "v=0", "type": "offer", "from": "alice"}
	assert await calls.forward("offer", "alice", payload, room_id="alice_bob") is True
	assert await calls.forward("end", "bob", {"from": "bob"}, recipient_id="alice") is False
	assert transport.events_for("sid-b") == [("call:offer", payload)]
	with pytest.raises(errors.ValidationError):
		await calls.forward("ring", "alice", {}, recipient_id="bob")


@pytest.mark.asyncio
async def test_redis_mirror_tracks_online_keys(presence, fake_redis):
	mirror = RedisPresenceMirror(ttl_seconds=120)
	presence.add_listener(mirror)
	await presence.register("alice", "sid-a")
	assert await mirror.is_online("alice") is True
	assert 0 < await fake_redis.ttl("online:user:alice") <= 120
	await presence.unregister("sid-a")
	assert await mirror.is_online("alice") is False
