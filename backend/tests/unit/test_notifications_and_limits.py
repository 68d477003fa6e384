import pytest

from buzzcore.domain.common.errors import RateLimitExceeded
from buzzcore.domain.live.router import SessionRouter
from buzzcore.domain.live.transport import RecordingTransport
from buzzcore.domain.notifications.service import InMemoryNotificationStore, NotificationService
from buzzcore.domain.presence.registry import InMemoryPresenceRegistry
from buzzcore.infra.rate_limit import RateKind, allow, enforce
from buzzcore.settings import settings


class BrokenPush:
	async def send_to_user(self, user_id, event, payload):
		raise RuntimeError("socket gone")


@pytest.mark.asyncio
async def test_notification_is_persisted_then_pushed(clock):
	presence = InMemoryPresenceRegistry()
	transport = RecordingTransport()
	await presence.register("bob", "sid-b")
	service = NotificationService(InMemoryNotificationStore(), SessionRouter(presence, transport), clock=clock)

	created = await service.notify("bob", type="buzz", message="Alice buzzed you!", from_id="alice", data={"streak": 2})
	[(event, payload)] = transport.events_for("sid-b")
	assert event == "notification"
	assert payload["id"] == created.id
	assert payload["streak"] == 2
	assert (await service.list_for_user("bob"))[0].id == created.id


@pytest.mark.asyncio
async def test_push_failure_keeps_stored_notification(clock):
	service = NotificationService(InMemoryNotificationStore(), BrokenPush(), clock=clock)
	created = await service.notify("bob", type="match", message="It's a match with Alice!")
	assert [item.id for item in await service.list_for_user("bob")] == [created.id]


@pytest.mark.asyncio
async def test_mark_read_only_once_and_only_for_owner(clock):
	service = NotificationService(InMemoryNotificationStore(), clock=clock)
	created = await service.notify("bob", type="match", message="hi")
	assert await service.mark_read("alice", created.id) is False
	assert await service.mark_read("bob", created.id) is True
	assert await service.mark_read("bob", created.id) is False
	assert (await service.list_for_user("bob"))[0].read_at == clock()


@pytest.mark.asyncio
async def test_rate_limit_window(fake_redis):
	now = 1_700_000_000.0
	results = [await allow(RateKind.LIVE_MESSAGE, "alice", limit=2, window_seconds=60, now=now) for _ in range(3)]
	assert results == [True, True, False]
	assert await allow(RateKind.LIVE_MESSAGE, "alice", limit=2, window_seconds=60, now=now + 60) is True
	assert await allow(RateKind.LIVE_MESSAGE, "bob", limit=0) is False


@pytest.mark.asyncio
async def test_enforce_reads_the_budget_for_each_kind(fake_redis, monkeypatch):
	monkeypatch.setattr(settings, "live_meet_requests_per_minute", 2)
	now = 1_700_000_000.0
	await enforce(RateKind.LIVE_MEET, "alice", now=now)
	await enforce(RateKind.LIVE_MEET, "alice", now=now)
	with pytest.raises(RateLimitExceeded):
		await enforce(RateKind.LIVE_MEET, "alice", now=now)
	await enforce(RateKind.LIVE_MESSAGE, "alice", now=now)
	assert await fake_redis.get(f"rl:live_meet:alice:{int(now // 60)}:60") == "3"
