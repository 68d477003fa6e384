import pytest
import pytest_asyncio

from buzzcore.domain.common import errors
from buzzcore.domain.directory.models import Coordinates, UserSnapshot
from buzzcore.domain.directory.repo import InMemoryUserDirectory
from buzzcore.domain.live.router import SessionRouter
from buzzcore.domain.live.transport import RecordingTransport
from buzzcore.domain.meet.models import MeetState, Venue
from buzzcore.domain.meet.service import MeetNegotiator
from buzzcore.domain.meet.venues import StaticVenueSearch
from buzzcore.domain.presence.registry import InMemoryPresenceRegistry
from buzzcore.domain.relationships.repo import InMemoryRelationshipStore
from buzzcore.domain.relationships.service import RelationshipStateMachine

CAFE = Venue(id="node1", name="Cafe Uno", category="cafe", coords=Coordinates(1.0, 0.001), address="1 Main St")


@pytest.fixture
def transport():
	return RecordingTransport()


@pytest.fixture
def venues():
	return StaticVenueSearch([CAFE])


@pytest.fixture
def relationships():
	return RelationshipStateMachine(InMemoryRelationshipStore())


@pytest_asyncio.fixture
async def negotiator(transport, venues, relationships, clock):
	presence = InMemoryPresenceRegistry()
	await presence.register("alice", "sid-a")
	await presence.register("bob", "sid-b")
	directory = InMemoryUserDirectory(
		[UserSnapshot(id="alice", name="Alice", location=Coordinates(0, 0)), UserSnapshot(id="bob", name="Bob")]
	)
	return MeetNegotiator(
		SessionRouter(presence, transport),
		venues,
		directory=directory,
		relationships=relationships,
		idle_timeout_seconds=600,
		radius_m=1500,
		expand_radius_m=3200,
		clock=clock,
	)


def _events(transport, handle):
	return [event for event, _ in transport.events_for(handle)]


def _last(transport, handle, event):
	return [payload for name, payload in transport.events_for(handle) if name == event][-1]


async def _suggested(negotiator):
	await negotiator.request("alice", "bob", {"lat": 0, "lng": 0})
	return await negotiator.accept("bob", "alice", {"lat": 2, "lng": 0})


@pytest.mark.asyncio
async def test_suggest_is_stateless(negotiator, venues):
	result = await negotiator.suggest({"lat": 0, "lng": 0}, {"lat": 2, "lng": 0})
	assert result["midpoint"] == {"lat": 1.0, "lng": 0.0}
	assert result["places"] == [CAFE.to_dict()]
	assert result["canExpand"] is False
	assert result["radiusMeters"] == 1500
	assert len(negotiator) == 0

	venues.venues = []
	widened = await negotiator.suggest({"lat": 0, "lng": 0}, {"lat": 2, "lng": 0}, expand=True)
	assert widened["radiusMeters"] == 3200
	assert widened["canExpand"] is False


@pytest.mark.asyncio
async def test_request_and_accept_reach_suggested_with_midpoint(negotiator, transport, venues):
	session = await _suggested(negotiator)
	assert session.state == MeetState.SUGGESTED
	assert session.midpoint == Coordinates(1.0, 0.0)
	assert venues.calls == [(Coordinates(1.0, 0.0), 1500)]
	assert "meet:request" in _events(transport, "sid-b")
	assert "meet:accept" in _events(transport, "sid-a")
	for handle in ("sid-a", "sid-b"):
		suggestion = _last(transport, handle, "meet:suggest")
		assert suggestion["places"] == [CAFE.to_dict()]
		assert suggestion["midpoint"] == {"lat": 1.0, "lng": 0.0}
		assert _last(transport, handle, "meet:state")["state"] == "accepted"


@pytest.mark.asyncio
async def test_offline_target_is_undeliverable(negotiator, transport):
	assert await negotiator.request("alice", "carol") is None
	assert negotiator.get("alice", "carol") is None
	assert _last(transport, "sid-a", "meet:undeliverable") == {"to": "carol", "reason": "offline"}


@pytest.mark.asyncio
async def test_second_request_while_live_is_rejected(negotiator):
	await negotiator.request("alice", "bob")
	with pytest.raises(errors.MeetInProgress):
		await negotiator.request("bob", "alice")


@pytest.mark.asyncio
async def test_blocked_pair_cannot_meet(negotiator, relationships):
	await relationships.block("bob", "alice")
	with pytest.raises(errors.Blocked):
		await negotiator.request("alice", "bob")


@pytest.mark.asyncio
async def test_accept_falls_back_to_last_known_location(negotiator):
	await negotiator.request("alice", "bob")
	session = await negotiator.accept("bob", "alice", {"lat": 2, "lng": 0})
	assert session.state == MeetState.SUGGESTED
	assert session.midpoint == Coordinates(1.0, 0.0)


@pytest.mark.asyncio
async def test_location_shared_after_accept_triggers_search(negotiator):
	await negotiator.request("bob", "alice")
	session = await negotiator.accept("alice", "bob", {"lat": 0, "lng": 0})
	assert session.state == MeetState.ACCEPTED
	session = await negotiator.share_location("bob", "alice", {"lat": 0, "lng": 4})
	assert session.state == MeetState.SUGGESTED
	assert session.midpoint == Coordinates(0.0, 2.0)
	with pytest.raises(errors.InvalidState):
		await negotiator.share_location("bob", "alice", {"lat": 0, "lng": 4})


@pytest.mark.asyncio
async def test_upstream_failure_is_reported_not_faked(negotiator, venues, transport):
	venues.fail = True
	session = await _suggested(negotiator)
	assert session.state == MeetState.SUGGESTED
	assert session.venues == []
	snapshot = _last(transport, "sid-a", "meet:suggest")
	assert snapshot["upstreamError"] is True
	assert snapshot["canExpand"] is True

	venues.fail = False
	venues.venues = []
	session = await negotiator.expand_search("bob", "alice")
	assert venues.calls[-1][1] == 3200
	assert session.upstream_error is False
	assert session.can_expand is False
	with pytest.raises(errors.InvalidState):
		await negotiator.expand_search("alice", "bob")


@pytest.mark.asyncio
async def test_expand_not_offered_when_venues_found(negotiator):
	await _suggested(negotiator)
	with pytest.raises(errors.InvalidState):
		await negotiator.expand_search("alice", "bob")


@pytest.mark.asyncio
async def test_place_proposal_accept_confirms_and_releases(negotiator, transport):
	await _suggested(negotiator)
	session = await negotiator.propose_place("alice", "bob", "node1")
	assert session.state == MeetState.PLACE_PROPOSED
	assert _last(transport, "sid-b", "meet:place:selected")["place"]["id"] == "node1"
	with pytest.raises(errors.InvalidState):
		await negotiator.accept_place("alice", "bob")

	session = await negotiator.accept_place("bob", "alice")
	assert session.state == MeetState.CONFIRMED
	assert negotiator.get("alice", "bob") is None
	for handle in ("sid-a", "sid-b"):
		assert _last(transport, handle, "meet:place:accepted")["place"]["name"] == "Cafe Uno"
		assert _last(transport, handle, "meet:state")["state"] == "confirmed"


@pytest.mark.asyncio
async def test_rejected_place_returns_to_suggested(negotiator, transport):
	await _suggested(negotiator)
	await negotiator.propose_place("bob", "alice", "midpoint")
	session = await negotiator.reject_place("alice", "bob")
	assert session.state == MeetState.SUGGESTED
	assert session.proposal is None
	assert _last(transport, "sid-b", "meet:place:rejected")["place"]["id"] == "midpoint"
	with pytest.raises(errors.ValidationError):
		await negotiator.propose_place("bob", "alice", "node404")


@pytest.mark.asyncio
async def test_decline_tears_down_for_both(negotiator, transport):
	await negotiator.request("alice", "bob")
	declined = await negotiator.decline("bob", "alice")
	assert declined.state == MeetState.DECLINED
	assert negotiator.get("alice", "bob") is None
	assert "meet:decline" in _events(transport, "sid-a")
	assert "meet:decline" in _events(transport, "sid-b")
	assert await negotiator.decline("bob", "alice") is None
	with pytest.raises(errors.NotFoundError):
		await negotiator.accept("bob", "alice", {"lat": 1, "lng": 1})


@pytest.mark.asyncio
async def test_idle_sessions_expire(negotiator, transport, clock):
	await negotiator.request("alice", "bob")
	clock.advance(599)
	assert await negotiator.sweep_expired() == 0
	clock.advance(2)
	assert await negotiator.sweep_expired() == 1
	assert len(negotiator) == 0
	assert _last(transport, "sid-b", "meet:expired") == {"pairKey": "alice_bob"}


@pytest.mark.asyncio
async def test_idle_session_is_hidden_before_the_sweep_announces_it(negotiator, transport, clock):
	await negotiator.request("alice", "bob")
	clock.advance(599)
	assert negotiator.get("alice", "bob") is not None
	clock.advance(2)
	assert negotiator.get("alice", "bob") is None
	assert len(negotiator) == 1
	assert await negotiator.sweep_expired() == 1
	assert _last(transport, "sid-a", "meet:expired") == {"pairKey": "alice_bob"}
