"""Meet-in-the-middle negotiation between two users.

Idle → Requested → Accepted → Suggested → PlaceProposed → Confirmed, with
Declined reachable from any live state. Sessions live in memory only and are
dropped on decline, confirmation or idle timeout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from typing import Any, Callable, Dict, List, Mapping, Optional

from buzzcore.domain.common import errors
from buzzcore.domain.common.pairs import normalise_id, pair_key
from buzzcore.domain.directory.models import Coordinates
from buzzcore.domain.directory.repo import UserDirectory
from buzzcore.domain.geo.scoring import midpoint as compute_midpoint
from buzzcore.domain.live.router import SessionRouter
from buzzcore.domain.meet.models import TERMINAL_STATES, MeetSession, MeetState, Venue
from buzzcore.domain.meet.venues import VenueSearch
from buzzcore.domain.relationships.service import RelationshipStateMachine
from buzzcore.infra.pair_lock import PairLocks
from buzzcore.obs import metrics as obs_metrics
from buzzcore.settings import settings

logger = logging.getLogger(__name__)

MIDPOINT_VENUE_ID = "midpoint"


def _coords(value: Any) -> Coordinates:
	if isinstance(value, Coordinates):
		return value
	return Coordinates.from_payload(value)


def midpoint_venue(point: Coordinates) -> Venue:
	"""The exact midpoint as a selectable option when no venue suits."""
	return Venue(id=MIDPOINT_VENUE_ID, name="Exact midpoint", category="midpoint", coords=point, address="Midpoint")


class MeetNegotiator:
	def __init__(
		self,
		router: SessionRouter,
		venues: VenueSearch,
		*,
		directory: Optional[UserDirectory] = None,
		relationships: Optional[RelationshipStateMachine] = None,
		locks: Optional[PairLocks] = None,
		idle_timeout_seconds: Optional[float] = None,
		radius_m: Optional[int] = None,
		expand_radius_m: Optional[int] = None,
		clock: Callable[[], float] = time.time,
	) -> None:
		self._router = router
		self._venues = venues
		self._directory = directory
		self._relationships = relationships
		self._locks = locks or PairLocks("meet")
		self._idle_timeout = float(
			idle_timeout_seconds if idle_timeout_seconds is not None else settings.meet_idle_timeout_seconds
		)
		self._radius_m = int(radius_m or settings.meet_venue_radius_m)
		self._expand_radius_m = int(expand_radius_m or settings.meet_venue_expand_radius_m)
		self._clock = clock
		self._sessions: Dict[str, MeetSession] = {}
		self._sweeper: Optional[asyncio.Task] = None

	# Queries

	def get(self, a: str, b: str) -> Optional[MeetSession]:
		"""Live session for the pair; idle ones read as gone but are left for the sweeper to announce."""
		session = self._sessions.get(pair_key(a, b))
		if session is None or session.state in TERMINAL_STATES or self._expired(session, self._clock()):
			return None
		return session

	def __len__(self) -> int:
		return len(self._sessions)

	async def suggest(self, a: Any, b: Any, *, expand: bool = False) -> Dict[str, Any]:
		"""Stateless midpoint and venue lookup for two coordinate pairs."""
		point = compute_midpoint(_coords(a), _coords(b))
		radius_m = self._expand_radius_m if expand else self._radius_m
		upstream_error = False
		try:
			venues = await self._venues.find_venues(point, radius_m)
		except errors.UpstreamUnavailable:
			venues = []
			upstream_error = True
		return {
			"midpoint": point.to_payload(),
			"places": [venue.to_dict() for venue in venues],
			"radiusMeters": radius_m,
			"canExpand": not venues and not expand,
			"upstreamError": upstream_error,
		}

	# Transitions

	async def request(self, initiator_id: object, target_id: object, coords: Any = None) -> Optional[MeetSession]:
		"""Open a session. Returns None when the target is offline; the initiator is told so."""
		initiator, target = self._ids(initiator_id, target_id)
		initiator_coords = _coords(coords) if coords is not None else None
		if self._relationships is not None and await self._relationships.is_blocked(initiator, target):
			raise errors.Blocked()
		name = await self._name(initiator)
		async with self._locks.hold(initiator, target) as key:
			existing = self._live_session(key)
			if existing is not None:
				raise errors.MeetInProgress()
			if not self._router.presence.is_online(target):
				obs_metrics.inc_meet_state("undeliverable")
				await self._emit(initiator, "meet:undeliverable", {"to": target, "reason": "offline"})
				return None
			session = MeetSession(requester_id=initiator, target_id=target)
			if initiator_coords is not None:
				session.coords[initiator] = initiator_coords
			session.touch(MeetState.REQUESTED, self._clock())
			self._sessions[key] = session
			self._track(session)
			await self._emit(target, "meet:request", {"from": {"id": initiator, "name": name}, "pairKey": key})
			await self._publish_state(session)
			return session

	async def accept(self, acceptor_id: object, initiator_id: object, coords: Any) -> MeetSession:
		acceptor, initiator = self._ids(acceptor_id, initiator_id)
		acceptor_coords = _coords(coords)
		fallback = await self._last_known(initiator)
		async with self._locks.hold(acceptor, initiator) as key:
			session = self._require(key)
			if session.state != MeetState.REQUESTED or session.target_id != acceptor:
				raise errors.InvalidState()
			session.coords[acceptor] = acceptor_coords
			if initiator not in session.coords and fallback is not None:
				session.coords[initiator] = fallback
			session.touch(MeetState.ACCEPTED, self._clock())
			self._track(session)
			await self._emit(initiator, "meet:accept", {"from": acceptor, "coords": acceptor_coords.to_payload()})
			await self._publish_state(session)
			pending = self._prepare_search(session, self._radius_m)
		if pending is not None:
			await self._run_search(key, *pending)
		return session

	async def share_location(self, user_id: object, other_id: object, coords: Any) -> MeetSession:
		"""Supply the initiator's coordinates when they were not known at accept time."""
		user, other = self._ids(user_id, other_id)
		point = _coords(coords)
		async with self._locks.hold(user, other) as key:
			session = self._require(key)
			if session.state not in (MeetState.REQUESTED, MeetState.ACCEPTED) or user in session.coords:
				raise errors.InvalidState()
			session.coords[user] = point
			session.touch(None, self._clock())
			pending = None
			if session.state == MeetState.ACCEPTED:
				pending = self._prepare_search(session, self._radius_m)
		if pending is not None:
			await self._run_search(key, *pending)
		return session

	async def expand_search(self, user_id: object, other_id: object) -> MeetSession:
		"""Re-query at the wider radius once the first search came back empty."""
		user, other = self._ids(user_id, other_id)
		async with self._locks.hold(user, other) as key:
			session = self._require(key)
			if session.state != MeetState.SUGGESTED or not session.can_expand:
				raise errors.InvalidState()
			session.expanded = True
			session.touch(None, self._clock())
			pending = self._prepare_search(session, self._expand_radius_m)
		if pending is not None:
			await self._run_search(key, *pending)
		return session

	async def propose_place(
		self,
		by_id: object,
		other_id: object,
		venue_id: Optional[object] = None,
	) -> MeetSession:
		"""Pick a listed venue, or the exact midpoint with venue id "midpoint"."""
		by, other = self._ids(by_id, other_id)
		wanted = str(venue_id or "").strip()
		if not wanted:
			raise errors.ValidationError("missing_venue")
		async with self._locks.hold(by, other) as key:
			session = self._require(key)
			if session.state != MeetState.SUGGESTED:
				raise errors.InvalidState()
			venue = self._find_venue(session, wanted)
			session.proposal = venue
			session.proposed_by = by
			session.accepted_by = {by}
			session.touch(MeetState.PLACE_PROPOSED, self._clock())
			self._track(session)
			await self._emit(other, "meet:place:selected", {"from": {"id": by}, "place": venue.to_dict()})
			await self._publish_state(session)
			return session

	async def accept_place(self, by_id: object, other_id: object) -> MeetSession:
		by, other = self._ids(by_id, other_id)
		async with self._locks.hold(by, other) as key:
			session = self._require(key)
			if session.state != MeetState.PLACE_PROPOSED or session.proposed_by == by:
				raise errors.InvalidState()
			session.accepted_by.add(by)
			session.touch(MeetState.CONFIRMED, self._clock())
			self._track(session)
			place = session.proposal.to_dict() if session.proposal is not None else None
			for user in session.participants:
				await self._emit(user, "meet:place:accepted", {"from": {"id": by}, "place": place})
			await self._publish_state(session)
			self._release(key)
			return session

	async def reject_place(self, by_id: object, other_id: object) -> MeetSession:
		by, other = self._ids(by_id, other_id)
		async with self._locks.hold(by, other) as key:
			session = self._require(key)
			if session.state != MeetState.PLACE_PROPOSED or session.proposed_by == by:
				raise errors.InvalidState()
			rejected = session.proposal.to_dict() if session.proposal is not None else None
			session.proposal = None
			session.proposed_by = None
			session.accepted_by = set()
			session.touch(MeetState.SUGGESTED, self._clock())
			self._track(session)
			for user in session.participants:
				await self._emit(user, "meet:place:rejected", {"from": {"id": by}, "place": rejected})
			await self._publish_state(session)
			return session

	async def decline(self, by_id: object, other_id: object) -> Optional[MeetSession]:
		"""Tear the session down. Declining with no live session is a no-op."""
		by, other = self._ids(by_id, other_id)
		async with self._locks.hold(by, other) as key:
			session = self._live_session(key)
			if session is None:
				return None
			session.touch(MeetState.DECLINED, self._clock())
			self._track(session)
			for user in session.participants:
				await self._emit(user, "meet:decline", {"from": {"id": by}, "pairKey": key})
			self._release(key)
			return session

	# Idle timeout

	async def sweep_expired(self, now: Optional[float] = None) -> int:
		"""Drop sessions idle for longer than the timeout and tell both sides. Returns the count."""
		current = self._clock() if now is None else now
		stale = [key for key, session in list(self._sessions.items()) if self._expired(session, current)]
		removed = 0
		for key in stale:
			async with self._locks.hold_key(key):
				session = self._sessions.get(key)
				if session is None or not self._expired(session, current):
					continue
				self._release(key)
				removed += 1
				obs_metrics.inc_meet_state("expired")
				for user in session.participants:
					await self._emit(user, "meet:expired", {"pairKey": key})
		if removed:
			logger.info("meet sessions expired", extra={"count": removed})
		return removed

	def start_sweeper(self, interval_seconds: Optional[float] = None) -> asyncio.Task:
		if self._sweeper is None or self._sweeper.done():
			interval = float(interval_seconds or settings.meet_sweep_interval_seconds)
			self._sweeper = asyncio.create_task(self.run_sweeper(interval), name="meet-sweeper")
		return self._sweeper

	async def run_sweeper(self, interval_seconds: float) -> None:
		interval = max(0.05, float(interval_seconds))
		while True:
			await asyncio.sleep(interval)
			try:
				await self.sweep_expired()
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.exception("meet sweeper iteration failed")

	async def shutdown(self) -> None:
		task = self._sweeper
		self._sweeper = None
		if task is not None:
			task.cancel()
			with suppress(asyncio.CancelledError):
				await task
		self._sessions.clear()
		obs_metrics.meet_active(0)

	# Internals

	def _ids(self, a: object, b: object) -> tuple[str, str]:
		first = normalise_id(a, field="user")
		second = normalise_id(b, field="peer")
		if first == second:
			raise errors.ValidationError("self_target")
		return first, second

	def _expired(self, session: MeetSession, now: float) -> bool:
		return self._idle_timeout > 0 and now - session.updated_at >= self._idle_timeout

	def _live_session(self, key: str) -> Optional[MeetSession]:
		session = self._sessions.get(key)
		if session is None:
			return None
		if session.state in TERMINAL_STATES or self._expired(session, self._clock()):
			self._release(key)
			return None
		return session

	def _require(self, key: str) -> MeetSession:
		session = self._live_session(key)
		if session is None:
			raise errors.NotFoundError("meet_not_found")
		return session

	def _release(self, key: str) -> None:
		self._sessions.pop(key, None)
		obs_metrics.meet_active(len(self._sessions))

	def _track(self, session: MeetSession) -> None:
		obs_metrics.inc_meet_state(session.state.value)
		obs_metrics.meet_active(len(self._sessions))

	def _find_venue(self, session: MeetSession, venue_id: str) -> Venue:
		if venue_id == MIDPOINT_VENUE_ID and session.midpoint is not None:
			return midpoint_venue(session.midpoint)
		for venue in session.venues:
			if venue.id == venue_id:
				return venue
		raise errors.ValidationError("unknown_venue")

	def _prepare_search(self, session: MeetSession, radius_m: int) -> Optional[tuple[int, Coordinates, int]]:
		"""Fix the midpoint when both sides have coordinates; returns what the search needs."""
		if len(session.coords) < 2:
			return None
		first, second = (session.coords[user] for user in session.participants)
		session.midpoint = compute_midpoint(first, second)
		return session.version, session.midpoint, radius_m

	async def _run_search(self, key: str, version: int, point: Coordinates, radius_m: int) -> None:
		venues: List[Venue] = []
		upstream_error = False
		try:
			venues = await self._venues.find_venues(point, radius_m)
		except errors.UpstreamUnavailable:
			upstream_error = True
		async with self._locks.hold_key(key):
			session = self._sessions.get(key)
			if session is None or session.version != version:
				# Declined, expired or moved on while the search ran.
				return
			session.venues = list(venues)
			session.radius_m = radius_m
			session.upstream_error = upstream_error
			session.touch(MeetState.SUGGESTED, self._clock())
			self._track(session)
			payload = session.snapshot()
			for user in session.participants:
				await self._emit(user, "meet:suggest", payload)

	async def _publish_state(self, session: MeetSession) -> None:
		payload = session.snapshot()
		for user in session.participants:
			await self._emit(user, "meet:state", payload)

	async def _emit(self, user_id: str, event: str, payload: Mapping[str, Any]) -> None:
		try:
			await self._router.send_to_user(user_id, event, payload)
		except Exception:
			logger.warning("meet emit failed", extra={"event": event}, exc_info=True)

	async def _last_known(self, user_id: str) -> Optional[Coordinates]:
		if self._directory is None:
			return None
		user = await self._directory.get(user_id)
		return user.location if user is not None else None

	async def _name(self, user_id: str) -> Optional[str]:
		if self._directory is None:
			return None
		user = await self._directory.get(user_id)
		return user.name if user is not None else None
