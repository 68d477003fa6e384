"""Candidate discovery: radius-fallback pooling and hybrid ranking."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Optional, Sequence

from buzzcore.domain.common.errors import NotFoundError
from buzzcore.domain.common.pairs import normalise_id
from buzzcore.domain.directory.models import BoundingBox, CandidateFilter, Coordinates, UserSnapshot
from buzzcore.domain.directory.repo import UserDirectory
from buzzcore.domain.discovery.schemas import (
	RESTRICTED_VIBES,
	DiscoveryCard,
	DiscoveryFilters,
	DiscoveryResponse,
)
from buzzcore.domain.geo import scoring
from buzzcore.domain.relationships.repo import RelationshipStore
from buzzcore.obs import metrics as obs_metrics
from buzzcore.settings import settings

logger = logging.getLogger(__name__)


def _to_card(item: scoring.ScoredCandidate, now: float) -> DiscoveryCard:
	profile = item.user.public_profile()
	return DiscoveryCard(
		**profile,
		distance=scoring.distance_text(item.distance_km),
		activity=scoring.activity_bucket(item.user.last_active_at, now),
		score=item.score,
	)


class CandidateDiscoveryEngine:
	def __init__(
		self,
		directory: UserDirectory,
		relationships: RelationshipStore,
		*,
		default_radius_km: Optional[float] = None,
		radius_tiers_km: Optional[Sequence[float]] = None,
		default_coords: Optional[Coordinates] = None,
		max_results: Optional[int] = None,
		clock: Callable[[], float] = time.time,
	) -> None:
		self._directory = directory
		self._relationships = relationships
		self._default_radius_km = float(default_radius_km or settings.discovery_default_radius_km)
		self._tiers = tuple(radius_tiers_km if radius_tiers_km is not None else settings.discovery_radius_tiers_km)
		self._default_coords = default_coords or Coordinates(
			lat=settings.discovery_default_lat, lon=settings.discovery_default_lon
		)
		self._max_results = int(max_results or settings.discovery_max_results)
		self._clock = clock

	async def discover(
		self,
		requester_id: str,
		filters: Optional[DiscoveryFilters] = None,
		coords_override: Optional[Coordinates] = None,
	) -> DiscoveryResponse:
		started = time.perf_counter()
		filters = filters or DiscoveryFilters()
		me_id = normalise_id(requester_id, field="user")
		requester = await self._directory.get(me_id)
		if requester is None:
			raise NotFoundError("user_not_found")

		now = self._clock()
		origin = self._resolve_origin(requester, filters, coords_override)
		await self._directory.update(me_id, {"location": origin, "last_active_at": now})
		requester.location = origin

		query = await self._candidate_filter(requester, filters, now)

		requested_km = float(filters.radius_km or self._default_radius_km)
		used_km: Optional[float] = requested_km
		pool: list = []
		for tier in scoring.radius_tiers(requested_km, self._tiers):
			used_km = tier
			within = BoundingBox.around(origin, tier) if tier is not None else None
			candidates = await self._directory.find_candidates(replace(query, within=within))
			pool = scoring.pool_within(origin, candidates, tier)
			if pool:
				break

		ranked = scoring.rank(requester, pool, now=now)
		limit = min(filters.limit or self._max_results, self._max_results)
		items = [_to_card(item, now) for item in ranked[:limit]]
		tier_label = "global" if used_km is None else f"{used_km:g}"
		obs_metrics.inc_discovery_query(tier_label, len(items))
		obs_metrics.observe_discovery(time.perf_counter() - started)
		if used_km != requested_km:
			logger.info("discovery radius widened", extra={"requested_km": requested_km, "tier": tier_label})
		return DiscoveryResponse(
			items=items,
			count=len(items),
			radius_km=used_km,
			expanded=used_km != requested_km,
		)

	def _resolve_origin(
		self,
		requester: UserSnapshot,
		filters: DiscoveryFilters,
		override: Optional[Coordinates],
	) -> Coordinates:
		if override is not None:
			return override
		if filters.lat is not None and filters.lng is not None:
			return Coordinates.parse(filters.lat, filters.lng)
		if requester.location is not None:
			return requester.location
		return self._default_coords

	async def _candidate_filter(self, requester: UserSnapshot, filters: DiscoveryFilters, now: float) -> CandidateFilter:
		exclude = {requester.id}
		exclude |= await self._relationships.liked_ids(requester.id)
		exclude |= await self._relationships.blocked_ids(requester.id)
		vibe = (filters.vibe or "").strip().lower() or None
		if vibe in RESTRICTED_VIBES and not requester.verified:
			vibe = None
		active_since = None
		if filters.online == "active":
			active_since = now - scoring.ACTIVE_WINDOW_SECONDS
		elif filters.online == "recent":
			active_since = now - scoring.RECENT_WINDOW_SECONDS
		return CandidateFilter(
			gender=filters.gender or None,
			intent=filters.intent or None,
			vibe=vibe,
			verified=True if filters.verified else None,
			zodiac=filters.zodiac or None,
			love_language=filters.love or None,
			interest=filters.interest or None,
			active_since=active_since,
			exclude=frozenset(exclude),
		)
