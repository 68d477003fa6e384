"""Pure geo helpers: distance, radius tiers and the hybrid ranking score."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from buzzcore.domain.directory.models import EARTH_RADIUS_KM, Coordinates, UserSnapshot

KM_PER_MILE = 1.609344

PROXIMITY_WEIGHT = 0.5
PROXIMITY_CAP_KM = 100.0
INTENT_BONUS = 0.2
VIBE_BONUS = 0.1
INTEREST_BONUS = 0.05
INTEREST_BONUS_CAP = 0.15
HOBBY_BONUS = 0.03
HOBBY_BONUS_CAP = 0.09
ACTIVE_BONUS = 0.1
RECENT_BONUS = 0.05
VERIFIED_BONUS = 0.05

ACTIVE_WINDOW_SECONDS = 5 * 60
RECENT_WINDOW_SECONDS = 60 * 60


def haversine_km(a: Coordinates, b: Coordinates) -> float:
	lat1, lon1 = math.radians(a.lat), math.radians(a.lon)
	lat2, lon2 = math.radians(b.lat), math.radians(b.lon)
	dlat = lat2 - lat1
	dlon = lon2 - lon1
	h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
	return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def midpoint(a: Coordinates, b: Coordinates) -> Coordinates:
	"""Arithmetic mean of the two coordinate pairs."""
	return Coordinates(lat=(a.lat + b.lat) / 2, lon=(a.lon + b.lon) / 2)


def distance_text(distance_km: Optional[float]) -> Optional[str]:
	"""Whole miles, never below 1."""
	if distance_km is None:
		return None
	miles = max(1, int(round(distance_km / KM_PER_MILE)))
	return f"{miles} mile away" if miles == 1 else f"{miles} miles away"


def radius_tiers(requested_km: float, tiers_km: Iterable[float]) -> List[Optional[float]]:
	"""Requested radius, then every configured tier strictly larger, then None (global)."""
	plan: List[Optional[float]] = [requested_km]
	plan.extend(tier for tier in sorted(set(tiers_km)) if tier > requested_km)
	plan.append(None)
	return plan


def activity_bucket(last_active_at: Optional[float], now: float) -> Optional[str]:
	if last_active_at is None:
		return None
	age = now - last_active_at
	if age < ACTIVE_WINDOW_SECONDS:
		return "active"
	if age < RECENT_WINDOW_SECONDS:
		return "recent"
	return None


def _overlap(left: Sequence[str], right: Sequence[str]) -> int:
	return len({item.lower() for item in left} & {item.lower() for item in right})


def _same(left: Optional[str], right: Optional[str]) -> bool:
	return bool(left) and bool(right) and str(left).lower() == str(right).lower()


def hybrid_score(
	requester: UserSnapshot,
	candidate: UserSnapshot,
	distance_km: Optional[float],
	*,
	now: float,
) -> float:
	score = 0.0
	if distance_km is not None:
		score += PROXIMITY_WEIGHT * max(0.0, 1.0 - distance_km / PROXIMITY_CAP_KM)
	if _same(requester.intent, candidate.intent):
		score += INTENT_BONUS
	if _same(requester.vibe, candidate.vibe):
		score += VIBE_BONUS
	score += min(INTEREST_BONUS_CAP, INTEREST_BONUS * _overlap(requester.interests, candidate.interests))
	score += min(HOBBY_BONUS_CAP, HOBBY_BONUS * _overlap(requester.hobbies, candidate.hobbies))
	bucket = activity_bucket(candidate.last_active_at, now)
	if bucket == "active":
		score += ACTIVE_BONUS
	elif bucket == "recent":
		score += RECENT_BONUS
	if candidate.verified:
		score += VERIFIED_BONUS
	return round(score, 6)


@dataclass(slots=True)
class ScoredCandidate:
	user: UserSnapshot
	distance_km: Optional[float]
	score: float


def pool_within(
	origin: Coordinates,
	candidates: Iterable[UserSnapshot],
	radius_km: Optional[float],
) -> List[Tuple[UserSnapshot, Optional[float]]]:
	"""Candidates inside `radius_km`; with no radius every candidate qualifies.

	Candidates without a stored location only qualify for the global tier.
	"""
	pooled: List[Tuple[UserSnapshot, Optional[float]]] = []
	for user in candidates:
		distance = haversine_km(origin, user.location) if user.location is not None else None
		if radius_km is None:
			pooled.append((user, distance))
		elif distance is not None and distance <= radius_km:
			pooled.append((user, distance))
	return pooled


def rank(
	requester: UserSnapshot,
	pool: Iterable[Tuple[UserSnapshot, Optional[float]]],
	*,
	now: float,
) -> List[ScoredCandidate]:
	"""Score descending, then distance ascending (unknown last), then most recently active."""
	scored = [
		ScoredCandidate(user=user, distance_km=distance, score=hybrid_score(requester, user, distance, now=now))
		for user, distance in pool
	]
	scored.sort(
		key=lambda item: (
			-item.score,
			item.distance_km is None,
			item.distance_km if item.distance_km is not None else 0.0,
			-(item.user.last_active_at or 0.0),
		)
	)
	return scored
