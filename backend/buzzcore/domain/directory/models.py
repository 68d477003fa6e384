"""User records as seen by the matching core."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from buzzcore.domain.common.errors import ValidationError

EARTH_RADIUS_KM = 6371.0


class VisibilityMode(str, Enum):
	AUTO = "auto"
	LIMITED = "limited"
	FULL = "full"
	HIDDEN = "hidden"


@dataclass(frozen=True, slots=True)
class Coordinates:
	lat: float
	lon: float

	@classmethod
	def parse(cls, lat: Any, lon: Any) -> "Coordinates":
		"""Validate a latitude/longitude pair; never defaults missing values to 0,0."""
		if lat is None or lon is None or isinstance(lat, bool) or isinstance(lon, bool):
			raise ValidationError("invalid_coordinates")
		try:
			lat_f = float(lat)
			lon_f = float(lon)
		except (TypeError, ValueError):
			raise ValidationError("invalid_coordinates") from None
		if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
			raise ValidationError("invalid_coordinates")
		if not (-90.0 <= lat_f <= 90.0) or not (-180.0 <= lon_f <= 180.0):
			raise ValidationError("invalid_coordinates")
		return cls(lat=lat_f, lon=lon_f)

	@classmethod
	def from_payload(cls, payload: Any) -> "Coordinates":
		"""Accept {lat, lng} / {lat, lon} / {latitude, longitude} mappings."""
		if not isinstance(payload, Mapping):
			raise ValidationError("invalid_coordinates")
		lat = payload.get("lat", payload.get("latitude"))
		lon = payload.get("lng", payload.get("lon", payload.get("longitude")))
		return cls.parse(lat, lon)

	def as_tuple(self) -> Tuple[float, float]:
		return (self.lat, self.lon)

	def to_payload(self) -> dict[str, float]:
		return {"lat": self.lat, "lng": self.lon}


@dataclass(frozen=True, slots=True)
class BoundingBox:
	"""Lat/lon rectangle enclosing a circle; `min_lon`/`max_lon` are None when it wraps."""

	min_lat: float
	max_lat: float
	min_lon: Optional[float] = None
	max_lon: Optional[float] = None

	@classmethod
	def around(cls, center: Coordinates, radius_km: float) -> "BoundingBox":
		angular = radius_km / EARTH_RADIUS_KM
		delta_lat = math.degrees(angular)
		min_lat = max(-90.0, center.lat - delta_lat)
		max_lat = min(90.0, center.lat + delta_lat)
		if min_lat <= -90.0 or max_lat >= 90.0:
			return cls(min_lat=min_lat, max_lat=max_lat)
		spread = math.sin(angular) / math.cos(math.radians(center.lat))
		if spread >= 1.0:
			return cls(min_lat=min_lat, max_lat=max_lat)
		delta_lon = math.degrees(math.asin(spread))
		min_lon = center.lon - delta_lon
		max_lon = center.lon + delta_lon
		if min_lon < -180.0 or max_lon > 180.0:
			return cls(min_lat=min_lat, max_lat=max_lat)
		return cls(min_lat=min_lat, max_lat=max_lat, min_lon=min_lon, max_lon=max_lon)

	def contains(self, point: Coordinates) -> bool:
		if not self.min_lat <= point.lat <= self.max_lat:
			return False
		if self.min_lon is None or self.max_lon is None:
			return True
		return self.min_lon <= point.lon <= self.max_lon


@dataclass(slots=True)
class UserSnapshot:
	"""Discovery-relevant fields of a user record."""

	id: str
	name: str = ""
	age: Optional[int] = None
	gender: Optional[str] = None
	bio: Optional[str] = None
	avatar_url: Optional[str] = None
	location: Optional[Coordinates] = None
	last_active_at: Optional[float] = None
	interests: tuple[str, ...] = ()
	hobbies: tuple[str, ...] = ()
	intent: Optional[str] = None
	vibe: Optional[str] = None
	zodiac: Optional[str] = None
	love_language: Optional[str] = None
	visibility: VisibilityMode = VisibilityMode.AUTO
	verified: bool = False
	extra: dict[str, Any] = field(default_factory=dict)

	@property
	def is_hidden(self) -> bool:
		return self.visibility == VisibilityMode.HIDDEN

	def public_profile(self) -> dict[str, Any]:
		"""Sanitized fields safe to hand to another user. Never includes coordinates."""
		return {
			"id": self.id,
			"name": self.name,
			"age": self.age,
			"gender": self.gender,
			"bio": self.bio,
			"avatar_url": self.avatar_url,
			"interests": list(self.interests),
			"hobbies": list(self.hobbies),
			"intent": self.intent,
			"vibe": self.vibe,
			"zodiac": self.zodiac,
			"love_language": self.love_language,
			"verified": self.verified,
		}


# Fields UserDirectory.update accepts.
UPDATABLE_FIELDS = frozenset(
	{
		"location",
		"last_active_at",
		"visibility",
		"interests",
		"hobbies",
		"intent",
		"vibe",
		"verified",
	}
)


@dataclass(slots=True)
class CandidateFilter:
	"""Structural filters pushed down to the directory.

	Unset fields do not constrain the result. `exclude` ids are never returned.
	`within` drops users located outside the box and users with no location.
	"""

	gender: Optional[str] = None
	intent: Optional[str] = None
	vibe: Optional[str] = None
	verified: Optional[bool] = None
	zodiac: Optional[str] = None
	love_language: Optional[str] = None
	interest: Optional[str] = None
	active_since: Optional[float] = None
	within: Optional[BoundingBox] = None
	exclude: frozenset[str] = frozenset()

	def matches(self, user: UserSnapshot) -> bool:
		if user.id in self.exclude or user.is_hidden:
			return False
		for wanted, actual in (
			(self.gender, user.gender),
			(self.intent, user.intent),
			(self.vibe, user.vibe),
			(self.zodiac, user.zodiac),
			(self.love_language, user.love_language),
		):
			if wanted and (actual or "").lower() != wanted.lower():
				return False
		if self.verified is not None and user.verified != self.verified:
			return False
		if self.interest and self.interest.lower() not in {item.lower() for item in user.interests}:
			return False
		if self.within is not None and (user.location is None or not self.within.contains(user.location)):
			return False
		if self.active_since is not None and (user.last_active_at or 0.0) < self.active_since:
			return False
		return True
