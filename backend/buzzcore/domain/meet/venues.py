"""Venue search near a midpoint using the OpenStreetMap Overpass API."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Protocol

import httpx

from buzzcore.domain.common.errors import UpstreamUnavailable, ValidationError
from buzzcore.domain.directory.models import Coordinates
from buzzcore.domain.meet.models import Venue
from buzzcore.obs import metrics as obs_metrics
from buzzcore.settings import settings

logger = logging.getLogger(__name__)

VENUE_TAGS = (
	("amenity", "cafe"),
	("amenity", "restaurant"),
	("leisure", "park"),
	("amenity", "cinema"),
)


class VenueSearch(Protocol):
	async def find_venues(self, midpoint: Coordinates, radius_m: int) -> List[Venue]:
		"""Raises UpstreamUnavailable when the search could not be answered."""
		...


def build_overpass_query(midpoint: Coordinates, radius_m: int) -> str:
	around = f"(around:{int(radius_m)},{midpoint.lat},{midpoint.lon})"
	selectors = "\n".join(f'  node["{key}"="{value}"]{around};' for key, value in VENUE_TAGS)
	return f"[out:json][timeout:25];\n(\n{selectors}\n);\nout center;"


def normalise_element(element: Mapping[str, Any]) -> Optional[Venue]:
	"""Overpass element → Venue; elements without usable coordinates are skipped."""
	lat = element.get("lat")
	lon = element.get("lon")
	if lat is None or lon is None:
		center = element.get("center") or {}
		lat, lon = center.get("lat"), center.get("lon")
	try:
		coords = Coordinates.parse(lat, lon)
	except ValidationError:
		return None
	tags = element.get("tags") or {}
	category = tags.get("amenity") or tags.get("leisure") or "venue"
	osm_id = element.get("id")
	name = tags.get("name") or tags.get("brand") or f"{category.title()} #{osm_id}"
	street = " ".join(part for part in (tags.get("addr:housenumber"), tags.get("addr:street")) if part)
	address = tags.get("addr:full") or ", ".join(part for part in (street, tags.get("addr:city")) if part) or "Unknown"
	return Venue(
		id=f"{element.get('type', 'node')}{osm_id}",
		name=str(name),
		category=str(category),
		coords=coords,
		address=str(address),
	)


@dataclass
class OverpassVenueSearch:
	"""VenueSearch over HTTP. Empty results are returned as an empty list, never a placeholder."""

	http: httpx.AsyncClient
	url: str = field(default_factory=lambda: settings.venue_search_url)
	limit: int = field(default_factory=lambda: settings.meet_venue_limit)
	timeout: float = field(default_factory=lambda: settings.venue_search_timeout_seconds)

	async def find_venues(self, midpoint: Coordinates, radius_m: int) -> List[Venue]:
		query = build_overpass_query(midpoint, radius_m)
		started = time.perf_counter()
		try:
			response = await self.http.post(self.url, data={"data": query}, timeout=self.timeout)
			response.raise_for_status()
			body = response.json()
		except (httpx.HTTPError, ValueError) as exc:
			obs_metrics.observe_venue_search("error", time.perf_counter() - started)
			logger.warning("venue search failed", extra={"error": type(exc).__name__, "radius_m": radius_m})
			raise UpstreamUnavailable() from exc
		elements = body.get("elements") if isinstance(body, Mapping) else None
		if not isinstance(elements, list):
			obs_metrics.observe_venue_search("error", time.perf_counter() - started)
			raise UpstreamUnavailable("bad_payload")
		venues: List[Venue] = []
		for element in elements:
			if not isinstance(element, Mapping):
				continue
			venue = normalise_element(element)
			if venue is not None:
				venues.append(venue)
			if len(venues) >= self.limit:
				break
		obs_metrics.observe_venue_search("ok" if venues else "empty", time.perf_counter() - started)
		return venues


class StaticVenueSearch:
	"""Returns a fixed list; for tests and offline development."""

	def __init__(self, venues: Optional[List[Venue]] = None, *, fail: bool = False) -> None:
		self.venues = list(venues or [])
		self.fail = fail
		self.calls: List[tuple[Coordinates, int]] = []

	async def find_venues(self, midpoint: Coordinates, radius_m: int) -> List[Venue]:
		self.calls.append((midpoint, radius_m))
		if self.fail:
			raise UpstreamUnavailable()
		return list(self.venues)
