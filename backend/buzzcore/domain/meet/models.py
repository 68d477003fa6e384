"""Meet-in-the-middle session state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from buzzcore.domain.common.pairs import pair_key
from buzzcore.domain.directory.models import Coordinates


class MeetState(str, Enum):
	IDLE = "idle"
	REQUESTED = "requested"
	ACCEPTED = "accepted"
	SUGGESTED = "suggested"
	PLACE_PROPOSED = "place_proposed"
	CONFIRMED = "confirmed"
	DECLINED = "declined"


TERMINAL_STATES = frozenset({MeetState.CONFIRMED, MeetState.DECLINED})


@dataclass(frozen=True, slots=True)
class Venue:
	id: str
	name: str
	category: str
	coords: Coordinates
	address: str

	def to_dict(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"name": self.name,
			"category": self.category,
			"coords": self.coords.to_payload(),
			"address": self.address,
		}


@dataclass(slots=True)
class MeetSession:
	requester_id: str
	target_id: str
	state: MeetState = MeetState.IDLE
	coords: Dict[str, Coordinates] = field(default_factory=dict)
	midpoint: Optional[Coordinates] = None
	venues: List[Venue] = field(default_factory=list)
	radius_m: int = 0
	expanded: bool = False
	upstream_error: bool = False
	proposal: Optional[Venue] = None
	proposed_by: Optional[str] = None
	accepted_by: set[str] = field(default_factory=set)
	updated_at: float = 0.0
	# Bumped on every transition; used to drop stale venue-search results.
	version: int = 0

	@property
	def key(self) -> str:
		return pair_key(self.requester_id, self.target_id)

	@property
	def participants(self) -> tuple[str, str]:
		return (self.requester_id, self.target_id)

	@property
	def can_expand(self) -> bool:
		return not self.venues and not self.expanded

	def other(self, user_id: str) -> str:
		return self.target_id if user_id == self.requester_id else self.requester_id

	def touch(self, state: Optional[MeetState], now: float) -> None:
		if state is not None:
			self.state = state
		self.updated_at = now
		self.version += 1

	def snapshot(self) -> dict[str, Any]:
		"""What both participants see after every transition."""
		payload: dict[str, Any] = {
			"pairKey": self.key,
			"state": self.state.value,
			"requesterId": self.requester_id,
			"targetId": self.target_id,
		}
		if self.midpoint is not None:
			payload["midpoint"] = self.midpoint.to_payload()
		if self.state in (MeetState.SUGGESTED, MeetState.PLACE_PROPOSED, MeetState.CONFIRMED):
			payload["places"] = [venue.to_dict() for venue in self.venues]
			payload["radiusMeters"] = self.radius_m
			payload["canExpand"] = self.can_expand
			payload["upstreamError"] = self.upstream_error
		if self.proposal is not None:
			payload["place"] = self.proposal.to_dict()
			payload["proposedBy"] = self.proposed_by
		return payload
