"""Like/block edges, matches and match streaks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from buzzcore.domain.common.pairs import ordered_pair, pair_key


class EdgeType(str, Enum):
	LIKE = "like"
	BLOCK = "block"


class LikeWrite(str, Enum):
	"""Outcome of a conditional like insert."""

	CREATED = "created"
	DUPLICATE = "duplicate"
	MATCHED = "matched"


@dataclass(frozen=True, slots=True)
class RelationshipEdge:
	from_id: str
	to_id: str
	type: EdgeType
	created_at: float


@dataclass(frozen=True, slots=True)
class Match:
	id: str
	user_a: str
	user_b: str
	created_at: float

	@classmethod
	def for_pair(cls, match_id: str, a: str, b: str, created_at: float) -> "Match":
		first, second = ordered_pair(a, b)
		return cls(id=match_id, user_a=first, user_b=second, created_at=created_at)

	@property
	def users(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)

	@property
	def key(self) -> str:
		return pair_key(self.user_a, self.user_b)

	def peer_of(self, user_id: str) -> str:
		return self.user_b if user_id == self.user_a else self.user_a


@dataclass(slots=True)
class MatchStreak:
	"""Directional buzz counter keyed `from_to`."""

	from_id: str
	to_id: str
	count: int = 0
	last_buzz_at: Optional[float] = None

	@property
	def key(self) -> str:
		return f"{self.from_id}_{self.to_id}"

	def to_dict(self) -> dict[str, Any]:
		return {
			"from": self.from_id,
			"to": self.to_id,
			"count": self.count,
			"lastBuzzAt": self.last_buzz_at,
		}


@dataclass(frozen=True, slots=True)
class LikeResult:
	matched: bool
	match_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class BuzzResult:
	streak: int
	milestone: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True, slots=True)
class LikeStatus:
	liked_by_me: bool
	liked_me: bool
	matched: bool

	def to_dict(self) -> dict[str, bool]:
		return {"likedByMe": self.liked_by_me, "likedMe": self.liked_me, "matched": self.matched}


@dataclass(frozen=True, slots=True)
class SocialStats:
	liked_count: int
	liked_you_count: int
	match_count: int

	def to_dict(self) -> dict[str, int]:
		return {
			"likedCount": self.liked_count,
			"likedYouCount": self.liked_you_count,
			"matchCount": self.match_count,
		}


# Streak counts that unlock a reward; awarding them is left to callers.
STREAK_MILESTONES: Mapping[int, str] = {
	1: "confetti",
	3: "avatar_glow",
	7: "discover_boost",
	14: "buzz_champion_badge",
	30: "loyal_heart_title",
	50: "premium_trial",
}


def milestone_for(count: int) -> Optional[dict[str, Any]]:
	reward = STREAK_MILESTONES.get(count)
	if reward is None:
		return None
	return {"count": count, "reward": reward}
