"""Shared primitives: errors and pair keys."""

from .errors import (  # noqa: F401
	AlreadyLiked,
	AlreadyMatched,
	Blocked,
	ConflictError,
	CooldownError,
	CoreError,
	InvalidState,
	MeetInProgress,
	NotFoundError,
	NotMatched,
	RateLimitExceeded,
	UpstreamUnavailable,
	ValidationError,
)
from .pairs import normalise_id, ordered_pair, pair_key, peer_of, split_pair  # noqa: F401
