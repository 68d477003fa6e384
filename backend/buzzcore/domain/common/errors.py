"""Error taxonomy shared by discovery, relationships, live routing and meet negotiation."""

from __future__ import annotations

from typing import Optional


class CoreError(Exception):
	"""Base class for domain errors surfaced to callers."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class ValidationError(CoreError):
	"""Missing or malformed ids or coordinates; nothing was changed."""

	reason = "invalid"


class ConflictError(CoreError):
	reason = "conflict"


class AlreadyLiked(ConflictError):
	reason = "already_liked"


class AlreadyMatched(ConflictError):
	reason = "already_matched"


class NotMatched(ConflictError):
	reason = "not_matched"


class Blocked(ConflictError):
	reason = "blocked"


class MeetInProgress(ConflictError):
	reason = "meet_in_progress"


class InvalidState(ConflictError):
	reason = "invalid_state"


class CooldownError(CoreError):
	reason = "cooldown"

	def __init__(self, retry_after_ms: int, reason: Optional[str] = None) -> None:
		super().__init__(reason)
		self.retry_after_ms = max(0, int(retry_after_ms))


class NotFoundError(CoreError):
	reason = "not_found"


class UpstreamUnavailable(CoreError):
	reason = "upstream_unavailable"


class RateLimitExceeded(CoreError):
	reason = "rate_limited"
