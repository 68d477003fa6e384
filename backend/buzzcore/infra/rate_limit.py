"""Per-user request budgets counted in Redis fixed windows.

Each guarded action has a `RateKind`; its per-minute budget is read from settings
on every check so operators can tune it without a restart of the counters.
"""

from __future__ import annotations

import math
import time
from enum import Enum
from typing import Optional

from buzzcore.domain.common.errors import RateLimitExceeded
from buzzcore.infra.redis import redis_client
from buzzcore.obs import metrics as obs_metrics
from buzzcore.settings import settings

WINDOW_SECONDS = 60


class RateKind(str, Enum):
	DISCOVER = "discover"
	LIVE_MESSAGE = "live_message"
	LIVE_MEET = "live_meet"

	def budget(self) -> int:
		if self is RateKind.DISCOVER:
			return settings.discovery_rate_limit_per_minute
		if self is RateKind.LIVE_MESSAGE:
			return settings.live_messages_per_minute
		return settings.live_meet_requests_per_minute


def window_key(kind: RateKind, actor_id: str, now: float, window_seconds: int = WINDOW_SECONDS) -> str:
	window = max(1, int(window_seconds))
	slot = int(math.floor(now / window))
	return f"rl:{kind.value}:{actor_id}:{slot}:{window}"


async def allow(
	kind: RateKind,
	actor_id: str,
	*,
	limit: Optional[int] = None,
	window_seconds: int = WINDOW_SECONDS,
	now: Optional[float] = None,
) -> bool:
	"""Count one hit for `actor_id`; True while the window's count stays within budget."""
	budget = kind.budget() if limit is None else limit
	if budget <= 0:
		return False
	window = max(1, int(window_seconds))
	key = window_key(kind, actor_id, now or time.time(), window)
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window)
		count, _ = await pipe.execute()
	return int(count) <= budget


async def enforce(kind: RateKind, actor_id: str, *, now: Optional[float] = None) -> None:
	"""Count one hit and raise RateLimitExceeded once the budget is spent."""
	if not await allow(kind, actor_id, now=now):
		obs_metrics.inc_rate_limited(kind.value)
		raise RateLimitExceeded()
