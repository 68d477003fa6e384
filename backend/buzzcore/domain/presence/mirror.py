"""Redis mirror of the presence registry for other workers and HTTP reads."""

from __future__ import annotations

from typing import Optional

from buzzcore.infra.redis import redis_client
from buzzcore.obs import metrics as obs_metrics
from buzzcore.settings import settings


def _online_key(user_id: str) -> str:
	return f"online:user:{user_id}"


class RedisPresenceMirror:
	"""Presence listener writing `online:user:<id>` keys with a TTL."""

	def __init__(self, ttl_seconds: Optional[int] = None) -> None:
		self._ttl = int(ttl_seconds or settings.presence_mirror_ttl_seconds)

	async def __call__(self, user_id: str, online: bool) -> None:
		try:
			if online:
				await redis_client.set(_online_key(user_id), "1", ex=self._ttl)
			else:
				await redis_client.delete(_online_key(user_id))
		except Exception:
			obs_metrics.mark_redis(False)
			raise
		obs_metrics.mark_redis(True)

	async def is_online(self, user_id: str) -> bool:
		return bool(await redis_client.exists(_online_key(user_id)))
