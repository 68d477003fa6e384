"""Pair-scoped asyncio locks.

One lock per unordered pair of users. Locks are created on first use and dropped
once no task holds or waits on them, so idle pairs cost nothing.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from buzzcore.domain.common.pairs import pair_key


class _Entry:
	__slots__ = ("lock", "users")

	def __init__(self) -> None:
		self.lock = asyncio.Lock()
		self.users = 0


class PairLocks:
	"""Mutual exclusion per unordered pair; different pairs never contend."""

	def __init__(self, scope: str = "pair") -> None:
		self.scope = scope
		self._entries: Dict[str, _Entry] = {}

	@asynccontextmanager
	async def hold(self, a: str, b: str) -> AsyncIterator[str]:
		key = pair_key(a, b)
		async with self.hold_key(key):
			yield key

	@asynccontextmanager
	async def hold_key(self, key: str) -> AsyncIterator[None]:
		entry = self._entries.get(key)
		if entry is None:
			entry = _Entry()
			self._entries[key] = entry
		entry.users += 1
		try:
			async with entry.lock:
				yield
		finally:
			entry.users -= 1
			if entry.users == 0 and self._entries.get(key) is entry:
				del self._entries[key]

	def __len__(self) -> int:
		return len(self._entries)
