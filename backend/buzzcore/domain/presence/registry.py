"""Who is online: one live connection handle per user."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from buzzcore.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

PresenceListener = Callable[[str, bool], Awaitable[None]]


class PresenceRegistry(Protocol):
	async def register(self, user_id: str, handle: str) -> Optional[str]:
		...

	async def unregister(self, handle: str) -> Optional[str]:
		...

	def lookup(self, user_id: str) -> Optional[str]:
		...

	def is_online(self, user_id: str) -> bool:
		...

	def user_for(self, handle: str) -> Optional[str]:
		...


class InMemoryPresenceRegistry:
	"""Last registration wins; older handles for the same user are forgotten.

	Mutations never await between read and write, so concurrent connects and
	disconnects for different users need no shared lock.
	"""

	def __init__(self) -> None:
		self._by_user: Dict[str, str] = {}
		self._by_handle: Dict[str, str] = {}
		self._listeners: List[PresenceListener] = []

	def add_listener(self, listener: PresenceListener) -> None:
		self._listeners.append(listener)

	async def register(self, user_id: str, handle: str) -> Optional[str]:
		"""Bind `user_id` to `handle`; returns the handle it replaced, if any."""
		previous_user = self._by_handle.get(handle)
		if previous_user is not None and previous_user != user_id:
			# The connection re-identified as someone else.
			if self._by_user.get(previous_user) == handle:
				del self._by_user[previous_user]
		previous = self._by_user.get(user_id)
		self._by_user[user_id] = handle
		self._by_handle[handle] = user_id
		if previous is not None and previous != handle:
			self._by_handle.pop(previous, None)
		obs_metrics.presence_online(len(self._by_user))
		if previous_user is not None and previous_user != user_id and previous_user not in self._by_user:
			await self._broadcast(previous_user, False)
		await self._broadcast(user_id, True)
		return previous if previous != handle else None

	async def unregister(self, handle: str) -> Optional[str]:
		"""Forget `handle`; returns the user that went offline, or None if it was stale."""
		user_id = self._by_handle.pop(handle, None)
		if user_id is None:
			return None
		if self._by_user.get(user_id) != handle:
			return None
		del self._by_user[user_id]
		obs_metrics.presence_online(len(self._by_user))
		await self._broadcast(user_id, False)
		return user_id

	def lookup(self, user_id: str) -> Optional[str]:
		return self._by_user.get(user_id)

	def is_online(self, user_id: str) -> bool:
		return user_id in self._by_user

	def user_for(self, handle: str) -> Optional[str]:
		user_id = self._by_handle.get(handle)
		if user_id is not None and self._by_user.get(user_id) == handle:
			return user_id
		return None

	def online_users(self) -> List[str]:
		return list(self._by_user)

	def __len__(self) -> int:
		return len(self._by_user)

	async def _broadcast(self, user_id: str, online: bool) -> None:
		for listener in list(self._listeners):
			try:
				await listener(user_id, online)
			except Exception:
				logger.warning("presence listener failed", extra={"online": online}, exc_info=True)
