"""Two-party event relay on top of the presence registry."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Set

from buzzcore.domain.common import errors
from buzzcore.domain.common.pairs import normalise_id, peer_of
from buzzcore.domain.live.transport import Transport
from buzzcore.domain.presence.registry import PresenceRegistry
from buzzcore.infra.pair_lock import PairLocks
from buzzcore.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class SessionRouter:
	"""Resolves the other member of a pair and hands the event to their live connection.

	A peer that is not online is a normal outcome: the event is dropped and
	`relay` returns False. Sends for one pair are serialized so the peer sees them
	in emission order.
	"""

	def __init__(
		self,
		presence: PresenceRegistry,
		transport: Transport,
		*,
		locks: Optional[PairLocks] = None,
	) -> None:
		self._presence = presence
		self._transport = transport
		self._locks = locks or PairLocks("relay")
		self._rooms: Dict[str, Set[str]] = {}

	@property
	def presence(self) -> PresenceRegistry:
		return self._presence

	def resolve_peer(
		self,
		sender_id: str,
		*,
		recipient_id: Optional[object] = None,
		pair: Optional[str] = None,
	) -> str:
		sender = normalise_id(sender_id, field="sender")
		if recipient_id is not None and str(recipient_id).strip():
			recipient = normalise_id(recipient_id, field="recipient")
		elif pair:
			recipient = peer_of(str(pair), sender)
		else:
			raise errors.ValidationError("missing_recipient")
		if recipient == sender:
			raise errors.ValidationError("self_target")
		return recipient

	async def relay(
		self,
		sender_id: str,
		event: str,
		payload: Mapping[str, Any],
		*,
		recipient_id: Optional[object] = None,
		pair: Optional[str] = None,
	) -> bool:
		"""Forward `payload` unchanged to the peer. Returns whether it was handed to a live connection."""
		sender = normalise_id(sender_id, field="sender")
		recipient = self.resolve_peer(sender, recipient_id=recipient_id, pair=pair)
		async with self._locks.hold(sender, recipient):
			handle = self._presence.lookup(recipient)
			if handle is None:
				obs_metrics.inc_relay(event, False)
				return False
			await self._transport.send(handle, event, payload)
		obs_metrics.inc_relay(event, True)
		return True

	async def send_to_user(self, user_id: str, event: str, payload: Mapping[str, Any]) -> bool:
		handle = self._presence.lookup(user_id)
		if handle is None:
			return False
		await self._transport.send(handle, event, payload)
		return True

	def join_room(self, user_id: str, room_id: object) -> bool:
		"""Record membership; True only when it was not already recorded."""
		room = normalise_room(room_id)
		members = self._rooms.setdefault(room, set())
		if user_id in members:
			return False
		members.add(user_id)
		return True

	def leave_room(self, user_id: str, room_id: object) -> bool:
		room = normalise_room(room_id)
		members = self._rooms.get(room)
		if not members or user_id not in members:
			return False
		members.discard(user_id)
		if not members:
			del self._rooms[room]
		return True

	def leave_all(self, user_id: str) -> int:
		left = 0
		for room in [room for room, members in self._rooms.items() if user_id in members]:
			if self.leave_room(user_id, room):
				left += 1
		return left

	def members(self, room_id: str) -> Set[str]:
		return set(self._rooms.get(room_id, ()))


def normalise_room(room_id: object) -> str:
	room = str(room_id or "").strip()
	if not room:
		raise errors.ValidationError("missing_room")
	return room
