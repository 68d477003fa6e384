"""Like → match state machine, matched buzzes and streaks."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional

from buzzcore.domain.common import errors
from buzzcore.domain.common.pairs import normalise_id, pair_key
from buzzcore.domain.directory.repo import UserDirectory
from buzzcore.domain.live.transport import LivePush
from buzzcore.domain.notifications.service import NotificationSink
from buzzcore.domain.relationships.models import (
	BuzzResult,
	EdgeType,
	LikeResult,
	LikeStatus,
	LikeWrite,
	Match,
	MatchStreak,
	RelationshipEdge,
	SocialStats,
	milestone_for,
)
from buzzcore.domain.relationships.repo import RelationshipStore
from buzzcore.infra.pair_lock import PairLocks
from buzzcore.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

DEFAULT_BUZZ_COOLDOWN_SECONDS = 10.0


def _pair_ids(from_id: object, to_id: object) -> tuple[str, str]:
	source = normalise_id(from_id, field="from")
	target = normalise_id(to_id, field="to")
	if source == target:
		raise errors.ValidationError("self_target")
	return source, target


def buzz_message(name: str, streak: int) -> str:
	message = f"{name} buzzed you! Buzz them back!"
	if streak > 1:
		return f"{message}\nMatchStreak: {streak}"
	if streak == 1:
		return f"{message}\nStart a MatchStreak!"
	return message


class RelationshipStateMachine:
	"""Owns like/match/block transitions.

	Every mutation for a pair runs under that pair's lock, and the store serialises like
	inserts with match creation, so a like from each side arriving together produces
	exactly one match and leaves no like edges behind, even across processes.
	"""

	def __init__(
		self,
		store: RelationshipStore,
		*,
		directory: Optional[UserDirectory] = None,
		notifications: Optional[NotificationSink] = None,
		live: Optional[LivePush] = None,
		locks: Optional[PairLocks] = None,
		buzz_cooldown_seconds: float = DEFAULT_BUZZ_COOLDOWN_SECONDS,
		clock: Callable[[], float] = time.time,
	) -> None:
		self._store = store
		self._directory = directory
		self._notifications = notifications
		self._live = live
		self._locks = locks or PairLocks("relationships")
		self._cooldown = float(buzz_cooldown_seconds)
		self._clock = clock
		self._last_buzz: Dict[str, float] = {}

	def attach_live(self, live: LivePush) -> None:
		self._live = live

	async def like(self, from_id: object, to_id: object) -> LikeResult:
		source, target = _pair_ids(from_id, to_id)
		match: Optional[Match] = None
		async with self._locks.hold(source, target):
			if await self._store.is_blocked_either_way(source, target):
				obs_metrics.inc_like("blocked")
				raise errors.Blocked()
			if await self._store.get_match(source, target) is not None:
				obs_metrics.inc_like("already_matched")
				raise errors.AlreadyMatched()
			edge = RelationshipEdge(from_id=source, to_id=target, type=EdgeType.LIKE, created_at=self._clock())
			# Re-checked by the store under its pair lock; the pair may match in another process.
			write = await self._store.add_like(edge)
			if write is LikeWrite.MATCHED:
				obs_metrics.inc_like("already_matched")
				raise errors.AlreadyMatched()
			if write is LikeWrite.DUPLICATE:
				obs_metrics.inc_like("already_liked")
				raise errors.AlreadyLiked()
			if await self._store.has_edge(target, source, EdgeType.LIKE):
				match, created = await self._store.resolve_mutual(source, target, self._clock())
				if created:
					obs_metrics.inc_match_created()
		if match is not None:
			obs_metrics.inc_like("matched")
			await self._announce_match(source, target, match)
			return LikeResult(matched=True, match_id=match.id)
		obs_metrics.inc_like("pending")
		await self._announce_like(source, target)
		return LikeResult(matched=False)

	async def unmatch(self, a: object, b: object) -> bool:
		"""Remove any match, residual likes and streaks for the pair. True if anything went away."""
		first, second = _pair_ids(a, b)
		async with self._locks.hold(first, second):
			removed_match = await self._store.delete_match(first, second)
			removed_likes = await self._store.delete_likes_between(first, second)
			await self._store.delete_streaks(first, second)
			self._last_buzz.pop(pair_key(first, second), None)
		if removed_match:
			logger.info("match removed", extra={"pair": pair_key(first, second)})
		return removed_match or removed_likes > 0

	async def buzz_matched(self, from_id: object, to_id: object) -> BuzzResult:
		source, target = _pair_ids(from_id, to_id)
		async with self._locks.hold(source, target) as key:
			if await self._store.is_blocked_either_way(source, target):
				obs_metrics.inc_buzz("blocked")
				raise errors.Blocked()
			if await self._store.get_match(source, target) is None:
				obs_metrics.inc_buzz("not_matched")
				raise errors.NotMatched()
			now = self._clock()
			last = self._last_buzz.get(key)
			if last is not None and now - last < self._cooldown:
				obs_metrics.inc_buzz("cooldown")
				retry_ms = math.ceil((self._cooldown - (now - last)) * 1000)
				raise errors.CooldownError(retry_after_ms=retry_ms)
			self._last_buzz[key] = now
			self._prune_cooldowns(now)
			streak = await self._store.bump_streak(source, target, now)
		obs_metrics.inc_buzz("ok")
		milestone = milestone_for(streak.count)
		name = await self._display_name(source, "Someone")
		await self._notify(
			target,
			type="buzz",
			message=buzz_message(name, streak.count),
			from_id=source,
			href=f"/viewProfile/{source}",
			data={"streak": streak.count},
		)
		return BuzzResult(streak=streak.count, milestone=milestone)

	async def status(self, self_id: object, other_id: object) -> LikeStatus:
		me, other = _pair_ids(self_id, other_id)
		return LikeStatus(
			liked_by_me=await self._store.has_edge(me, other, EdgeType.LIKE),
			liked_me=await self._store.has_edge(other, me, EdgeType.LIKE),
			matched=await self._store.get_match(me, other) is not None,
		)

	async def matches(self, user_id: object) -> List[Dict[str, Any]]:
		"""Matched peers, newest first, with sanitized profiles when the directory has them."""
		me = normalise_id(user_id, field="user")
		found = await self._store.matches_of(me)
		peers = [match.peer_of(me) for match in found]
		profiles = await self._directory.get_many(peers) if self._directory is not None and peers else {}
		items: List[Dict[str, Any]] = []
		for match, peer in zip(found, peers):
			profile = profiles.get(peer)
			items.append(
				{
					"matchId": match.id,
					"userId": peer,
					"createdAt": match.created_at,
					"profile": profile.public_profile() if profile is not None else None,
				}
			)
		return items

	async def streak(self, from_id: object, to_id: object) -> MatchStreak:
		source, target = _pair_ids(from_id, to_id)
		found = await self._store.get_streak(source, target)
		return found or MatchStreak(from_id=source, to_id=target)

	async def social_stats(self, user_id: object) -> SocialStats:
		me = normalise_id(user_id, field="user")
		return SocialStats(
			liked_count=len(await self._store.liked_ids(me)),
			liked_you_count=len(await self._store.liker_ids(me)),
			match_count=len(await self._store.matches_of(me)),
		)

	async def block(self, from_id: object, to_id: object) -> bool:
		"""Block `to_id`; also drops likes, any match and streaks for the pair."""
		source, target = _pair_ids(from_id, to_id)
		async with self._locks.hold(source, target) as key:
			created = await self._store.add_edge(
				RelationshipEdge(from_id=source, to_id=target, type=EdgeType.BLOCK, created_at=self._clock())
			)
			await self._store.delete_likes_between(source, target)
			await self._store.delete_match(source, target)
			await self._store.delete_streaks(source, target)
			self._last_buzz.pop(key, None)
		return created

	async def unblock(self, from_id: object, to_id: object) -> bool:
		source, target = _pair_ids(from_id, to_id)
		async with self._locks.hold(source, target):
			return await self._store.delete_edge(source, target, EdgeType.BLOCK)

	async def is_blocked(self, a: str, b: str) -> bool:
		return await self._store.is_blocked_either_way(a, b)

	async def is_matched(self, a: str, b: str) -> bool:
		return await self._store.get_match(a, b) is not None

	def _prune_cooldowns(self, now: float) -> None:
		if len(self._last_buzz) < 1024:
			return
		stale = [key for key, at in self._last_buzz.items() if now - at >= self._cooldown]
		for key in stale:
			del self._last_buzz[key]

	async def _display_name(self, user_id: str, default: str) -> str:
		if self._directory is None:
			return default
		user = await self._directory.get(user_id)
		return (user.name if user is not None and user.name else default)

	async def _announce_match(self, caller: str, other: str, match: Match) -> None:
		for recipient, peer in ((caller, other), (other, caller)):
			await self._push(recipient, "match", {"otherUserId": peer, "matchId": match.id})
		caller_name = await self._display_name(caller, "Someone")
		other_name = await self._display_name(other, "Someone")
		await self._notify(
			other,
			type="match",
			message=f"It's a match with {caller_name}!",
			from_id=caller,
			href=f"/viewProfile/{caller}",
		)
		await self._notify(
			caller,
			type="match",
			message=f"It's a match with {other_name}!",
			from_id=other,
			href=f"/viewProfile/{other}",
		)

	async def _announce_like(self, source: str, target: str) -> None:
		name = await self._display_name(source, "Someone nearby")
		avatar = None
		if self._directory is not None:
			user = await self._directory.get(source)
			avatar = user.avatar_url if user is not None else None
		await self._push(target, "buzz_request", {"fromId": source, "name": name, "selfieUrl": avatar or ""})
		await self._notify(
			target,
			type="buzz",
			message=f"{name} wants to match with you!",
			from_id=source,
			href=f"/viewProfile/{source}",
		)

	async def _push(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
		if self._live is None:
			return
		try:
			await self._live.send_to_user(user_id, event, payload)
		except Exception:
			logger.warning("live push failed", extra={"event": event}, exc_info=True)

	async def _notify(self, user_id: str, **fields: Any) -> None:
		if self._notifications is None:
			return
		try:
			await self._notifications.notify(user_id, **fields)
		except Exception:
			logger.warning("notification failed", extra={"kind": fields.get("type")}, exc_info=True)
