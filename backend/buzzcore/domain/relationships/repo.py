"""RelationshipStore collaborator: protocol, in-memory store and asyncpg store."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Protocol, Set, Tuple

import ulid

from buzzcore.domain.common.pairs import ordered_pair, pair_key
from buzzcore.domain.relationships.models import EdgeType, LikeWrite, Match, MatchStreak, RelationshipEdge
from buzzcore.infra.postgres import get_pool, pair_transaction


class RelationshipStore(Protocol):
	async def has_edge(self, from_id: str, to_id: str, edge_type: EdgeType) -> bool:
		...

	async def add_edge(self, edge: RelationshipEdge) -> bool:
		"""Insert the edge; False when an edge of that type already exists for the ordered pair."""
		...

	async def add_like(self, edge: RelationshipEdge) -> LikeWrite:
		"""Insert a like edge unless the pair is already matched or the edge exists.

		Serialised with `resolve_mutual` for the same pair across processes.
		"""
		...

	async def delete_edge(self, from_id: str, to_id: str, edge_type: EdgeType) -> bool:
		...

	async def delete_likes_between(self, a: str, b: str) -> int:
		...

	async def is_blocked_either_way(self, a: str, b: str) -> bool:
		...

	async def blocked_ids(self, user_id: str) -> Set[str]:
		"""Ids with a block edge to or from `user_id`."""
		...

	async def liked_ids(self, user_id: str) -> Set[str]:
		...

	async def liker_ids(self, user_id: str) -> Set[str]:
		...

	async def get_match(self, a: str, b: str) -> Optional[Match]:
		...

	async def resolve_mutual(self, a: str, b: str, created_at: float) -> Tuple[Match, bool]:
		"""Create the pair's match if absent and delete both like edges, as one unit.

		Returns the match and whether this call created it.
		"""
		...

	async def delete_match(self, a: str, b: str) -> bool:
		...

	async def matches_of(self, user_id: str) -> List[Match]:
		...

	async def get_streak(self, from_id: str, to_id: str) -> Optional[MatchStreak]:
		...

	async def bump_streak(self, from_id: str, to_id: str, at: float) -> MatchStreak:
		...

	async def delete_streaks(self, a: str, b: str) -> int:
		...


class InMemoryRelationshipStore:
	"""Process-local store. Each method is atomic with respect to the others."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._edges: Dict[Tuple[str, str, EdgeType], RelationshipEdge] = {}
		self._matches: Dict[Tuple[str, str], Match] = {}
		self._streaks: Dict[Tuple[str, str], MatchStreak] = {}

	async def has_edge(self, from_id: str, to_id: str, edge_type: EdgeType) -> bool:
		return (from_id, to_id, edge_type) in self._edges

	async def add_edge(self, edge: RelationshipEdge) -> bool:
		async with self._lock:
			key = (edge.from_id, edge.to_id, edge.type)
			if key in self._edges:
				return False
			self._edges[key] = edge
			return True

	async def add_like(self, edge: RelationshipEdge) -> LikeWrite:
		async with self._lock:
			if ordered_pair(edge.from_id, edge.to_id) in self._matches:
				return LikeWrite.MATCHED
			key = (edge.from_id, edge.to_id, EdgeType.LIKE)
			if key in self._edges:
				return LikeWrite.DUPLICATE
			self._edges[key] = edge
			return LikeWrite.CREATED

	async def delete_edge(self, from_id: str, to_id: str, edge_type: EdgeType) -> bool:
		async with self._lock:
			return self._edges.pop((from_id, to_id, edge_type), None) is not None

	async def delete_likes_between(self, a: str, b: str) -> int:
		async with self._lock:
			return self._drop_likes(a, b)

	def _drop_likes(self, a: str, b: str) -> int:
		removed = 0
		for key in ((a, b, EdgeType.LIKE), (b, a, EdgeType.LIKE)):
			if self._edges.pop(key, None) is not None:
				removed += 1
		return removed

	async def is_blocked_either_way(self, a: str, b: str) -> bool:
		return (a, b, EdgeType.BLOCK) in self._edges or (b, a, EdgeType.BLOCK) in self._edges

	async def blocked_ids(self, user_id: str) -> Set[str]:
		found: Set[str] = set()
		for from_id, to_id, edge_type in self._edges:
			if edge_type != EdgeType.BLOCK:
				continue
			if from_id == user_id:
				found.add(to_id)
			elif to_id == user_id:
				found.add(from_id)
		return found

	async def liked_ids(self, user_id: str) -> Set[str]:
		return {to_id for from_id, to_id, kind in self._edges if kind == EdgeType.LIKE and from_id == user_id}

	async def liker_ids(self, user_id: str) -> Set[str]:
		return {from_id for from_id, to_id, kind in self._edges if kind == EdgeType.LIKE and to_id == user_id}

	async def get_match(self, a: str, b: str) -> Optional[Match]:
		return self._matches.get(ordered_pair(a, b))

	async def resolve_mutual(self, a: str, b: str, created_at: float) -> Tuple[Match, bool]:
		async with self._lock:
			key = ordered_pair(a, b)
			existing = self._matches.get(key)
			created = existing is None
			if existing is None:
				existing = Match.for_pair(str(ulid.new()), a, b, created_at)
				self._matches[key] = existing
			self._drop_likes(a, b)
			return existing, created

	async def delete_match(self, a: str, b: str) -> bool:
		async with self._lock:
			return self._matches.pop(ordered_pair(a, b), None) is not None

	async def matches_of(self, user_id: str) -> List[Match]:
		found = [match for match in self._matches.values() if user_id in match.users]
		found.sort(key=lambda match: match.created_at, reverse=True)
		return found

	async def get_streak(self, from_id: str, to_id: str) -> Optional[MatchStreak]:
		streak = self._streaks.get((from_id, to_id))
		if streak is None:
			return None
		return MatchStreak(from_id, to_id, streak.count, streak.last_buzz_at)

	async def bump_streak(self, from_id: str, to_id: str, at: float) -> MatchStreak:
		async with self._lock:
			streak = self._streaks.setdefault((from_id, to_id), MatchStreak(from_id=from_id, to_id=to_id))
			streak.count += 1
			streak.last_buzz_at = at
			return MatchStreak(from_id, to_id, streak.count, streak.last_buzz_at)

	async def delete_streaks(self, a: str, b: str) -> int:
		async with self._lock:
			removed = 0
			for key in ((a, b), (b, a)):
				if self._streaks.pop(key, None) is not None:
					removed += 1
			return removed


def _epoch(value) -> float:
	return value.timestamp() if hasattr(value, "timestamp") else float(value)


class PostgresRelationshipStore:
	"""Store backed by `relationship_edges`, `matches` and `match_streaks`.

	`matches` carries a unique (user_a, user_b) key over the sorted pair so the
	mutual-like insert is a conditional write. Like inserts and match creation for a
	pair share one advisory lock, so a like never lands beside a fresh match.
	"""

	async def has_edge(self, from_id: str, to_id: str, edge_type: EdgeType) -> bool:
		pool = await get_pool()
		row = await pool.fetchrow(
			"SELECT 1 FROM relationship_edges WHERE from_id = $1 AND to_id = $2 AND type = $3",
			from_id,
			to_id,
			edge_type.value,
		)
		return row is not None

	async def add_edge(self, edge: RelationshipEdge) -> bool:
		pool = await get_pool()
		status = await pool.execute(
			"""
			INSERT INTO relationship_edges (from_id, to_id, type, created_at)
			VALUES ($1, $2, $3, to_timestamp($4))
			ON CONFLICT (from_id, to_id, type) DO NOTHING
			""",
			edge.from_id,
			edge.to_id,
			edge.type.value,
			edge.created_at,
		)
		return status.endswith(" 1")

	async def add_like(self, edge: RelationshipEdge) -> LikeWrite:
		first, second = ordered_pair(edge.from_id, edge.to_id)
		async with pair_transaction(pair_key(first, second)) as conn:
			matched = await conn.fetchval(
				"SELECT 1 FROM matches WHERE user_a = $1 AND user_b = $2",
				first,
				second,
			)
			if matched is not None:
				return LikeWrite.MATCHED
			status = await conn.execute(
				"""
				INSERT INTO relationship_edges (from_id, to_id, type, created_at)
				VALUES ($1, $2, 'like', to_timestamp($3))
				ON CONFLICT (from_id, to_id, type) DO NOTHING
				""",
				edge.from_id,
				edge.to_id,
				edge.created_at,
			)
		return LikeWrite.CREATED if status.endswith(" 1") else LikeWrite.DUPLICATE

	async def delete_edge(self, from_id: str, to_id: str, edge_type: EdgeType) -> bool:
		pool = await get_pool()
		status = await pool.execute(
			"DELETE FROM relationship_edges WHERE from_id = $1 AND to_id = $2 AND type = $3",
			from_id,
			to_id,
			edge_type.value,
		)
		return not status.endswith(" 0")

	async def delete_likes_between(self, a: str, b: str) -> int:
		pool = await get_pool()
		status = await pool.execute(
			"""
			DELETE FROM relationship_edges
			WHERE type = 'like' AND ((from_id = $1 AND to_id = $2) OR (from_id = $2 AND to_id = $1))
			""",
			a,
			b,
		)
		return int(status.split()[-1])

	async def is_blocked_either_way(self, a: str, b: str) -> bool:
		pool = await get_pool()
		row = await pool.fetchrow(
			"""
			SELECT 1 FROM relationship_edges
			WHERE type = 'block' AND ((from_id = $1 AND to_id = $2) OR (from_id = $2 AND to_id = $1))
			LIMIT 1
			""",
			a,
			b,
		)
		return row is not None

	async def blocked_ids(self, user_id: str) -> Set[str]:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT CASE WHEN from_id = $1 THEN to_id ELSE from_id END AS other_id
			FROM relationship_edges
			WHERE type = 'block' AND (from_id = $1 OR to_id = $1)
			""",
			user_id,
		)
		return {str(row["other_id"]) for row in rows}

	async def liked_ids(self, user_id: str) -> Set[str]:
		pool = await get_pool()
		rows = await pool.fetch(
			"SELECT to_id FROM relationship_edges WHERE from_id = $1 AND type = 'like'",
			user_id,
		)
		return {str(row["to_id"]) for row in rows}

	async def liker_ids(self, user_id: str) -> Set[str]:
		pool = await get_pool()
		rows = await pool.fetch(
			"SELECT from_id FROM relationship_edges WHERE to_id = $1 AND type = 'like'",
			user_id,
		)
		return {str(row["from_id"]) for row in rows}

	async def get_match(self, a: str, b: str) -> Optional[Match]:
		first, second = ordered_pair(a, b)
		pool = await get_pool()
		row = await pool.fetchrow(
			"SELECT id, user_a, user_b, created_at FROM matches WHERE user_a = $1 AND user_b = $2",
			first,
			second,
		)
		if row is None:
			return None
		return Match(id=str(row["id"]), user_a=row["user_a"], user_b=row["user_b"], created_at=_epoch(row["created_at"]))

	async def resolve_mutual(self, a: str, b: str, created_at: float) -> Tuple[Match, bool]:
		first, second = ordered_pair(a, b)
		async with pair_transaction(pair_key(first, second)) as conn:
			inserted = await conn.fetchrow(
				"""
				INSERT INTO matches (id, user_a, user_b, created_at)
				VALUES ($1, $2, $3, to_timestamp($4))
				ON CONFLICT (user_a, user_b) DO NOTHING
				RETURNING id, created_at
				""",
				str(ulid.new()),
				first,
				second,
				created_at,
			)
			if inserted is None:
				row = await conn.fetchrow(
					"SELECT id, created_at FROM matches WHERE user_a = $1 AND user_b = $2",
					first,
					second,
				)
			else:
				row = inserted
			await conn.execute(
				"""
				DELETE FROM relationship_edges
				WHERE type = 'like' AND ((from_id = $1 AND to_id = $2) OR (from_id = $2 AND to_id = $1))
				""",
				first,
				second,
			)
		match = Match(id=str(row["id"]), user_a=first, user_b=second, created_at=_epoch(row["created_at"]))
		return match, inserted is not None

	async def delete_match(self, a: str, b: str) -> bool:
		first, second = ordered_pair(a, b)
		pool = await get_pool()
		status = await pool.execute("DELETE FROM matches WHERE user_a = $1 AND user_b = $2", first, second)
		return not status.endswith(" 0")

	async def matches_of(self, user_id: str) -> List[Match]:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT id, user_a, user_b, created_at FROM matches
			WHERE user_a = $1 OR user_b = $1
			ORDER BY created_at DESC
			""",
			user_id,
		)
		return [
			Match(id=str(row["id"]), user_a=row["user_a"], user_b=row["user_b"], created_at=_epoch(row["created_at"]))
			for row in rows
		]

	async def get_streak(self, from_id: str, to_id: str) -> Optional[MatchStreak]:
		pool = await get_pool()
		row = await pool.fetchrow(
			"SELECT count, last_buzz_at FROM match_streaks WHERE from_id = $1 AND to_id = $2",
			from_id,
			to_id,
		)
		if row is None:
			return None
		last = row["last_buzz_at"]
		return MatchStreak(from_id, to_id, int(row["count"]), _epoch(last) if last is not None else None)

	async def bump_streak(self, from_id: str, to_id: str, at: float) -> MatchStreak:
		pool = await get_pool()
		row = await pool.fetchrow(
			"""
			INSERT INTO match_streaks (from_id, to_id, count, last_buzz_at)
			VALUES ($1, $2, 1, to_timestamp($3))
			ON CONFLICT (from_id, to_id)
			DO UPDATE SET count = match_streaks.count + 1, last_buzz_at = EXCLUDED.last_buzz_at
			RETURNING count, last_buzz_at
			""",
			from_id,
			to_id,
			at,
		)
		return MatchStreak(from_id, to_id, int(row["count"]), _epoch(row["last_buzz_at"]))

	async def delete_streaks(self, a: str, b: str) -> int:
		pool = await get_pool()
		status = await pool.execute(
			"""
			DELETE FROM match_streaks
			WHERE (from_id = $1 AND to_id = $2) OR (from_id = $2 AND to_id = $1)
			""",
			a,
			b,
		)
		return int(status.split()[-1])
