"""UserDirectory collaborator: protocol, in-memory store and asyncpg store."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from buzzcore.domain.common.errors import ValidationError
from buzzcore.domain.directory.models import (
	UPDATABLE_FIELDS,
	CandidateFilter,
	Coordinates,
	UserSnapshot,
	VisibilityMode,
)
from buzzcore.infra.postgres import get_pool


class UserDirectory(Protocol):
	async def get(self, user_id: str) -> Optional[UserSnapshot]:
		...

	async def get_many(self, user_ids: Iterable[str]) -> Dict[str, UserSnapshot]:
		...

	async def update(self, user_id: str, fields: Mapping[str, Any]) -> None:
		...

	async def find_candidates(self, query: CandidateFilter, *, limit: Optional[int] = None) -> List[UserSnapshot]:
		...


def _check_fields(fields: Mapping[str, Any]) -> None:
	unknown = set(fields) - UPDATABLE_FIELDS
	if unknown:
		raise ValidationError(f"unsupported_fields:{','.join(sorted(unknown))}")


class InMemoryUserDirectory:
	"""Directory kept in process; used by tests and single-worker deployments."""

	def __init__(self, users: Iterable[UserSnapshot] = ()) -> None:
		self._lock = asyncio.Lock()
		self._users: Dict[str, UserSnapshot] = {user.id: user for user in users}

	def put(self, user: UserSnapshot) -> None:
		self._users[user.id] = user

	async def get(self, user_id: str) -> Optional[UserSnapshot]:
		user = self._users.get(user_id)
		return replace(user) if user is not None else None

	async def get_many(self, user_ids: Iterable[str]) -> Dict[str, UserSnapshot]:
		return {uid: replace(self._users[uid]) for uid in set(user_ids) if uid in self._users}

	async def update(self, user_id: str, fields: Mapping[str, Any]) -> None:
		_check_fields(fields)
		async with self._lock:
			user = self._users.get(user_id)
			if user is None:
				return
			changes = dict(fields)
			if "visibility" in changes:
				changes["visibility"] = VisibilityMode(changes["visibility"])
			for key in ("interests", "hobbies"):
				if key in changes:
					changes[key] = tuple(changes[key] or ())
			self._users[user_id] = replace(user, **changes)

	async def find_candidates(self, query: CandidateFilter, *, limit: Optional[int] = None) -> List[UserSnapshot]:
		found = [replace(user) for user in self._users.values() if query.matches(user)]
		return found[:limit] if limit else found


def _ts(value: Optional[datetime]) -> Optional[float]:
	return value.timestamp() if value is not None else None


def _row_to_snapshot(row: Mapping[str, Any]) -> UserSnapshot:
	location = None
	if row["lat"] is not None and row["lon"] is not None:
		location = Coordinates(lat=float(row["lat"]), lon=float(row["lon"]))
	try:
		visibility = VisibilityMode(row["visibility"] or "auto")
	except ValueError:
		visibility = VisibilityMode.AUTO
	return UserSnapshot(
		id=str(row["id"]),
		name=row["name"] or "",
		age=row["age"],
		gender=row["gender"],
		bio=row["bio"],
		avatar_url=row["avatar_url"],
		location=location,
		last_active_at=_ts(row["last_active_at"]),
		interests=tuple(row["interests"] or ()),
		hobbies=tuple(row["hobbies"] or ()),
		intent=row["intent"],
		vibe=row["vibe"],
		zodiac=row["zodiac"],
		love_language=row["love_language"],
		visibility=visibility,
		verified=bool(row["verified"]),
	)


_SELECT_USER = """
	SELECT id, name, age, gender, bio, avatar_url, lat, lon, last_active_at,
		interests, hobbies, intent, vibe, zodiac, love_language, visibility, verified
	FROM users
"""


class PostgresUserDirectory:
	"""Directory backed by the `users` table."""

	async def get(self, user_id: str) -> Optional[UserSnapshot]:
		pool = await get_pool()
		row = await pool.fetchrow(_SELECT_USER + " WHERE id = $1", user_id)
		return _row_to_snapshot(row) if row else None

	async def get_many(self, user_ids: Iterable[str]) -> Dict[str, UserSnapshot]:
		ids = list({uid for uid in user_ids})
		if not ids:
			return {}
		pool = await get_pool()
		rows = await pool.fetch(_SELECT_USER + " WHERE id = ANY($1::text[])", ids)
		return {str(row["id"]): _row_to_snapshot(row) for row in rows}

	async def update(self, user_id: str, fields: Mapping[str, Any]) -> None:
		_check_fields(fields)
		assignments: List[str] = []
		params: List[Any] = [user_id]
		for key, value in fields.items():
			if key == "location":
				coords: Optional[Coordinates] = value
				params.append(coords.lat if coords else None)
				assignments.append(f"lat = ${len(params)}")
				params.append(coords.lon if coords else None)
				assignments.append(f"lon = ${len(params)}")
				continue
			if key == "last_active_at":
				value = datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None
			elif key == "visibility":
				value = VisibilityMode(value).value
			elif key in ("interests", "hobbies"):
				value = list(value or ())
			params.append(value)
			assignments.append(f"{key} = ${len(params)}")
		if not assignments:
			return
		pool = await get_pool()
		await pool.execute(f"UPDATE users SET {', '.join(assignments)} WHERE id = $1", *params)

	async def find_candidates(self, query: CandidateFilter, *, limit: Optional[int] = None) -> List[UserSnapshot]:
		clauses = ["visibility <> 'hidden'"]
		params: List[Any] = []

		def _param(value: Any) -> str:
			params.append(value)
			return f"${len(params)}"

		if query.exclude:
			clauses.append(f"NOT (id = ANY({_param(list(query.exclude))}::text[]))")
		for column, wanted in (
			("gender", query.gender),
			("intent", query.intent),
			("vibe", query.vibe),
			("zodiac", query.zodiac),
			("love_language", query.love_language),
		):
			if wanted:
				clauses.append(f"lower({column}) = lower({_param(wanted)})")
		if query.verified is not None:
			clauses.append(f"verified = {_param(query.verified)}")
		if query.interest:
			clauses.append(
				f"EXISTS (SELECT 1 FROM unnest(interests) AS i WHERE lower(i) = lower({_param(query.interest)}))"
			)
		if query.active_since is not None:
			clauses.append(f"last_active_at >= {_param(datetime.fromtimestamp(query.active_since, tz=timezone.utc))}")
		if query.within is not None:
			box = query.within
			clauses.append(f"lat BETWEEN {_param(box.min_lat)} AND {_param(box.max_lat)}")
			if box.min_lon is not None and box.max_lon is not None:
				clauses.append(f"lon BETWEEN {_param(box.min_lon)} AND {_param(box.max_lon)}")
			else:
				clauses.append("lon IS NOT NULL")
		sql = _SELECT_USER + " WHERE " + " AND ".join(clauses)
		if limit:
			sql += f" LIMIT {_param(limit)}"
		pool = await get_pool()
		rows = await pool.fetch(sql, *params)
		return [_row_to_snapshot(row) for row in rows]
