"""Stored notifications with best-effort live delivery."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

import ulid

from buzzcore.domain.live.transport import LivePush
from buzzcore.infra.postgres import get_pool
from buzzcore.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Notification:
	id: str
	user_id: str
	type: str
	message: str
	from_id: Optional[str]
	href: Optional[str]
	created_at: float
	read_at: Optional[float] = None
	data: Optional[Dict[str, Any]] = None

	def to_dict(self) -> dict[str, Any]:
		payload: dict[str, Any] = {
			"id": self.id,
			"userId": self.user_id,
			"fromId": self.from_id,
			"type": self.type,
			"message": self.message,
			"href": self.href,
			"createdAt": self.created_at,
			"read": self.read_at is not None,
		}
		if self.data:
			payload.update(self.data)
		return payload


class NotificationStore(Protocol):
	async def add(self, notification: Notification) -> None:
		...

	async def list_for_user(self, user_id: str, *, limit: int = 50) -> List[Notification]:
		...

	async def mark_read(self, user_id: str, notification_id: str, at: float) -> bool:
		...


class NotificationSink(Protocol):
	async def notify(
		self,
		user_id: str,
		*,
		type: str,
		message: str,
		from_id: Optional[str] = None,
		href: Optional[str] = None,
		data: Optional[Dict[str, Any]] = None,
	) -> Notification:
		...


class InMemoryNotificationStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._items: Dict[str, List[Notification]] = {}

	async def add(self, notification: Notification) -> None:
		async with self._lock:
			self._items.setdefault(notification.user_id, []).append(notification)

	async def list_for_user(self, user_id: str, *, limit: int = 50) -> List[Notification]:
		items = list(reversed(self._items.get(user_id, [])))
		return items[:limit]

	async def mark_read(self, user_id: str, notification_id: str, at: float) -> bool:
		async with self._lock:
			for item in self._items.get(user_id, []):
				if item.id == notification_id and item.read_at is None:
					item.read_at = at
					return True
		return False


class PostgresNotificationStore:
	async def add(self, notification: Notification) -> None:
		pool = await get_pool()
		await pool.execute(
			"""
			INSERT INTO notifications (id, user_id, from_id, type, message, href, created_at)
			VALUES ($1, $2, $3, $4, $5, $6, to_timestamp($7))
			""",
			notification.id,
			notification.user_id,
			notification.from_id,
			notification.type,
			notification.message,
			notification.href,
			notification.created_at,
		)

	async def list_for_user(self, user_id: str, *, limit: int = 50) -> List[Notification]:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT id, user_id, from_id, type, message, href,
				extract(epoch FROM created_at) AS created_at,
				extract(epoch FROM read_at) AS read_at
			FROM notifications
			WHERE user_id = $1
			ORDER BY created_at DESC
			LIMIT $2
			""",
			user_id,
			limit,
		)
		return [
			Notification(
				id=str(row["id"]),
				user_id=str(row["user_id"]),
				type=row["type"],
				message=row["message"],
				from_id=row["from_id"],
				href=row["href"],
				created_at=float(row["created_at"]),
				read_at=float(row["read_at"]) if row["read_at"] is not None else None,
			)
			for row in rows
		]

	async def mark_read(self, user_id: str, notification_id: str, at: float) -> bool:
		pool = await get_pool()
		status = await pool.execute(
			"""
			UPDATE notifications SET read_at = to_timestamp($3)
			WHERE id = $1 AND user_id = $2 AND read_at IS NULL
			""",
			notification_id,
			user_id,
			at,
		)
		return not status.endswith(" 0")


class NotificationService:
	"""Persists a notification, then pushes it live if the recipient is connected."""

	def __init__(
		self,
		store: NotificationStore,
		push: Optional[LivePush] = None,
		*,
		clock: Callable[[], float] = time.time,
	) -> None:
		self._store = store
		self._push = push
		self._clock = clock

	def attach_push(self, push: LivePush) -> None:
		self._push = push

	async def notify(
		self,
		user_id: str,
		*,
		type: str,
		message: str,
		from_id: Optional[str] = None,
		href: Optional[str] = None,
		data: Optional[Dict[str, Any]] = None,
	) -> Notification:
		notification = Notification(
			id=str(ulid.new()),
			user_id=user_id,
			type=type,
			message=message,
			from_id=from_id,
			href=href,
			created_at=self._clock(),
			data=data,
		)
		await self._store.add(notification)
		obs_metrics.inc_notification_persisted(type)
		if self._push is not None:
			try:
				await self._push.send_to_user(user_id, "notification", notification.to_dict())
			except Exception:
				obs_metrics.inc_notification_emit_failure()
				logger.warning("notification push failed", extra={"kind": type}, exc_info=True)
		return notification

	async def list_for_user(self, user_id: str, *, limit: int = 50) -> List[Notification]:
		return await self._store.list_for_user(user_id, limit=limit)

	async def mark_read(self, user_id: str, notification_id: str) -> bool:
		return await self._store.mark_read(user_id, notification_id, self._clock())
