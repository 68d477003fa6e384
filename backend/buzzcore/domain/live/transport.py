"""Seams between the live core and whatever carries events to clients."""

from __future__ import annotations

from typing import Any, Mapping, Protocol


class Transport(Protocol):
	"""Delivers one event to one live connection."""

	async def send(self, handle: str, event: str, payload: Mapping[str, Any]) -> None:
		...


class LivePush(Protocol):
	"""Pushes an event to a user if they are online; returns whether it was handed off."""

	async def send_to_user(self, user_id: str, event: str, payload: Mapping[str, Any]) -> bool:
		...


class RecordingTransport:
	"""Transport that keeps every send in order; useful for tests and local tooling."""

	def __init__(self) -> None:
		self.sent: list[tuple[str, str, dict[str, Any]]] = []

	async def send(self, handle: str, event: str, payload: Mapping[str, Any]) -> None:
		self.sent.append((handle, event, dict(payload)))

	def events_for(self, handle: str) -> list[tuple[str, dict[str, Any]]]:
		return [(event, payload) for sent_handle, event, payload in self.sent if sent_handle == handle]
