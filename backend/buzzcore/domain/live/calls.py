"""Call signaling relay: offer, answer, ICE signal and hang-up."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from buzzcore.domain.common import errors
from buzzcore.domain.live.router import SessionRouter

CALL_EVENTS = ("offer", "answer", "signal", "end")


class CallSignalRelay:
	"""Forwards call events verbatim to the peer. Nothing is buffered or retried."""

	def __init__(self, router: SessionRouter) -> None:
		self._router = router

	async def forward(
		self,
		kind: str,
		sender_id: str,
		payload: Mapping[str, Any],
		*,
		room_id: Optional[str] = None,
		recipient_id: Optional[str] = None,
	) -> bool:
		if kind not in CALL_EVENTS:
			raise errors.ValidationError("unknown_call_event")
		return await self._router.relay(
			sender_id,
			f"call:{kind}",
			payload,
			recipient_id=recipient_id,
			pair=room_id,
		)
