"""Socket.IO namespace for presence, chat relay, call signaling and meet negotiation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping, Optional

import socketio
import ulid

from buzzcore.domain.common import errors
from buzzcore.domain.live.router import normalise_room
from buzzcore.infra.auth import resolve_socket_user
from buzzcore.infra.rate_limit import RateKind, enforce as enforce_rate
from buzzcore.obs import logging as obs_logging
from buzzcore.obs import metrics as obs_metrics
from buzzcore.settings import settings

if TYPE_CHECKING:  # pragma: no cover - type-only imports
	from buzzcore.container import Container

logger = logging.getLogger(__name__)

NAMESPACE = "/live"


def _header(scope: Mapping[str, Any], name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def _user_id_from(payload: Any) -> Optional[str]:
	"""`register` accepts a bare id or {"userId": ...}."""
	if isinstance(payload, Mapping):
		payload = payload.get("userId") or payload.get("id")
	if payload is None:
		return None
	text = str(payload).strip()
	return text or None


def _as_dict(payload: Any) -> Dict[str, Any]:
	if not isinstance(payload, Mapping):
		raise errors.ValidationError("invalid_payload")
	return dict(payload)


class SocketTransport:
	"""Transport that emits through the live namespace; each sid is its own room."""

	def __init__(self, namespace: Optional["LiveNamespace"] = None) -> None:
		self._namespace = namespace

	def bind(self, namespace: "LiveNamespace") -> None:
		self._namespace = namespace

	async def send(self, handle: str, event: str, payload: Mapping[str, Any]) -> None:
		if self._namespace is None:
			logger.debug("live transport unbound; dropping event", extra={"event": event})
			return
		obs_metrics.socket_event(NAMESPACE, event)
		await self._namespace.emit(event, dict(payload), room=handle)


class LiveNamespace(socketio.AsyncNamespace):
	"""One connection per user. Events are relayed to the other member of a pair."""

	def __init__(self, container: "Container") -> None:
		super().__init__(NAMESPACE)
		self._container = container
		self._authenticated: Dict[str, str] = {}
		container.transport.bind(self)
		container.presence.add_listener(self._broadcast_presence)

	async def trigger_event(self, event: str, *args):
		# Event names use ":" which cannot appear in handler names.
		return await super().trigger_event(event.replace(":", "_"), *args)

	def user_for(self, sid: str) -> Optional[str]:
		return self._container.presence.user_for(sid)

	# Connection lifecycle

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		scope = environ.get("asgi.scope", environ)
		headers_env = dict(environ)
		user_header = _header(scope, "x-user-id")
		if user_header and "HTTP_X_USER_ID" not in headers_env:
			headers_env["HTTP_X_USER_ID"] = user_header
		user_id = resolve_socket_user(auth, headers_env)
		if user_id:
			self._authenticated[sid] = user_id
			await self._container.presence.register(user_id, sid)
		await self.emit("sys.ok", {"ok": True, "userId": user_id}, room=sid)

	async def on_disconnect(self, sid: str, *args) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		self._authenticated.pop(sid, None)
		user_id = await self._container.presence.unregister(sid)
		if user_id is not None:
			self._container.router.leave_all(user_id)

	async def on_register(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		return await self._handle(sid, "register", self._register(sid, payload), require_user=False)

	async def on_user_register(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		return await self._handle(sid, "user:register", self._register(sid, payload), require_user=False)

	async def _register(self, sid: str, payload: Any) -> Dict[str, Any]:
		claimed = _user_id_from(payload)
		known = self._authenticated.get(sid)
		if claimed is None:
			raise errors.ValidationError("missing_user")
		if known is not None and known != claimed:
			raise errors.ValidationError("identity_mismatch")
		if known is None and not settings.is_dev():
			raise errors.ValidationError("unauthenticated")
		replaced = await self._container.presence.register(claimed, sid)
		if replaced is not None:
			logger.info("live connection replaced", extra={"previous_sid": replaced})
		return {"ok": True, "userId": claimed}

	# Rooms and chat

	async def on_joinRoom(self, sid: str, room_id: Any = None) -> Dict[str, Any]:
		async def _join(user_id: str) -> Dict[str, Any]:
			room = normalise_room(_room_arg(room_id))
			return {"ok": True, "joined": self._container.router.join_room(user_id, room)}

		return await self._handle(sid, "joinRoom", _join)

	async def on_leaveRoom(self, sid: str, room_id: Any = None) -> Dict[str, Any]:
		async def _leave(user_id: str) -> Dict[str, Any]:
			room = normalise_room(_room_arg(room_id))
			return {"ok": True, "left": self._container.router.leave_room(user_id, room)}

		return await self._handle(sid, "leaveRoom", _leave)

	async def on_typing(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _typing(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			room = data.get("roomId")
			delivered = await self._container.router.relay(
				user_id,
				"typing",
				{"fromId": user_id, "roomId": room, "isTyping": bool(data.get("isTyping", True))},
				recipient_id=data.get("to"),
				pair=room,
			)
			return {"ok": True, "delivered": delivered}

		return await self._handle(sid, "typing", _typing)

	async def on_message_seen(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _seen(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			msg_id = data.get("msgId")
			if not msg_id:
				raise errors.ValidationError("missing_message_id")
			room = data.get("roomId")
			delivered = await self._container.router.relay(
				user_id,
				"message:seen",
				{"roomId": room, "msgId": msg_id, "fromId": user_id},
				recipient_id=data.get("to"),
				pair=room,
			)
			return {"ok": True, "delivered": delivered}

		return await self._handle(sid, "message:seen", _seen)

	async def on_sendMessage(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _send(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			await enforce_rate(RateKind.LIVE_MESSAGE, user_id)
			room = data.get("roomId")
			recipient = self._container.router.resolve_peer(user_id, recipient_id=data.get("to"), pair=room)
			if await self._container.relationships.is_blocked(user_id, recipient):
				await self.emit(
					"warn",
					{"roomId": room, "reason": "blocked", "message": "This user is unavailable to chat."},
					room=sid,
				)
				return {"ok": False, "reason": "blocked"}
			message = {
				"id": data.get("id") or str(ulid.new()),
				"roomId": room,
				"from": user_id,
				"to": recipient,
				"text": data.get("text") or "",
				"type": data.get("type") or "text",
				"time": data.get("time"),
			}
			delivered = await self._container.router.relay(user_id, "chat:message", message, recipient_id=recipient)
			return {"ok": True, "id": message["id"], "delivered": delivered}

		return await self._handle(sid, "sendMessage", _send)

	# Calls

	async def on_call_offer(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		return await self._call(sid, "offer", payload)

	async def on_call_answer(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		return await self._call(sid, "answer", payload)

	async def on_call_signal(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		return await self._call(sid, "signal", payload)

	async def on_call_end(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		return await self._call(sid, "end", payload)

	async def _call(self, sid: str, kind: str, payload: Any) -> Dict[str, Any]:
		async def _forward(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			data["from"] = user_id
			delivered = await self._container.calls.forward(
				kind,
				user_id,
				data,
				room_id=data.get("roomId"),
				recipient_id=data.get("to"),
			)
			return {"ok": True, "delivered": delivered}

		return await self._handle(sid, f"call:{kind}", _forward)

	# Meet in the middle

	async def on_meet_request(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _request(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			await enforce_rate(RateKind.LIVE_MEET, user_id)
			session = await self._container.meet.request(user_id, data.get("to"), data.get("coords"))
			if session is None:
				return {"ok": False, "reason": "offline"}
			return {"ok": True, "state": session.state.value}

		return await self._handle(sid, "meet:request", _request)

	async def on_meet_accept(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _accept(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			if data.get("coords") is None:
				raise errors.ValidationError("invalid_coordinates")
			session = await self._container.meet.accept(user_id, data.get("to"), data.get("coords"))
			return {"ok": True, "state": session.state.value}

		return await self._handle(sid, "meet:accept", _accept)

	async def on_meet_location(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _location(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			if data.get("coords") is None:
				raise errors.ValidationError("invalid_coordinates")
			session = await self._container.meet.share_location(user_id, data.get("to"), data.get("coords"))
			return {"ok": True, "state": session.state.value}

		return await self._handle(sid, "meet:location", _location)

	async def on_meet_expand(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _expand(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			session = await self._container.meet.expand_search(user_id, data.get("to"))
			return {"ok": True, "state": session.state.value}

		return await self._handle(sid, "meet:expand", _expand)

	async def on_meet_place_selected(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		return await self._handle(sid, "meet:place:selected", self._propose(payload))

	async def on_meet_chosen(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		return await self._handle(sid, "meet:chosen", self._propose(payload))

	def _propose(self, payload: Any) -> Callable[[str], Awaitable[Dict[str, Any]]]:
		async def _run(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			place = data.get("place")
			venue_id = data.get("placeId")
			if venue_id is None and isinstance(place, Mapping):
				venue_id = place.get("id")
			session = await self._container.meet.propose_place(user_id, data.get("to"), venue_id)
			return {"ok": True, "state": session.state.value}

		return _run

	async def on_meet_place_accepted(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _accept_place(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			session = await self._container.meet.accept_place(user_id, data.get("to"))
			return {"ok": True, "state": session.state.value}

		return await self._handle(sid, "meet:place:accepted", _accept_place)

	async def on_meet_place_rejected(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _reject_place(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			session = await self._container.meet.reject_place(user_id, data.get("to"))
			return {"ok": True, "state": session.state.value}

		return await self._handle(sid, "meet:place:rejected", _reject_place)

	async def on_meet_decline(self, sid: str, payload: Any = None) -> Dict[str, Any]:
		async def _decline(user_id: str) -> Dict[str, Any]:
			data = _as_dict(payload)
			session = await self._container.meet.decline(user_id, data.get("to"))
			return {"ok": True, "declined": session is not None}

		return await self._handle(sid, "meet:decline", _decline)

	# Plumbing

	async def _handle(
		self,
		sid: str,
		event: str,
		action: Any,
		*,
		require_user: bool = True,
	) -> Dict[str, Any]:
		"""Run one inbound event; domain errors become a `sys.warn` to this connection only."""
		obs_metrics.socket_event(self.namespace, event)
		user_id = self.user_for(sid)
		tokens = obs_logging.bind_context(sid=sid, user_id=user_id)
		try:
			if require_user:
				if user_id is None:
					raise errors.ValidationError("unregistered")
				return await action(user_id)
			return await action
		except errors.CoreError as exc:
			warning: Dict[str, Any] = {"event": event, "reason": exc.reason}
			if isinstance(exc, errors.CooldownError):
				warning["retryInMs"] = exc.retry_after_ms
			logger.info("live event rejected", extra={"event": event, "reason": exc.reason})
			await self.emit("sys.warn", warning, room=sid)
			return {"ok": False, "reason": exc.reason}
		finally:
			obs_logging.reset_context(tokens)

	async def _broadcast_presence(self, user_id: str, online: bool) -> None:
		event = "presence:online" if online else "presence:offline"
		obs_metrics.socket_event(self.namespace, event)
		await self.emit(event, {"userId": user_id})


def _room_arg(value: Any) -> Any:
	if isinstance(value, Mapping):
		return value.get("roomId")
	return value
