"""Authentication helpers for FastAPI endpoints and socket handshakes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from buzzcore.infra import jwt as jwt_helper
from buzzcore.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	session_id: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		payload = jwt_helper.decode_access(token)
	except jwt_helper.InvalidTokenError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	session_id = payload.get("sid")
	return AuthenticatedUser(id=sub, session_id=str(session_id) if session_id is not None else None)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the caller.

	A bearer JWT is always honoured; the X-User-Id header only in development.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id.strip())
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def resolve_socket_user(auth: Optional[Mapping[str, object]], environ: Mapping[str, object]) -> Optional[str]:
	"""Identity for a socket handshake, or None when the connection is anonymous.

	Anonymous connections are allowed; they identify later via `register`.
	"""
	token = None
	if isinstance(auth, Mapping):
		token = auth.get("token")
	if token:
		try:
			payload = jwt_helper.decode_access(str(token))
		except jwt_helper.InvalidTokenError:
			return None
		return str(payload.get("sub"))
	if settings.is_dev():
		header = environ.get("HTTP_X_USER_ID")
		if header:
			return str(header).strip() or None
	return None
