"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends

from buzzcore.container import Container, get_container
from buzzcore.infra.auth import AuthenticatedUser, get_current_user
from buzzcore.infra.rate_limit import RateKind, enforce


def container_dep() -> Container:
	return get_container()


def rate_limited(kind: RateKind):
	"""Dependency spending one unit of the caller's per-minute budget for `kind`."""

	async def _dep(auth_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
		await enforce(kind, auth_user.id)
		return auth_user

	return _dep
