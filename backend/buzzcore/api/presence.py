"""Presence lookups."""

from __future__ import annotations

from typing import Dict, Union

from fastapi import APIRouter, Depends

from buzzcore.api.deps import container_dep
from buzzcore.container import Container
from buzzcore.domain.presence.mirror import RedisPresenceMirror
from buzzcore.infra.auth import AuthenticatedUser, get_current_user
from buzzcore.settings import settings

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("/{user_id}")
async def presence_status(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, Union[str, bool]]:
	online = container.presence.is_online(user_id)
	if not online and settings.presence_mirror_enabled:
		online = await RedisPresenceMirror().is_online(user_id)
	return {"userId": user_id, "online": online}
