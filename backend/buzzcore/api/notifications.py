"""Stored notifications for the caller."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from buzzcore.api.deps import container_dep
from buzzcore.container import Container
from buzzcore.domain.common.errors import NotFoundError
from buzzcore.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
	limit: int = Query(default=50, ge=1, le=200),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, List[Dict[str, Any]]]:
	items = await container.notifications.list_for_user(auth_user.id, limit=limit)
	return {"items": [item.to_dict() for item in items]}


@router.post("/{notification_id}/read")
async def mark_read(
	notification_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, bool]:
	if not await container.notifications.mark_read(auth_user.id, notification_id):
		raise NotFoundError("notification_not_found")
	return {"ok": True}
