"""Likes, matches, buzzes, streaks and blocks."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, Field

from buzzcore.api.deps import container_dep
from buzzcore.container import Container
from buzzcore.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["relationships"])


class TargetPayload(BaseModel):
	to: str = Field(min_length=1, max_length=128)


class LikeResponse(BaseModel):
	success: bool = True
	matched: bool
	match_id: Optional[str] = None


class BuzzResponse(BaseModel):
	success: bool = True
	streak: int
	milestone: Optional[Dict[str, Any]] = None


@router.post("/likes", response_model=LikeResponse)
async def like(
	payload: TargetPayload,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> LikeResponse:
	result = await container.relationships.like(auth_user.id, payload.to)
	return LikeResponse(matched=result.matched, match_id=result.match_id)


@router.post("/buzz", response_model=BuzzResponse)
async def buzz(
	payload: TargetPayload,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> BuzzResponse:
	result = await container.relationships.buzz_matched(auth_user.id, payload.to)
	return BuzzResponse(streak=result.streak, milestone=dict(result.milestone) if result.milestone else None)


@router.get("/likes/status/{target_id}")
async def like_status(
	target_id: str = Path(min_length=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, bool]:
	status = await container.relationships.status(auth_user.id, target_id)
	return status.to_dict()


@router.get("/matches")
async def list_matches(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, List[Dict[str, Any]]]:
	return {"matches": await container.relationships.matches(auth_user.id)}


@router.get("/matchstreak/{target_id}")
async def match_streak(
	target_id: str = Path(min_length=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, Any]:
	streak = await container.relationships.streak(auth_user.id, target_id)
	return {"streak": streak.to_dict()}


@router.post("/unmatch/{target_id}")
async def unmatch(
	target_id: str = Path(min_length=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, bool]:
	removed = await container.relationships.unmatch(auth_user.id, target_id)
	return {"success": True, "removed": removed}


@router.get("/social-stats")
async def social_stats(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, int]:
	stats = await container.relationships.social_stats(auth_user.id)
	return stats.to_dict()


@router.post("/blocks/{target_id}")
async def block(
	target_id: str = Path(min_length=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, bool]:
	created = await container.relationships.block(auth_user.id, target_id)
	return {"success": True, "created": created}


@router.delete("/blocks/{target_id}")
async def unblock(
	target_id: str = Path(min_length=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Dict[str, bool]:
	removed = await container.relationships.unblock(auth_user.id, target_id)
	return {"success": True, "removed": removed}
