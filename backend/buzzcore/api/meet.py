"""Stateless meet-in-the-middle suggestions."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from buzzcore.api.deps import container_dep
from buzzcore.container import Container
from buzzcore.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/meet", tags=["meet"])


class LatLng(BaseModel):
	lat: float = Field(ge=-90, le=90)
	lng: float = Field(ge=-180, le=180)


class SuggestRequest(BaseModel):
	a: LatLng
	b: LatLng
	expand: bool = False


class SuggestResponse(BaseModel):
	midpoint: LatLng
	places: List[Dict[str, Any]] = Field(default_factory=list)
	radiusMeters: int
	canExpand: bool
	upstreamError: bool = False


class MeetSessionView(BaseModel):
	pairKey: str
	state: str
	requesterId: str
	targetId: str
	midpoint: Optional[LatLng] = None
	places: Optional[List[Dict[str, Any]]] = None
	radiusMeters: Optional[int] = None
	canExpand: Optional[bool] = None
	upstreamError: Optional[bool] = None
	place: Optional[Dict[str, Any]] = None
	proposedBy: Optional[str] = None


@router.post("/suggest", response_model=SuggestResponse)
async def suggest(
	payload: SuggestRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> SuggestResponse:
	result = await container.meet.suggest(payload.a.model_dump(), payload.b.model_dump(), expand=payload.expand)
	return SuggestResponse(**result)


@router.get("/session/{other_id}", response_model=Optional[MeetSessionView])
async def current_session(
	other_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	container: Container = Depends(container_dep),
) -> Optional[MeetSessionView]:
	session = container.meet.get(auth_user.id, other_id)
	if session is None:
		return None
	return MeetSessionView(**session.snapshot())
