"""Candidate discovery endpoint."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError as PydanticValidationError

from buzzcore.api.deps import container_dep, rate_limited
from buzzcore.container import Container
from buzzcore.domain.common.errors import ValidationError
from buzzcore.domain.discovery.schemas import DiscoveryFilters, DiscoveryResponse
from buzzcore.infra.auth import AuthenticatedUser
from buzzcore.infra.rate_limit import RateKind

router = APIRouter(tags=["discovery"])


@router.get("/discover", response_model=DiscoveryResponse)
async def discover(
	*,
	lat: Optional[float] = Query(default=None, ge=-90, le=90),
	lng: Optional[float] = Query(default=None, ge=-180, le=180),
	radius_km: Optional[float] = Query(default=None, gt=0, le=20000),
	gender: Optional[str] = Query(default=None),
	intent: Optional[str] = Query(default=None),
	vibe: Optional[str] = Query(default=None),
	verified: Optional[bool] = Query(default=None),
	zodiac: Optional[str] = Query(default=None),
	love: Optional[str] = Query(default=None),
	interest: Optional[str] = Query(default=None),
	online: Optional[Literal["active", "recent"]] = Query(default=None),
	limit: Optional[int] = Query(default=None, ge=1, le=500),
	auth_user: AuthenticatedUser = Depends(rate_limited(RateKind.DISCOVER)),
	container: Container = Depends(container_dep),
) -> DiscoveryResponse:
	try:
		filters = DiscoveryFilters(
			lat=lat,
			lng=lng,
			radius_km=radius_km,
			gender=gender,
			intent=intent,
			vibe=vibe,
			verified=verified,
			zodiac=zodiac,
			love=love,
			interest=interest,
			online=online,
			limit=limit,
		)
	except PydanticValidationError:
		raise ValidationError("invalid_coordinates") from None
	return await container.discovery.discover(auth_user.id, filters)
