"""Schemas for candidate discovery."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

RESTRICTED_VIBES = frozenset({"ons", "threesome", "onlyfans"})


class DiscoveryFilters(BaseModel):
	lat: Optional[float] = Field(default=None, ge=-90, le=90)
	lng: Optional[float] = Field(default=None, ge=-180, le=180)
	radius_km: Optional[float] = Field(default=None, gt=0, le=20000)
	gender: Optional[str] = None
	intent: Optional[str] = None
	vibe: Optional[str] = None
	verified: Optional[bool] = None
	zodiac: Optional[str] = None
	love: Optional[str] = Field(default=None, description="Love language")
	interest: Optional[str] = None
	online: Optional[Literal["active", "recent"]] = None
	limit: Optional[int] = Field(default=None, ge=1, le=500)

	@model_validator(mode="after")
	def _coords_together(self) -> "DiscoveryFilters":
		if (self.lat is None) != (self.lng is None):
			raise ValueError("lat and lng must be supplied together")
		return self


class DiscoveryCard(BaseModel):
	id: str
	name: str = ""
	age: Optional[int] = None
	gender: Optional[str] = None
	bio: Optional[str] = None
	avatar_url: Optional[str] = None
	interests: list[str] = Field(default_factory=list)
	hobbies: list[str] = Field(default_factory=list)
	intent: Optional[str] = None
	vibe: Optional[str] = None
	zodiac: Optional[str] = None
	love_language: Optional[str] = None
	verified: bool = False
	distance: Optional[str] = None
	activity: Optional[Literal["active", "recent"]] = None
	score: float = 0.0


class DiscoveryResponse(BaseModel):
	items: list[DiscoveryCard] = Field(default_factory=list)
	count: int = 0
	radius_km: Optional[float] = None
	expanded: bool = False
