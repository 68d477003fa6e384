"""Canonical pair keys for two-party state."""

from __future__ import annotations

from typing import Tuple

from buzzcore.domain.common.errors import ValidationError

PAIR_SEPARATOR = "_"


def normalise_id(value: object, *, field: str = "id") -> str:
	"""Return a stripped, non-empty id or raise ValidationError."""
	if value is None:
		raise ValidationError(f"missing_{field}")
	text = str(value).strip()
	if not text:
		raise ValidationError(f"missing_{field}")
	if PAIR_SEPARATOR in text:
		raise ValidationError(f"invalid_{field}")
	return text


def ordered_pair(a: str, b: str) -> Tuple[str, str]:
	return (a, b) if a <= b else (b, a)


def pair_key(a: str, b: str) -> str:
	"""Order-independent key: the two ids sorted and joined with "_"."""
	first, second = ordered_pair(a, b)
	return f"{first}{PAIR_SEPARATOR}{second}"


def split_pair(key: str) -> Tuple[str, str]:
	parts = str(key or "").split(PAIR_SEPARATOR)
	if len(parts) != 2 or not parts[0] or not parts[1] or parts[0] == parts[1]:
		raise ValidationError("invalid_pair")
	return parts[0], parts[1]


def peer_of(key: str, member: str) -> str:
	"""The other participant of `key`; the caller must be one of the two."""
	first, second = split_pair(key)
	if member == first:
		return second
	if member == second:
		return first
	raise ValidationError("not_in_pair")
