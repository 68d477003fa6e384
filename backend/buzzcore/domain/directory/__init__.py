"""User directory collaborator."""

from .models import CandidateFilter, Coordinates, UserSnapshot, VisibilityMode  # noqa: F401
from .repo import InMemoryUserDirectory, PostgresUserDirectory, UserDirectory  # noqa: F401
