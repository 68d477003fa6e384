"""Relationship domain exports."""

from .models import BuzzResult, EdgeType, LikeResult, LikeStatus, Match, MatchStreak, SocialStats  # noqa: F401
from .repo import InMemoryRelationshipStore, PostgresRelationshipStore, RelationshipStore  # noqa: F401
from .service import RelationshipStateMachine  # noqa: F401
