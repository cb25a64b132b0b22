from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class User(BaseModel):
    """
    A platform account as seen by the matching engine.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    username: Optional[str] = None
    email: Optional[str] = None
    role: UserRole = UserRole.USER
    deleted: bool = False


class Profile(BaseModel):
    """
    Study profile of a single user. Read-only to the engine.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    id: Optional[str] = None
    subjects: List[str] = Field(default_factory=list)
    preferred_times: List[str] = Field(default_factory=list)
    learning_style: Optional[str] = None
    exam_goal: Optional[str] = None
    study_streak: int = Field(default=0, ge=0)
    bio: Optional[str] = None

    @property
    def profile_id(self) -> str:
        """Identifier used for cache keys; the owning user id when no profile id is stored."""
        return self.id or self.user_id


class MatchStatus(str, Enum):
    PENDING = "PENDING"
    MUTUAL = "MUTUAL"
    DECLINED = "DECLINED"
    UNMATCHED = "UNMATCHED"


class MatchRecord(BaseModel):
    """
    Persisted partnership request between a requester (user1) and a recipient (user2).

    Records are immutable values; transitions produce a copy with a bumped
    ``version`` which the store checks on write.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    user1_id: str
    user2_id: str
    compatibility_score: int = Field(ge=0, le=100)
    match_reason: Optional[str] = None
    status: MatchStatus = MatchStatus.PENDING
    unmatched_by: Optional[str] = None
    declined_at: Optional[datetime] = None
    created_at: datetime
    version: int = 0

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.user1_id, self.user2_id)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def other_party(self, user_id: str) -> str:
        return self.user2_id if self.user1_id == user_id else self.user1_id


class CandidateMatch(BaseModel):
    """A scored, not yet persisted candidate for one suggestion request."""

    model_config = ConfigDict(frozen=True)

    user: User
    profile: Profile
    base_score: int
    base_reason: str


class EnrichmentResult(BaseModel):
    """Provider re-scoring of one (requester, candidate) profile pair."""

    model_config = ConfigDict(frozen=True)

    adjusted_score: int = Field(ge=0, le=100)
    personalized_reason: Optional[str] = None
    recommendations: List[str] = Field(default_factory=list)
    semantic_similarity: Optional[float] = Field(default=None, ge=0.0, le=1.0)
