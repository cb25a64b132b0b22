# pydantic models for what the engine hands back to callers
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .data_models import MatchRecord, MatchStatus, Profile, User


class PartnerCard(BaseModel):
    """The other side of a suggestion or match, as displayed to the viewer."""

    user_id: str
    display_name: str
    username: Optional[str] = None
    deleted: bool = False
    profile: Optional[Profile] = None

    @classmethod
    def from_user(cls, user: User, profile: Optional[Profile] = None) -> "PartnerCard":
        return cls(
            user_id=user.id,
            display_name=user.display_name,
            username=user.username,
            deleted=user.deleted,
            profile=profile,
        )


class Suggestion(BaseModel):
    """Ranked recommendation that has not been persisted.

    Fields:
        suggestion_id: Correlation handle; the candidate's user id since no match record exists yet.
        score: Effective score (enriched when available, otherwise base).
        base_score: Rule-based compatibility score.
        reason: Personalized reason when enriched, otherwise the rule-based reason.
        ai_enhanced: Whether the provider contributed to score and reason.
    """

    status: Literal["SUGGESTION"] = "SUGGESTION"
    suggestion_id: str
    partner: PartnerCard
    score: int = Field(ge=0, le=100)
    base_score: int = Field(ge=0, le=100)
    reason: str
    ai_enhanced: bool = False
    study_recommendations: List[str] = Field(default_factory=list)
    semantic_similarity: Optional[float] = None


class PendingRequest(BaseModel):
    status: Literal["PENDING"] = "PENDING"
    match_id: str
    partner: PartnerCard
    requested_by: str
    score: int
    reason: Optional[str] = None
    created_at: datetime


class MutualMatch(BaseModel):
    status: Literal["MUTUAL"] = "MUTUAL"
    match_id: str
    partner: PartnerCard
    score: int
    reason: Optional[str] = None
    created_at: datetime


class UnmatchedMatch(BaseModel):
    """A former match. When the viewer is not the one who unmatched, contact is blocked."""

    status: Literal["UNMATCHED"] = "UNMATCHED"
    match_id: str
    partner: PartnerCard
    unmatched_by: Optional[str] = None
    contact_blocked: bool = False
    created_at: datetime


MatchView = Annotated[
    Union[Suggestion, PendingRequest, MutualMatch, UnmatchedMatch],
    Field(discriminator="status"),
]


def view_for(record: MatchRecord, viewer_id: str, partner: PartnerCard) -> MatchView:
    """Project a persisted record into the view shown to ``viewer_id``.

    Declined records are never shown to either party.
    """
    if record.status == MatchStatus.PENDING:
        return PendingRequest(
            match_id=record.id,
            partner=partner,
            requested_by=record.user1_id,
            score=record.compatibility_score,
            reason=record.match_reason,
            created_at=record.created_at,
        )
    if record.status == MatchStatus.MUTUAL:
        return MutualMatch(
            match_id=record.id,
            partner=partner,
            score=record.compatibility_score,
            reason=record.match_reason,
            created_at=record.created_at,
        )
    if record.status == MatchStatus.UNMATCHED:
        return UnmatchedMatch(
            match_id=record.id,
            partner=partner,
            unmatched_by=record.unmatched_by,
            contact_blocked=record.unmatched_by is not None and record.unmatched_by != viewer_id,
            created_at=record.created_at,
        )
    raise ValueError(f"Match {record.id} in status {record.status.value} has no view")


class ProviderAssessment(BaseModel):
    """JSON object the scoring provider must return inside the message content.

    Fields:
        score_adjustment: Points added to the base score, clamped to [-20, 20].
        semantic_similarity: Provider's subject similarity estimate, clamped to [0, 1].
        personalized_reason: One-sentence explanation for the viewer; blank is rejected.
        study_recommendations: Topics the pair could study together.
    """

    score_adjustment: int
    semantic_similarity: float
    personalized_reason: str
    study_recommendations: List[str]

    @field_validator("score_adjustment", mode="before")
    @classmethod
    def _clamp_adjustment(cls, value):
        return max(-20, min(20, int(round(float(value)))))

    @field_validator("semantic_similarity", mode="before")
    @classmethod
    def _clamp_similarity(cls, value):
        return max(0.0, min(1.0, float(value)))

    @field_validator("personalized_reason")
    @classmethod
    def _require_reason(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("personalized_reason must not be blank")
        return value
