"""
Builds study partner suggestions for a single user.

The pipeline:

- Filters the candidate pool (deleted accounts, existing match records, missing profiles)
- Scores every eligible candidate with the rule-based scorer
- Ranks by base score and shortlists the top K (admin-configured AI match limit)
- Enriches the shortlist through the provider, in parallel, with cache and fallback
- Re-ranks everyone by effective score and returns at most 20 suggestions

Browsing suggestions never creates a match record; that only happens on an
explicit request.
"""
import logging
from typing import Dict, List, Optional, Tuple

from .data_models import CandidateMatch, EnrichmentResult, Profile, User
from .enrichment import EnrichmentOrchestrator
from .errors import ProfileNotFoundError, UserNotFoundError
from .matching_models import PartnerCard, Suggestion
from .recommender import DEFAULT_WEIGHTS, ScoreWeights, compatibility, top_k
from .settings import AISettings, SettingsStore
from .stores import MatchStore, ProfileStore, UserDirectory

logger = logging.getLogger(__name__)


MAX_SUGGESTIONS = 20


def eligible_candidates(
    user_id: str,
    users: UserDirectory,
    profiles: ProfileStore,
    matches: MatchStore,
) -> List[Tuple[User, Profile]]:
    """
    Candidates that may be suggested to ``user_id``, with their profiles attached.

    Excludes soft-deleted accounts, anyone who already shares a match record
    with the user in any status (expired declines included), and users who
    have not created a profile.
    """
    eligible: List[Tuple[User, Profile]] = []
    for candidate in users.list_others(user_id):
        if candidate.deleted:
            continue
        if matches.exists_between(user_id, candidate.id):
            continue
        profile = profiles.get(candidate.id)
        if profile is None:
            continue
        eligible.append((candidate, profile))
    return eligible


def _score_candidates(
    profile: Profile,
    pool: List[Tuple[User, Profile]],
    weights: ScoreWeights,
) -> List[CandidateMatch]:
    scored = []
    for candidate, candidate_profile in pool:
        base_score, base_reason = compatibility(profile, candidate_profile, weights)
        scored.append(
            CandidateMatch(
                user=candidate,
                profile=candidate_profile,
                base_score=base_score,
                base_reason=base_reason,
            )
        )
    return scored


def _to_suggestion(candidate: CandidateMatch, enrichment: Optional[EnrichmentResult]) -> Suggestion:
    partner = PartnerCard.from_user(candidate.user, candidate.profile)
    # only a result carrying a personalized reason counts as enhanced
    if enrichment is None or not enrichment.personalized_reason:
        return Suggestion(
            suggestion_id=candidate.user.id,
            partner=partner,
            score=candidate.base_score,
            base_score=candidate.base_score,
            reason=candidate.base_reason,
        )
    return Suggestion(
        suggestion_id=candidate.user.id,
        partner=partner,
        score=enrichment.adjusted_score,
        base_score=candidate.base_score,
        reason=enrichment.personalized_reason,
        ai_enhanced=True,
        study_recommendations=list(enrichment.recommendations),
        semantic_similarity=enrichment.semantic_similarity,
    )


class SuggestionAssembler:
    def __init__(
        self,
        users: UserDirectory,
        profiles: ProfileStore,
        matches: MatchStore,
        orchestrator: EnrichmentOrchestrator,
        settings: SettingsStore,
        weights: ScoreWeights = DEFAULT_WEIGHTS,
        max_suggestions: int = MAX_SUGGESTIONS,
    ):
        self.users = users
        self.profiles = profiles
        self.matches = matches
        self.orchestrator = orchestrator
        self.settings = settings
        self.weights = weights
        self.max_suggestions = max_suggestions

    def get_suggestions(self, user_id: str, settings: Optional[AISettings] = None) -> List[Suggestion]:
        """Ranked, possibly enriched suggestions for ``user_id``.

        Args:
            user_id: The requesting user.
            settings: Snapshot to use; defaults to the store's current snapshot.

        Returns:
            At most ``max_suggestions`` suggestions, effective score descending.

        Raises:
            UserNotFoundError: ``user_id`` is unknown.
            ProfileNotFoundError: The requesting user has no profile.
        """
        snapshot = settings or self.settings.snapshot()

        if self.users.get(user_id) is None:
            raise UserNotFoundError(user_id)
        profile = self.profiles.get(user_id)
        if profile is None:
            raise ProfileNotFoundError(user_id)

        pool = eligible_candidates(user_id, self.users, self.profiles, self.matches)
        scored = _score_candidates(profile, pool, self.weights)
        shortlist, rest = top_k(scored, snapshot.ai_match_limit)

        enriched: Dict[str, EnrichmentResult] = {}
        if snapshot.enrichment_available:
            enriched = self.orchestrator.enrich(user_id, profile, shortlist, snapshot)

        suggestions = [_to_suggestion(c, enriched.get(c.user.id)) for c in shortlist]
        suggestions.extend(_to_suggestion(c, None) for c in rest)
        suggestions.sort(key=lambda s: (-s.score, s.suggestion_id))

        logger.debug(
            "Built %s suggestions for %s (%s eligible, %s enriched)",
            min(len(suggestions), self.max_suggestions),
            user_id,
            len(pool),
            len(enriched),
        )
        return suggestions[: self.max_suggestions]
