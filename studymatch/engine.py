from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .cache import ResultCache
from .data_models import EnrichmentResult, MatchRecord
from .enrichment import EnrichmentOrchestrator, OpenAICompatibleProvider, ScoringProvider
from .lifecycle import MatchLifecycleManager, utc_now
from .matcher import MAX_SUGGESTIONS, SuggestionAssembler
from .matching_models import MutualMatch, PendingRequest, Suggestion
from .recommender import DEFAULT_WEIGHTS, ScoreWeights
from .settings import SettingsStore
from .stores import (
    ConversationDirectory,
    MatchStore,
    NotificationSink,
    ProfileStore,
    TelemetrySink,
    UserDirectory,
)

logger = logging.getLogger(__name__)


class MatchingEngine:
    """Entry point for callers: suggestions plus the match request lifecycle.

    Wires the suggestion assembler and the lifecycle manager over the same
    stores. The enrichment cache is sized from the settings at construction
    and shared by every suggestion request served by this engine.
    """

    def __init__(
        self,
        users: UserDirectory,
        profiles: ProfileStore,
        matches: MatchStore,
        settings: Optional[SettingsStore] = None,
        provider: Optional[ScoringProvider] = None,
        telemetry: Optional[TelemetrySink] = None,
        notifications: Optional[NotificationSink] = None,
        conversations: Optional[ConversationDirectory] = None,
        weights: ScoreWeights = DEFAULT_WEIGHTS,
        clock: Callable[[], datetime] = utc_now,
        cache: Optional[ResultCache[EnrichmentResult]] = None,
    ):
        self.settings = settings or SettingsStore()
        snapshot = self.settings.snapshot()
        self.cache = cache or ResultCache(
            ttl_seconds=snapshot.cache_ttl_minutes * 60,
            max_size=snapshot.cache_max_size,
        )
        self.orchestrator = EnrichmentOrchestrator(
            provider or OpenAICompatibleProvider(),
            self.cache,
            telemetry,
        )
        self.assembler = SuggestionAssembler(
            users,
            profiles,
            matches,
            self.orchestrator,
            self.settings,
            weights=weights,
            max_suggestions=MAX_SUGGESTIONS,
        )
        self.lifecycle = MatchLifecycleManager(
            users,
            profiles,
            matches,
            notifications=notifications,
            conversations=conversations,
            weights=weights,
            clock=clock,
        )

    def get_suggestions(self, user_id: str) -> List[Suggestion]:
        return self.assembler.get_suggestions(user_id)

    def refresh_suggestions(self, user_id: str) -> List[Suggestion]:
        """Drop the user's outgoing pending requests, then rebuild suggestions."""
        removed = self.lifecycle.clear_pending(user_id)
        logger.info("Refreshing suggestions for %s after clearing %s pending requests", user_id, removed)
        return self.assembler.get_suggestions(user_id)

    def send_request(self, requester_id: str, target_id: str) -> MatchRecord:
        return self.lifecycle.send_request(requester_id, target_id)

    def accept(self, recipient_id: str, match_id: str) -> MatchRecord:
        return self.lifecycle.accept(recipient_id, match_id)

    def decline(self, recipient_id: str, match_id: str) -> None:
        self.lifecycle.decline(recipient_id, match_id)

    def unmatch(self, user_id: str, target_id: str, delete_chat: bool = True) -> MatchRecord:
        return self.lifecycle.unmatch(user_id, target_id, delete_chat=delete_chat)

    def clear_pending(self, user_id: str) -> int:
        return self.lifecycle.clear_pending(user_id)

    def get_pending_requests(self, user_id: str) -> List[PendingRequest]:
        return self.lifecycle.get_pending_requests(user_id)

    def get_mutual_matches(self, user_id: str) -> List[MutualMatch]:
        return self.lifecycle.get_mutual_matches(user_id)
