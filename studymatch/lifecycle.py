"""
Request / accept / decline / unmatch state machine for match records.

Legal transitions:

    PENDING -> MUTUAL      (recipient accepts)
    PENDING -> DECLINED    (recipient declines; starts a 7 day cooldown)
    MUTUAL  -> UNMATCHED   (either party unmatches)

Anything else raises ``InvalidTransitionError``. Every operation validates
before it mutates, so a rejected call leaves the store untouched.
Transitions on one record, and creation for one user pair, are serialized
with in-process locks; the store's optimistic version check covers writers
in other processes.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional

from .data_models import MatchRecord, MatchStatus, User, UserRole
from .errors import (
    CooldownError,
    DuplicateMatchError,
    InvalidRequestError,
    InvalidTransitionError,
    MatchNotFoundError,
    MatchPermissionError,
    UserNotFoundError,
)
from .matching_models import MutualMatch, PartnerCard, PendingRequest, view_for
from .recommender import DEFAULT_WEIGHTS, ScoreWeights, compatibility
from .stores import (
    ConversationDirectory,
    MatchStore,
    NotificationSink,
    ProfileStore,
    UserDirectory,
    generate_match_id,
)

logger = logging.getLogger(__name__)


DECLINE_COOLDOWN_DAYS = 7
DEFAULT_REQUEST_SCORE = 50

NOTIFY_MATCH_REQUEST = "MATCH_REQUEST"
NOTIFY_MATCH = "MATCH"
NOTIFY_UNMATCH = "UNMATCH"

LEGAL_TRANSITIONS = {
    (MatchStatus.PENDING, MatchStatus.MUTUAL),
    (MatchStatus.PENDING, MatchStatus.DECLINED),
    (MatchStatus.MUTUAL, MatchStatus.UNMATCHED),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def cooldown_days_remaining(declined_at: datetime, now: datetime) -> int:
    """Whole days left until the cooldown ends, counting the current day."""
    ends_at = declined_at + timedelta(days=DECLINE_COOLDOWN_DAYS)
    return max(0, (ends_at - now).days) + 1


class _KeyedLocks:
    """Per-key locks that are dropped once no caller holds or waits on them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List[Any]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def __call__(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


def _pair_lock_key(user_a: str, user_b: str) -> frozenset:
    return frozenset((user_a, user_b))


class MatchLifecycleManager:
    def __init__(
        self,
        users: UserDirectory,
        profiles: ProfileStore,
        matches: MatchStore,
        notifications: Optional[NotificationSink] = None,
        conversations: Optional[ConversationDirectory] = None,
        weights: ScoreWeights = DEFAULT_WEIGHTS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.users = users
        self.profiles = profiles
        self.matches = matches
        self.notifications = notifications
        self.conversations = conversations
        self.weights = weights
        self.clock = clock
        self._record_locks = _KeyedLocks()
        self._pair_locks = _KeyedLocks()

    def _require_user(self, user_id: str) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def _require_match(self, match_id: str) -> MatchRecord:
        record = self.matches.get(match_id)
        if record is None:
            raise MatchNotFoundError(match_id)
        return record

    def _notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        if self.notifications is None:
            return
        try:
            self.notifications.notify(user_id, kind, payload)
        except Exception:
            logger.exception("Failed to deliver %s notification to %s", kind, user_id)

    def _transition(self, record: MatchRecord, target: MatchStatus, **changes: Any) -> MatchRecord:
        if (record.status, target) not in LEGAL_TRANSITIONS:
            raise InvalidTransitionError(record.id, record.status.value, target.value)
        updated = record.model_copy(update={"status": target, **changes})
        return self.matches.update(updated, expected_version=record.version)

    def send_request(self, requester_id: str, target_id: str) -> MatchRecord:
        """Create a PENDING request from ``requester_id`` to ``target_id``.

        Raises:
            UserNotFoundError: Either user is unknown.
            InvalidRequestError: A user tried to request themselves.
            CooldownError: The pair has a decline younger than the cooldown.
            DuplicateMatchError: Any other record already links the pair.
        """
        requester = self._require_user(requester_id)
        target = self._require_user(target_id)
        if requester_id == target_id:
            raise InvalidRequestError("Cannot send a match request to yourself")

        with self._pair_locks(_pair_lock_key(requester_id, target_id)):
            now = self.clock()
            cooldown_start = now - timedelta(days=DECLINE_COOLDOWN_DAYS)
            recent = self.matches.find_recent_declined(requester_id, target_id, cooldown_start)
            if recent is not None:
                raise CooldownError(cooldown_days_remaining(recent.declined_at, now))

            existing = self.matches.find_between(requester_id, target_id)
            if existing is not None:
                if existing.status != MatchStatus.DECLINED:
                    raise DuplicateMatchError(requester_id, target_id)
                self.matches.delete(existing.id)
                logger.info("Deleted expired declined match %s to allow new request", existing.id)

            requester_profile = self.profiles.get(requester_id)
            target_profile = self.profiles.get(target_id)
            if requester_profile is not None and target_profile is not None:
                score, _ = compatibility(requester_profile, target_profile, self.weights)
            else:
                score = DEFAULT_REQUEST_SCORE

            record = self.matches.add(
                MatchRecord(
                    id=generate_match_id(),
                    user1_id=requester_id,
                    user2_id=target_id,
                    compatibility_score=score,
                    match_reason=f"Friend request from {requester.display_name}",
                    status=MatchStatus.PENDING,
                    created_at=now,
                )
            )

        logger.info("Match request %s sent from %s to %s", record.id, requester_id, target_id)
        handle = f" (@{requester.username})" if requester.username else ""
        self._notify(
            target.id,
            NOTIFY_MATCH_REQUEST,
            {
                "match_id": record.id,
                "from_user_id": requester_id,
                "message": f"{requester.display_name}{handle} wants to connect with you!",
            },
        )
        return record

    def accept(self, recipient_id: str, match_id: str) -> MatchRecord:
        """PENDING -> MUTUAL. Accepting an already mutual match is rejected."""
        with self._record_locks(match_id):
            record = self._require_match(match_id)
            if record.user2_id != recipient_id:
                raise MatchPermissionError("Only the recipient can accept a match request")
            updated = self._transition(record, MatchStatus.MUTUAL)

        logger.info("Match %s became MUTUAL between %s and %s", updated.id, updated.user1_id, updated.user2_id)
        for user_id in updated.pair:
            other = self.users.get(updated.other_party(user_id))
            name = other.display_name if other is not None else "your study partner"
            self._notify(
                user_id,
                NOTIFY_MATCH,
                {"match_id": updated.id, "message": f"You matched with {name}! Start chatting now."},
            )
        return updated

    def decline(self, recipient_id: str, match_id: str) -> None:
        """PENDING -> DECLINED, starting the cooldown for the pair."""
        with self._record_locks(match_id):
            record = self._require_match(match_id)
            if record.user2_id != recipient_id:
                raise MatchPermissionError("Only the recipient can decline a match request")
            self._transition(record, MatchStatus.DECLINED, declined_at=self.clock())
        logger.info("Match %s declined by %s", match_id, recipient_id)

    def unmatch(self, user_id: str, target_id: str, delete_chat: bool = True) -> MatchRecord:
        """MUTUAL -> UNMATCHED for the pair, initiated by either party.

        With ``delete_chat`` the acting user also leaves the pair's conversation.
        The other party is told so their client can block further contact.
        """
        self._require_user(user_id)
        target = self._require_user(target_id)
        if target.role == UserRole.ADMIN:
            raise InvalidRequestError("Cannot unmatch with admin")

        with self._pair_locks(_pair_lock_key(user_id, target_id)):
            record = self.matches.find_between(user_id, target_id)
            if record is None:
                raise MatchNotFoundError(message=f"No match between {user_id} and {target_id}")
            with self._record_locks(record.id):
                record = self._require_match(record.id)
                updated = self._transition(record, MatchStatus.UNMATCHED, unmatched_by=user_id)

        logger.info("Match %s UNMATCHED by %s (delete_chat=%s)", updated.id, user_id, delete_chat)
        if delete_chat and self.conversations is not None:
            try:
                self.conversations.leave(user_id, target_id)
            except Exception:
                logger.exception("Failed to remove %s from conversation with %s", user_id, target_id)

        actor = self.users.get(user_id)
        actor_name = actor.display_name if actor is not None else "Your study partner"
        self._notify(
            target_id,
            NOTIFY_UNMATCH,
            {
                "match_id": updated.id,
                "unmatched_by": user_id,
                "contact_blocked": True,
                "message": f"{actor_name} has unmatched with you.",
            },
        )
        return updated

    def clear_pending(self, requester_id: str) -> int:
        """Drop every PENDING request the user sent; requests they received stay."""
        removed = self.matches.delete_pending_from(requester_id)
        logger.info("Cleared %s pending matches for user %s", removed, requester_id)
        return removed

    def get_pending_requests(self, user_id: str) -> List[PendingRequest]:
        """PENDING requests addressed to ``user_id`` from requesters that still exist."""
        pending: List[PendingRequest] = []
        for record in self.matches.pending_for_recipient(user_id):
            requester = self.users.get(record.user1_id)
            if requester is None or requester.deleted:
                continue
            card = PartnerCard.from_user(requester, self.profiles.get(requester.id))
            pending.append(view_for(record, user_id, card))
        return pending

    def get_mutual_matches(self, user_id: str) -> List[MutualMatch]:
        views: List[MutualMatch] = []
        for record in self.matches.mutual_for(user_id):
            partner = self.users.get(record.other_party(user_id))
            if partner is None or partner.deleted:
                continue
            card = PartnerCard.from_user(partner, self.profiles.get(partner.id))
            views.append(view_for(record, user_id, card))
        return views
