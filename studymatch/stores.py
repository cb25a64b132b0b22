"""Collaborator contracts the engine consumes, with in-memory implementations.

Production deployments back these with a database, a notification service
and a telemetry pipeline. The in-memory versions are used by the CLI and the
tests and implement the same pair-symmetric lookups and optimistic version
checks a real store must provide.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

import shortuuid

from .data_models import MatchRecord, MatchStatus, Profile, User
from .errors import ConcurrentModificationError, MatchNotFoundError

logger = logging.getLogger(__name__)


def generate_match_id() -> str:
    return shortuuid.uuid()


class ProfileStore(Protocol):
    def get(self, user_id: str) -> Optional[Profile]: ...


class UserDirectory(Protocol):
    def get(self, user_id: str) -> Optional[User]: ...

    def list_others(self, exclude_user_id: str) -> List[User]: ...


class MatchStore(Protocol):
    def get(self, match_id: str) -> Optional[MatchRecord]: ...

    def add(self, record: MatchRecord) -> MatchRecord: ...

    def update(self, record: MatchRecord, expected_version: int) -> MatchRecord: ...

    def delete(self, match_id: str) -> None: ...

    def find_between(self, user_a: str, user_b: str) -> Optional[MatchRecord]: ...

    def exists_between(self, user_a: str, user_b: str) -> bool: ...

    def find_recent_declined(self, user_a: str, user_b: str, since: datetime) -> Optional[MatchRecord]: ...

    def delete_pending_from(self, requester_id: str) -> int: ...

    def pending_for_recipient(self, recipient_id: str) -> List[MatchRecord]: ...

    def mutual_for(self, user_id: str) -> List[MatchRecord]: ...

    def all(self) -> List[MatchRecord]: ...


class TelemetrySink(Protocol):
    def record_token_usage(
        self,
        user_id: str,
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int,
        operation: str,
    ) -> None: ...


class NotificationSink(Protocol):
    def notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None: ...


class ConversationDirectory(Protocol):
    def leave(self, user_id: str, other_user_id: str) -> None: ...


class InMemoryProfileStore:
    def __init__(self, profiles: Iterable[Profile] = ()):
        self._profiles: Dict[str, Profile] = {p.user_id: p for p in profiles}

    def get(self, user_id: str) -> Optional[Profile]:
        return self._profiles.get(user_id)

    def put(self, profile: Profile) -> None:
        self._profiles[profile.user_id] = profile

    def __len__(self) -> int:
        return len(self._profiles)


class InMemoryUserDirectory:
    def __init__(self, users: Iterable[User] = ()):
        self._users: Dict[str, User] = {u.id: u for u in users}

    def get(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def list_others(self, exclude_user_id: str) -> List[User]:
        return [u for uid, u in self._users.items() if uid != exclude_user_id]

    def put(self, user: User) -> None:
        self._users[user.id] = user

    def all(self) -> List[User]:
        return list(self._users.values())


class InMemoryMatchStore:
    """Dict-backed match store; every public method is atomic."""

    def __init__(self, records: Iterable[MatchRecord] = ()):
        self._records: Dict[str, MatchRecord] = {r.id: r for r in records}
        self._lock = threading.RLock()

    def get(self, match_id: str) -> Optional[MatchRecord]:
        with self._lock:
            return self._records.get(match_id)

    def add(self, record: MatchRecord) -> MatchRecord:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Match {record.id} already stored")
            self._records[record.id] = record
            return record

    def update(self, record: MatchRecord, expected_version: int) -> MatchRecord:
        """Write ``record`` only if the stored copy still has ``expected_version``."""
        with self._lock:
            current = self._records.get(record.id)
            if current is None:
                raise MatchNotFoundError(record.id)
            if current.version != expected_version:
                raise ConcurrentModificationError(record.id)
            stored = record.model_copy(update={"version": expected_version + 1})
            self._records[record.id] = stored
            return stored

    def delete(self, match_id: str) -> None:
        with self._lock:
            self._records.pop(match_id, None)

    def _between(self, user_a: str, user_b: str) -> List[MatchRecord]:
        pair = {user_a, user_b}
        return [r for r in self._records.values() if {r.user1_id, r.user2_id} == pair]

    def find_between(self, user_a: str, user_b: str) -> Optional[MatchRecord]:
        with self._lock:
            found = self._between(user_a, user_b)
            if not found:
                return None
            return min(found, key=lambda r: r.created_at)

    def exists_between(self, user_a: str, user_b: str) -> bool:
        with self._lock:
            return bool(self._between(user_a, user_b))

    def find_recent_declined(self, user_a: str, user_b: str, since: datetime) -> Optional[MatchRecord]:
        with self._lock:
            declined = [
                r
                for r in self._between(user_a, user_b)
                if r.status == MatchStatus.DECLINED and r.declined_at is not None and r.declined_at > since
            ]
            if not declined:
                return None
            return max(declined, key=lambda r: r.declined_at)

    def delete_pending_from(self, requester_id: str) -> int:
        with self._lock:
            doomed = [
                r.id
                for r in self._records.values()
                if r.user1_id == requester_id and r.status == MatchStatus.PENDING
            ]
            for match_id in doomed:
                del self._records[match_id]
            return len(doomed)

    def pending_for_recipient(self, recipient_id: str) -> List[MatchRecord]:
        with self._lock:
            found = [
                r
                for r in self._records.values()
                if r.user2_id == recipient_id and r.status == MatchStatus.PENDING
            ]
        return sorted(found, key=lambda r: r.created_at)

    def mutual_for(self, user_id: str) -> List[MatchRecord]:
        with self._lock:
            found = [r for r in self._records.values() if r.involves(user_id) and r.status == MatchStatus.MUTUAL]
        return sorted(found, key=lambda r: r.created_at)

    def all(self) -> List[MatchRecord]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.created_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


@dataclass(frozen=True)
class TokenUsage:
    user_id: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    operation: str


class InMemoryTelemetrySink:
    def __init__(self):
        self.records: List[TokenUsage] = []
        self._lock = threading.Lock()

    def record_token_usage(
        self,
        user_id: str,
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int,
        operation: str,
    ) -> None:
        usage = TokenUsage(user_id, prompt_tokens, completion_tokens, total_tokens, operation)
        with self._lock:
            self.records.append(usage)
        logger.debug("Tracked token usage: %s tokens for user %s", total_tokens, user_id)

    def total_for(self, user_id: str) -> int:
        with self._lock:
            return sum(r.total_tokens for r in self.records if r.user_id == user_id)


@dataclass(frozen=True)
class Notification:
    user_id: str
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)


class InMemoryNotificationSink:
    def __init__(self):
        self.sent: List[Notification] = []
        self._lock = threading.Lock()

    def notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.sent.append(Notification(user_id, kind, dict(payload)))

    def for_user(self, user_id: str) -> List[Notification]:
        with self._lock:
            return [n for n in self.sent if n.user_id == user_id]


class InMemoryConversationDirectory:
    """Two-party conversations keyed by the unordered user pair."""

    def __init__(self):
        self._participants: Dict[frozenset, Set[str]] = {}
        self._lock = threading.Lock()

    def open(self, user_a: str, user_b: str) -> None:
        with self._lock:
            self._participants.setdefault(frozenset((user_a, user_b)), {user_a, user_b})

    def participants(self, user_a: str, user_b: str) -> Tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._participants.get(frozenset((user_a, user_b)), set())))

    def leave(self, user_id: str, other_user_id: str) -> None:
        with self._lock:
            members = self._participants.get(frozenset((user_id, other_user_id)))
            if members is not None:
                members.discard(user_id)
