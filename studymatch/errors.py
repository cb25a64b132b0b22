"""Errors surfaced to callers of the matching engine.

Every error carries a stable ``code`` so API layers can map it without
parsing the message. Enrichment failures never appear here: they are
recovered inside the orchestrator.
"""

from typing import Optional


class MatchingError(Exception):
    """Base class for all fatal engine errors."""

    code = "MATCHING_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProfileNotFoundError(MatchingError):
    code = "PROFILE_NOT_FOUND"

    def __init__(self, user_id: str):
        super().__init__(f"Profile not found for user {user_id}")
        self.user_id = user_id


class UserNotFoundError(MatchingError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class MatchNotFoundError(MatchingError):
    code = "MATCH_NOT_FOUND"

    def __init__(self, match_id: Optional[str] = None, message: Optional[str] = None):
        super().__init__(message or f"Match not found: {match_id}")
        self.match_id = match_id


class CooldownError(MatchingError):
    """A recent decline blocks new requests between the pair."""

    code = "COOLDOWN"

    def __init__(self, days_remaining: int):
        plural = "s" if days_remaining > 1 else ""
        super().__init__(
            "This user declined your request. "
            f"You can send another request in {days_remaining} day{plural}"
        )
        self.days_remaining = days_remaining

    def to_dict(self) -> dict:
        return {"code": self.code, "days_remaining": self.days_remaining, "message": self.message}


class DuplicateMatchError(MatchingError):
    code = "DUPLICATE_MATCH"

    def __init__(self, user_a: str, user_b: str):
        super().__init__("Match request already exists")
        self.pair = (user_a, user_b)


class InvalidTransitionError(MatchingError):
    code = "INVALID_STATE"

    def __init__(self, match_id: str, current: str, target: str):
        super().__init__(f"Match {match_id} cannot move from {current} to {target}")
        self.match_id = match_id
        self.current = current
        self.target = target


class InvalidRequestError(MatchingError):
    code = "INVALID_REQUEST"


class MatchPermissionError(MatchingError):
    code = "FORBIDDEN"


class ConcurrentModificationError(MatchingError):
    """Optimistic version check failed; another writer got there first."""

    code = "CONFLICT"

    def __init__(self, match_id: str):
        super().__init__(f"Match {match_id} was modified concurrently")
        self.match_id = match_id
