from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .data_models import MatchRecord, MatchStatus, Profile, User, UserRole
from .stores import InMemoryMatchStore, InMemoryProfileStore, InMemoryUserDirectory


FIELD_ALIASES: Dict[str, List[str]] = {
    "user_id": ["user_id", "User ID", "id", "userId"],
    "display_name": ["display_name", "Display Name", "name", "Name", "displayName"],
    "username": ["username", "Username", "handle"],
    "email": ["email", "Email", "Your email address"],
    "role": ["role", "Role"],
    "deleted": ["deleted", "Deleted", "is_deleted"],
    "profile_id": ["profile_id", "Profile ID", "profileId"],
    "subjects": ["subjects", "Subjects", "What subjects are you studying?"],
    "preferred_times": ["preferred_times", "Preferred Times", "preferredTimes", "When do you like to study?"],
    "learning_style": ["learning_style", "Learning Style", "learningStyle"],
    "exam_goal": ["exam_goal", "Exam Goal", "examGoal"],
    "study_streak": ["study_streak", "Study Streak", "studyStreak"],
    "bio": ["bio", "Bio", "Tweet-sized summary of yourself"],
}

PROFILE_FIELDS = ("profile_id", "subjects", "preferred_times", "learning_style", "exam_goal", "study_streak", "bio")

MATCH_COLUMNS = [
    "id",
    "user1_id",
    "user2_id",
    "compatibility_score",
    "match_reason",
    "status",
    "unmatched_by",
    "declined_at",
    "created_at",
    "version",
]

_LIST_SPLIT = re.compile(r"[;,]")
_TRUTHY = {"1", "true", "yes", "y", "t"}


def get_alias_column(df: pd.DataFrame, key: str) -> Optional[str]:
    for candidate in FIELD_ALIASES.get(key, []):
        if candidate in df.columns:
            return candidate
    return None


def resolve_aliases(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    return {key: get_alias_column(df, key) for key in FIELD_ALIASES}


def clean_directory_df(df: pd.DataFrame) -> pd.DataFrame:
    """Strip headers, collapse whitespace and turn empty-ish strings into None."""

    out = df.copy()
    out.columns = [col.strip() if isinstance(col, str) else col for col in out.columns]
    for col in out.columns:
        if pd.api.types.is_object_dtype(out[col]):
            out[col] = (
                out[col]
                .astype(str)
                .str.replace("\n", " ")
                .str.replace(r"\s+", " ", regex=True)
                .str.strip()
                .replace({"nan": None, "None": None, "": None})
            )
    return out


def split_list(value: Any) -> List[str]:
    """Split a ``;`` or ``,`` separated cell into trimmed, non-empty items."""
    if value is None:
        return []
    if isinstance(value, float) and pd.isna(value):
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in _LIST_SPLIT.split(str(value)) if part.strip()]


def _cell(row: pd.Series, column: Optional[str]) -> Optional[str]:
    if column is None:
        return None
    value = row.get(column)
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def _to_bool(value: Optional[str]) -> bool:
    return value is not None and value.lower() in _TRUTHY


def _to_int(value: Optional[str], default: int = 0) -> int:
    if value is None:
        return default
    return int(float(value))


def rows_to_directory(df: pd.DataFrame) -> Tuple[List[User], List[Profile]]:
    """Build users, and profiles for rows that carry any profile field.

    Raises:
        KeyError: No user id column could be found.
    """
    cleaned = clean_directory_df(df)
    alias_map = resolve_aliases(cleaned)
    if alias_map["user_id"] is None:
        raise KeyError(f"No user id column found; expected one of {FIELD_ALIASES['user_id']}")

    users: List[User] = []
    profiles: List[Profile] = []
    for _, row in cleaned.iterrows():
        user_id = _cell(row, alias_map["user_id"])
        if user_id is None:
            continue
        role = (_cell(row, alias_map["role"]) or UserRole.USER.value).upper()
        users.append(
            User(
                id=user_id,
                display_name=_cell(row, alias_map["display_name"]) or user_id,
                username=_cell(row, alias_map["username"]),
                email=_cell(row, alias_map["email"]),
                role=UserRole(role),
                deleted=_to_bool(_cell(row, alias_map["deleted"])),
            )
        )

        if all(_cell(row, alias_map[f]) is None for f in PROFILE_FIELDS):
            continue
        profiles.append(
            Profile(
                user_id=user_id,
                id=_cell(row, alias_map["profile_id"]),
                subjects=split_list(_cell(row, alias_map["subjects"])),
                preferred_times=split_list(_cell(row, alias_map["preferred_times"])),
                learning_style=_cell(row, alias_map["learning_style"]),
                exam_goal=_cell(row, alias_map["exam_goal"]),
                study_streak=_to_int(_cell(row, alias_map["study_streak"])),
                bio=_cell(row, alias_map["bio"]),
            )
        )
    return users, profiles


def load_directory(csv_path: Path) -> Tuple[InMemoryUserDirectory, InMemoryProfileStore]:
    df = pd.read_csv(csv_path, dtype=str)
    users, profiles = rows_to_directory(df)
    return InMemoryUserDirectory(users), InMemoryProfileStore(profiles)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return pd.Timestamp(value).to_pydatetime()


def load_matches(csv_path: Path) -> InMemoryMatchStore:
    """Load match records; a missing file yields an empty store."""
    if not csv_path.exists():
        return InMemoryMatchStore()
    df = clean_directory_df(pd.read_csv(csv_path, dtype=str))
    missing = {"id", "user1_id", "user2_id", "created_at"} - set(df.columns)
    if missing:
        raise KeyError(f"Matches CSV missing required columns: {sorted(missing)}")

    for col in MATCH_COLUMNS:
        if col not in df.columns:
            df[col] = None

    records = []
    for _, row in df.iterrows():
        records.append(
            MatchRecord(
                id=_cell(row, "id"),
                user1_id=_cell(row, "user1_id"),
                user2_id=_cell(row, "user2_id"),
                compatibility_score=_to_int(_cell(row, "compatibility_score")),
                match_reason=_cell(row, "match_reason"),
                status=MatchStatus(_cell(row, "status") or MatchStatus.PENDING.value),
                unmatched_by=_cell(row, "unmatched_by"),
                declined_at=_parse_datetime(_cell(row, "declined_at")),
                created_at=_parse_datetime(_cell(row, "created_at")),
                version=_to_int(_cell(row, "version")),
            )
        )
    return InMemoryMatchStore(records)


def save_matches(records: Iterable[MatchRecord], csv_path: Path) -> Path:
    rows = []
    for record in records:
        row = record.model_dump(mode="json")
        rows.append({col: row.get(col) for col in MATCH_COLUMNS})
    out = pd.DataFrame(rows, columns=MATCH_COLUMNS)
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    out.to_csv(csv_path, index=False)
    return csv_path
