from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


DEFAULT_PROVIDER_URL = "https://api.groq.com/openai/v1"
DEFAULT_PROVIDER_MODEL = "llama-3.3-70b-versatile"


class AISettings(BaseModel):
    """Immutable snapshot of the admin-tunable matching settings.

    Fields:
        ai_enabled: Master switch for provider enrichment.
        ai_match_limit: How many top candidates are enriched per request (1-50).
        cache_ttl_minutes: Lifetime of a cached enrichment result.
        cache_max_size: Maximum number of cached enrichment results.
        provider_url: Base URL of the OpenAI-compatible chat completions API.
        provider_model: Model name sent with each request.
        api_key: Provider credential; enrichment is skipped when blank.
        max_tokens: Completion token budget per request.
        temperature: Sampling temperature.
        provider_timeout_seconds: Per-call timeout.
        provider_max_retries: Transport-level retries per call.
        provider_max_workers: Upper bound on concurrent provider calls.
    """

    model_config = ConfigDict(frozen=True)

    ai_enabled: bool = True
    ai_match_limit: int = Field(default=10, ge=1, le=50)
    cache_ttl_minutes: int = Field(default=60, ge=1)
    cache_max_size: int = Field(default=1000, ge=1)
    provider_url: str = DEFAULT_PROVIDER_URL
    provider_model: str = DEFAULT_PROVIDER_MODEL
    api_key: Optional[str] = Field(default=None, repr=False)
    max_tokens: int = Field(default=250, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    provider_timeout_seconds: float = Field(default=10.0, gt=0)
    provider_max_retries: int = Field(default=0, ge=0)
    provider_max_workers: int = Field(default=8, ge=1)

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @property
    def enrichment_available(self) -> bool:
        return self.ai_enabled and self.has_credentials


# environment variable -> settings field
ENV_FIELDS: Dict[str, str] = {
    "STUDYMATCH_AI_ENABLED": "ai_enabled",
    "STUDYMATCH_AI_MATCH_LIMIT": "ai_match_limit",
    "STUDYMATCH_CACHE_TTL_MINUTES": "cache_ttl_minutes",
    "STUDYMATCH_CACHE_MAX_SIZE": "cache_max_size",
    "STUDYMATCH_AI_PROVIDER_URL": "provider_url",
    "STUDYMATCH_AI_MODEL": "provider_model",
    "STUDYMATCH_AI_MAX_TOKENS": "max_tokens",
    "STUDYMATCH_AI_TEMPERATURE": "temperature",
    "STUDYMATCH_AI_TIMEOUT_SECONDS": "provider_timeout_seconds",
    "STUDYMATCH_AI_MAX_RETRIES": "provider_max_retries",
    "STUDYMATCH_AI_MAX_WORKERS": "provider_max_workers",
}

API_KEY_ENV_VARS = ("STUDYMATCH_AI_API_KEY", "GROQ_API_KEY", "OPENAI_API_KEY")


def load_settings(env: Optional[Dict[str, str]] = None, dotenv: bool = True) -> AISettings:
    """Build settings from the environment (and a .env file when present).

    Unset variables keep the defaults. Values are validated by pydantic, so an
    out-of-range match limit raises ``pydantic.ValidationError``.
    """
    if dotenv and env is None:
        load_dotenv()
    source = os.environ if env is None else env

    values: Dict[str, Any] = {}
    for var, field in ENV_FIELDS.items():
        raw = source.get(var)
        if raw is not None and raw.strip() != "":
            values[field] = raw.strip()
    for var in API_KEY_ENV_VARS:
        key = source.get(var)
        if key and key.strip():
            values["api_key"] = key.strip()
            break
    return AISettings.model_validate(values)


class SettingsStore:
    """Holds the current settings and hands out immutable snapshots.

    Admin updates replace the snapshot atomically; requests already holding a
    snapshot keep using it.
    """

    def __init__(self, initial: Optional[AISettings] = None):
        self._current = initial or AISettings()
        self._lock = threading.Lock()

    def snapshot(self) -> AISettings:
        with self._lock:
            return self._current

    def update(self, **changes: Any) -> AISettings:
        with self._lock:
            merged = {**self._current.model_dump(), **changes}
            updated = AISettings.model_validate(merged)
            self._current = updated
        logger.info("Updated matching settings: %s", sorted(changes))
        return updated

    def set_ai_enabled(self, enabled: bool) -> AISettings:
        return self.update(ai_enabled=enabled)

    def set_ai_match_limit(self, limit: int) -> AISettings:
        return self.update(ai_match_limit=limit)
