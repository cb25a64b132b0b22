"""
Optional provider enrichment for the top-ranked candidates.

For each shortlisted candidate the orchestrator:

- Builds a compact prompt from both profiles
- Reuses a cached result for the ordered (requester, candidate) profile pair when present
- Otherwise calls an OpenAI-compatible chat completions endpoint with JSON output
- Parses the assessment, adjusts the base score and records token usage
- Falls back to the base score on any failure; enrichment is never fatal

Calls for one suggestion request run concurrently on a bounded thread pool and
the orchestrator waits for all of them before returning.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from openai import OpenAI
from pydantic import ValidationError

from .cache import ResultCache, pair_key
from .data_models import CandidateMatch, EnrichmentResult, Profile
from .matching_models import ProviderAssessment
from .settings import AISettings
from .stores import TelemetrySink

logger = logging.getLogger(__name__)


TOKEN_USAGE_OPERATION = "match_analysis"
NOT_SPECIFIED = "Not specified"

RESPONSE_TEMPLATE = (
    '{"score_adjustment":<-20 to +20>,"semantic_similarity":<0-1>,'
    '"personalized_reason":"<1 sentence>","study_recommendations":["topic1","topic2"]}'
)


class ProviderResponseError(ValueError):
    """The provider answered, but not with a usable assessment."""


def _format_list(values: Optional[Sequence[str]]) -> str:
    if not values:
        return NOT_SPECIFIED
    return ", ".join(values)


def _or_not_specified(value: Optional[str]) -> str:
    return value if value else NOT_SPECIFIED


def _profile_line(profile: Profile) -> str:
    return "|".join(
        [
            _format_list(profile.subjects),
            _or_not_specified(profile.learning_style),
            _or_not_specified(profile.exam_goal),
            _format_list(profile.preferred_times),
        ]
    )


def build_prompt(requester: Profile, candidate: Profile, candidate_name: str) -> str:
    """Compact rating prompt: subjects|style|goal|times for both sides."""
    return (
        "Rate study partner match. JSON only.\n\n"
        f"A: {_profile_line(requester)}\n"
        f"B({candidate_name}): {_profile_line(candidate)}\n\n"
        f"{RESPONSE_TEMPLATE}"
    )


class ScoringProvider(Protocol):
    def complete(self, prompt: str, settings: AISettings) -> Dict[str, Any]:
        """Return the raw chat completion body as a dict."""
        ...


class OpenAICompatibleProvider:
    """Chat completions over the OpenAI SDK; works against Groq and OpenAI alike."""

    def complete(self, prompt: str, settings: AISettings) -> Dict[str, Any]:
        with OpenAI(
            api_key=settings.api_key,
            base_url=settings.provider_url,
            timeout=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
        ) as client:
            response = client.chat.completions.create(
                model=settings.provider_model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                response_format={"type": "json_object"},
            )
        return response.model_dump()


def parse_provider_response(
    raw: Dict[str, Any], base_score: int
) -> Tuple[EnrichmentResult, Optional[Dict[str, int]]]:
    """Turn a chat completion body into an enrichment result and its token usage.

    Raises:
        ProviderResponseError: No choices, no content, content is not JSON, or
            required assessment fields are missing or invalid.
    """
    choices = raw.get("choices") if isinstance(raw, dict) else None
    if not choices:
        raise ProviderResponseError("Provider response has no choices")
    try:
        content = choices[0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise ProviderResponseError(f"Provider response has no message content ({e})") from e
    if not content:
        raise ProviderResponseError("Provider message content is empty")

    try:
        payload = json.loads(content)
        assessment = ProviderAssessment.model_validate(payload)
    except (json.JSONDecodeError, ValidationError, TypeError, ValueError) as e:
        raise ProviderResponseError(f"Malformed assessment: {e}") from e

    adjusted = max(0, min(100, base_score + assessment.score_adjustment))
    result = EnrichmentResult(
        adjusted_score=adjusted,
        personalized_reason=assessment.personalized_reason,
        recommendations=list(assessment.study_recommendations),
        semantic_similarity=assessment.semantic_similarity,
    )

    usage = raw.get("usage")
    token_usage: Optional[Dict[str, int]] = None
    if isinstance(usage, dict):
        token_usage = {
            "prompt_tokens": int(usage.get("prompt_tokens") or 0),
            "completion_tokens": int(usage.get("completion_tokens") or 0),
            "total_tokens": int(usage.get("total_tokens") or 0),
        }
    return result, token_usage


class EnrichmentOrchestrator:
    def __init__(
        self,
        provider: ScoringProvider,
        cache: ResultCache[EnrichmentResult],
        telemetry: Optional[TelemetrySink] = None,
    ):
        self.provider = provider
        self.cache = cache
        self.telemetry = telemetry

    def enrich_one(
        self,
        requester_id: str,
        requester_profile: Profile,
        candidate: CandidateMatch,
        settings: AISettings,
    ) -> Optional[EnrichmentResult]:
        """Enrich a single candidate; ``None`` means keep the base score and reason."""
        if not settings.enrichment_available:
            return None

        key = pair_key(requester_profile.profile_id, candidate.profile.profile_id)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Enrichment cache hit for %s", key)
            return cached

        try:
            prompt = build_prompt(requester_profile, candidate.profile, candidate.user.display_name)
            raw = self.provider.complete(prompt, settings)
            result, usage = parse_provider_response(raw, candidate.base_score)
            if usage is not None and self.telemetry is not None:
                self.telemetry.record_token_usage(
                    requester_id,
                    usage["prompt_tokens"],
                    usage["completion_tokens"],
                    usage["total_tokens"],
                    TOKEN_USAGE_OPERATION,
                )
        except Exception as e:
            logger.warning(
                "AI enhancement failed for candidate %s, falling back to rule-based: %s",
                candidate.user.id,
                e,
            )
            return None

        self.cache.put(key, result)
        return result

    def enrich(
        self,
        requester_id: str,
        requester_profile: Profile,
        candidates: List[CandidateMatch],
        settings: AISettings,
    ) -> Dict[str, EnrichmentResult]:
        """Enrich all candidates concurrently and return successes keyed by candidate user id.

        Blocks until every call has either succeeded or fallen back.
        """
        if not candidates or not settings.enrichment_available:
            return {}

        workers = min(settings.provider_max_workers, len(candidates))
        logger.info(
            "AI matching enabled (limit: %s), enhancing top %s candidates",
            settings.ai_match_limit,
            len(candidates),
        )
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="enrich") as executor:
            futures = [
                (c.user.id, executor.submit(self.enrich_one, requester_id, requester_profile, c, settings))
                for c in candidates
            ]
            wait([f for _, f in futures])

        results: Dict[str, EnrichmentResult] = {}
        for candidate_id, future in futures:
            result = future.result()
            if result is not None:
                results[candidate_id] = result
        return results
