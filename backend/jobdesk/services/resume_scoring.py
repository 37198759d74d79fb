import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..schemas.ai import Opportunity, ResumeScore
from ..utils.error_handlers import handle_ai_service_error
from .ai_client import AIClientError, RetryingCompletionClient
from .ai_common import extract_first_json_object
from .ai_prompts import resume_score_prompt
from .score_cache import ScoreResultCache
from .score_rubric import (
    breakdown_from_scores,
    empty_scores,
    normalize_total_score,
    recommendation_for,
)


logger = logging.getLogger(__name__)

SCORE_MAX_TOKENS = 4000
SCORE_TEMPERATURE = 0.3


def fallback_score(*, comment: str, level: str, reason: str) -> dict[str, Any]:
    scores = empty_scores(reason)
    return {
        "scores": scores,
        "total_score": 0,
        "recommendation_level": level,
        "overall_comment": comment,
        "breakdown": breakdown_from_scores(scores),
    }


def parse_score_response(raw_text: str) -> dict[str, Any]:
    """Validate a model score response and fill in derived fields. Raises ValueError."""
    obj = extract_first_json_object(raw_text)
    scores = obj.get("scores") if isinstance(obj.get("scores"), dict) else {}
    obj["scores"] = scores
    obj["total_score"] = normalize_total_score(obj.get("total_score"), scores)
    try:
        validated = ResumeScore.model_validate(obj)
    except PydanticValidationError as e:
        raise ValueError(f"Invalid score payload: {e.error_count()} error(s)") from e

    out = validated.model_dump()
    if not out["recommendation_level"]:
        out["recommendation_level"] = recommendation_for(out["total_score"])
    out["breakdown"] = breakdown_from_scores(out["scores"])
    return out


async def score_resume(
    *,
    client: RetryingCompletionClient,
    cache: ScoreResultCache | None,
    resume_text: str,
    opportunity: Opportunity,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Returns (score_dict, meta).

    Checks the content-addressed cache first; on a miss calls the model and caches a
    successfully parsed result. Provider failures and unparsable output degrade to a
    zero-score template (meta["fallback"] = True), which is never cached.
    """
    opportunity_key = opportunity.identity()
    meta: dict[str, Any] = {
        "from_cache": False,
        "fallback": False,
        "warnings": [],
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }

    if cache is not None:
        cached = cache.get(resume_text, opportunity_key)
        if cached is not None:
            meta["from_cache"] = True
            return cached, meta

    request = client.build_request(
        resume_score_prompt(resume_text=resume_text, opportunity=opportunity),
        max_tokens=SCORE_MAX_TOKENS,
        temperature=SCORE_TEMPERATURE,
    )
    try:
        result = await client.complete(request)
    except AIClientError as e:
        meta.update(handle_ai_service_error(e, operation="resume scoring"))
        meta["fallback"] = True
        meta["warnings"].append(f"AI call failed: {type(e).__name__}")
        return (
            fallback_score(
                comment="The scoring service is temporarily unavailable. Please try again later.",
                level="Service unavailable",
                reason="Service error",
            ),
            meta,
        )

    meta["model"] = result.model
    meta["latency_ms"] = result.latency_ms
    meta["attempts"] = result.attempts

    try:
        score = parse_score_response(result.content)
    except (ValueError, json.JSONDecodeError) as e:
        logger.warning("Score response parse failed: %s", e)
        meta["fallback"] = True
        meta["warnings"].append(f"AI response parse failed: {type(e).__name__}")
        out = fallback_score(
            comment="The scoring result could not be read. Please try again.",
            level="System error",
            reason="AI response could not be parsed",
        )
        out["raw_response"] = result.content
        return out, meta

    if cache is not None:
        cache.set(resume_text, opportunity_key, score)
    return score, meta
