import json
import logging
from typing import Any

from ..schemas.ai import Opportunity
from .ai_client import RetryingCompletionClient
from .ai_common import extract_first_json_object
from .ai_prompts import gap_analysis_prompt


logger = logging.getLogger(__name__)

GAP_MAX_TOKENS = 6000
GAP_TEMPERATURE = 0.3


class GapAnalysisError(ValueError):
    """Model output was missing or incomplete. `raw_response` is kept for debugging."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


async def analyze_gaps(
    *,
    client: RetryingCompletionClient,
    resume_text: str,
    opportunity: Opportunity,
) -> dict[str, Any]:
    """
    Ask the model for a résumé gap report against `opportunity`.

    Completion failures (AIClientError) propagate; unusable output raises GapAnalysisError.
    """
    request = client.build_request(
        gap_analysis_prompt(resume_text=resume_text, opportunity=opportunity),
        max_tokens=GAP_MAX_TOKENS,
        temperature=GAP_TEMPERATURE,
    )
    result = await client.complete(request)

    try:
        report = extract_first_json_object(result.content)
    except (ValueError, json.JSONDecodeError) as e:
        logger.warning("Gap analysis parse failed: %s", e)
        raise GapAnalysisError("AI response could not be parsed", raw_response=result.content) from e

    if not report.get("overall_score") or not isinstance(report.get("dimension_scores"), dict):
        logger.warning("Gap analysis incomplete: keys=%s", sorted(report))
        raise GapAnalysisError("AI response is missing overall_score or dimension_scores", raw_response=result.content)

    report.setdefault("optimization_suggestions", {})
    report.setdefault("rewrite_examples", [])
    report.setdefault("missing_opportunities", [])
    report.setdefault("summary", "")
    return report
