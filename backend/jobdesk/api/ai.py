import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from ..config import AI_KEY_MAX_ERRORS
from ..schemas.ai import AddKeyRequest, EmailRequest, GapAnalysisRequest, ResumeOptimizationRequest, ScoreRequest
from ..services.ai_client import AIClientError, RetryingCompletionClient
from ..services.gap_analysis import GapAnalysisError, analyze_gaps
from ..services.key_rotation import KeyRotationGateway
from ..services.outreach_email import generate_outreach_email
from ..services.resume_optimization import optimize_resume
from ..services.resume_scoring import score_resume
from ..services.score_cache import ScoreResultCache
from ..utils.error_handlers import (
    AIResponseError,
    AIServiceError,
    NotFoundError,
    ValidationError,
    get_error_message,
)
from .deps import get_completion_client, get_gateway, get_score_cache, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["AI"])


@router.post("/score")
async def score(
    payload: ScoreRequest,
    client: RetryingCompletionClient = Depends(get_completion_client),
    cache: ScoreResultCache | None = Depends(get_score_cache),
):
    data, meta = await score_resume(
        client=client,
        cache=cache,
        resume_text=payload.resume_text,
        opportunity=payload.opportunity,
    )
    return {"success": not meta.get("fallback"), "data": data, "meta": meta}


@router.post("/gap-analysis")
async def gap_analysis(
    payload: GapAnalysisRequest,
    client: RetryingCompletionClient = Depends(get_completion_client),
):
    try:
        report = await analyze_gaps(
            client=client,
            resume_text=payload.resume_text,
            opportunity=payload.opportunity,
        )
    except GapAnalysisError as e:
        raise AIResponseError(
            get_error_message("ai_bad_response"),
            details={"reason": str(e), "ai_response": e.raw_response[:2000]},
        ) from e
    except AIClientError as e:
        logger.warning("Gap analysis failed: %s", e)
        raise AIServiceError(get_error_message("ai_unavailable"), details={"reason": str(e)}) from e
    return {"success": True, "data": report}


@router.post("/generate-email")
async def generate_email(
    payload: EmailRequest,
    client: RetryingCompletionClient = Depends(get_completion_client),
):
    email, meta = await generate_outreach_email(
        client=client,
        user_name=payload.user_name,
        resume_text=payload.resume_text,
        opportunity=payload.opportunity,
    )
    return {"success": True, "subject": email["subject"], "body": email["body"], "fallback": meta["fallback"]}


@router.post("/resume-optimization")
async def resume_optimization(
    payload: ResumeOptimizationRequest,
    client: RetryingCompletionClient = Depends(get_completion_client),
):
    opp = payload.opportunity
    report, raw_text, meta = await optimize_resume(
        client=client,
        resume_text=payload.resume_text,
        opportunity=opp,
    )
    return {
        "success": True,
        "report": report,
        "raw_text": raw_text,
        "fallback": meta["fallback"],
        "metadata": {
            "company": opp.company,
            "position": opp.title,
            "location": opp.location,
            "tags": opp.tags,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        },
    }


@router.get("/status")
async def api_status(gateway: KeyRotationGateway = Depends(get_gateway)):
    return gateway.status()


# -------------------- Key administration --------------------


@router.get("/keys", dependencies=[Depends(require_admin)])
async def list_keys(gateway: KeyRotationGateway = Depends(get_gateway)):
    return {"success": True, "keys": gateway.credentials(), "status": gateway.status()}


@router.post("/keys", status_code=201, dependencies=[Depends(require_admin)])
async def add_key(payload: AddKeyRequest, gateway: KeyRotationGateway = Depends(get_gateway)):
    try:
        cred = gateway.add_credential(
            payload.key,
            payload.name,
            priority=payload.priority,
            max_errors=payload.max_errors or AI_KEY_MAX_ERRORS,
        )
    except ValueError as e:
        raise ValidationError(get_error_message("validation_error"), details={"reason": str(e)}) from e
    return {"success": True, "key": cred.public_view(), "status": gateway.status()}


@router.post("/keys/switch", dependencies=[Depends(require_admin)])
async def switch_key(gateway: KeyRotationGateway = Depends(get_gateway)):
    gateway.advance_to_next()
    return {"success": True, "status": gateway.status()}


@router.post("/keys/reset", dependencies=[Depends(require_admin)])
async def reset_key_errors(gateway: KeyRotationGateway = Depends(get_gateway)):
    gateway.reset_all_error_counts()
    return {"success": True, "status": gateway.status()}


@router.post("/keys/{name}/disable", dependencies=[Depends(require_admin)])
async def disable_key(name: str, gateway: KeyRotationGateway = Depends(get_gateway)):
    if not gateway.disable(name):
        raise NotFoundError(get_error_message("key_not_found"))
    return {"success": True, "status": gateway.status()}


@router.post("/keys/{name}/enable", dependencies=[Depends(require_admin)])
async def enable_key(name: str, gateway: KeyRotationGateway = Depends(get_gateway)):
    if not gateway.enable(name):
        raise NotFoundError(get_error_message("key_not_found"))
    return {"success": True, "status": gateway.status()}


@router.delete("/score-cache", dependencies=[Depends(require_admin)])
async def clear_score_cache(cache: ScoreResultCache | None = Depends(get_score_cache)):
    if cache is None:
        raise HTTPException(status_code=404, detail=get_error_message("not_found"))
    return {"success": True, "removed": cache.clear()}
