import hmac

from fastapi import Header, Request

from ..config import ADMIN_TOKEN
from ..services.ai_client import RetryingCompletionClient
from ..services.key_rotation import KeyRotationGateway
from ..services.score_cache import ScoreResultCache
from ..utils.error_handlers import ForbiddenError, get_error_message


# The process entry point (main.py, or a test fixture) puts one instance of each on app.state.

def get_gateway(request: Request) -> KeyRotationGateway:
    return request.app.state.gateway


def get_completion_client(request: Request) -> RetryingCompletionClient:
    return request.app.state.completion_client


def get_score_cache(request: Request) -> ScoreResultCache | None:
    return getattr(request.app.state, "score_cache", None)


def require_admin(request: Request, x_admin_token: str | None = Header(default=None)) -> None:
    expected = getattr(request.app.state, "admin_token", ADMIN_TOKEN) or ""
    if not expected:
        raise ForbiddenError(get_error_message("admin_disabled"))
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise ForbiddenError(get_error_message("admin_forbidden"))
