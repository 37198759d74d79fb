import asyncio
import enum
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from .key_rotation import Credential, KeyRotationGateway, NoCredentialAvailable


logger = logging.getLogger(__name__)

DEFAULT_MODEL = "deepseek-ai/DeepSeek-V3"
DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7

BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 5000

# C0 and C1 control characters; the provider rejects bodies containing them.
_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u001f\u007f-\u009f]")

_AUTH_OR_QUOTA_STATUSES = {401, 429}
_AUTH_OR_QUOTA_MARKERS = ("insufficient", "quota", "balance", "limit")


class AIClientError(RuntimeError):
    pass


class ProviderError(AIClientError):
    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProviderAuthOrQuotaError(ProviderError):
    """Rejected for authorization, rate limit or exhausted balance. Another key may work."""


class ProviderTransientError(ProviderError):
    """Network failure, timeout, unexpected status or malformed payload."""


class AIClientTimeout(ProviderTransientError):
    pass


class AllAttemptsExhausted(AIClientError):
    def __init__(
        self,
        *,
        attempts: int,
        available_count: int,
        total_count: int,
        current_key: str,
        last_error: BaseException | None,
    ):
        super().__init__(
            f"All AI API attempts failed after {attempts} attempt(s). "
            f"Current key: {current_key}, available keys: {available_count}/{total_count}. "
            f"Last error: {last_error}"
        )
        self.attempts = attempts
        self.available_count = available_count
        self.total_count = total_count
        self.current_key = current_key
        self.last_error = last_error


class ErrorKind(enum.Enum):
    AUTH_OR_QUOTA = "auth_or_quota"
    TRANSIENT = "transient"


def classify_error(status_code: int | None, body: str = "") -> ErrorKind:
    """
    Decide whether a failed response is worth rotating keys for.

    Providers do not agree on structured error codes, so besides 401/429 the body text is
    matched (case-insensitively) for balance/quota wording.
    """
    if status_code in _AUTH_OR_QUOTA_STATUSES:
        return ErrorKind.AUTH_OR_QUOTA
    text = (body or "").lower()
    if any(marker in text for marker in _AUTH_OR_QUOTA_MARKERS):
        return ErrorKind.AUTH_OR_QUOTA
    return ErrorKind.TRANSIENT


def backoff_delay_ms(attempt: int) -> int:
    """Delay after a failed generic attempt `attempt` (1-based)."""
    return min(BACKOFF_BASE_MS * 2 ** (max(attempt, 1) - 1), BACKOFF_CAP_MS)


def sanitize_text(s: str) -> str:
    return _CONTROL_CHARS_RE.sub("", s or "").strip()


def _safe_truncate(s: str, n: int = 800) -> str:
    s = s or ""
    if len(s) <= n:
        return s
    return s[:n] + "…"


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class CompletionRequest:
    messages: tuple[ChatMessage, ...]
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE

    @classmethod
    def from_prompt(cls, prompt: str, **kwargs: Any) -> "CompletionRequest":
        return cls(messages=(ChatMessage(role="user", content=prompt),), **kwargs)

    def to_body(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": m.role, "content": sanitize_text(m.content)} for m in self.messages],
            "max_tokens": int(self.max_tokens),
            "temperature": float(self.temperature),
        }


@dataclass(frozen=True)
class CompletionResult:
    content: str
    usage: dict[str, int] | None = None
    model: str = ""
    key_name: str = ""
    attempts: int = 1
    latency_ms: int = 0
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


def _parse_completion(data: Any) -> tuple[str, dict[str, int] | None]:
    # Typical shape:
    # { choices: [ { message: { role, content }, finish_reason } ], usage: {...} }
    if not isinstance(data, dict):
        raise ProviderTransientError("AI API returned a non-object payload", status_code=200)
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise ProviderTransientError("AI API payload is missing choices", status_code=200)
    message = choices[0].get("message")
    if not isinstance(message, dict) or not isinstance(message.get("content"), str):
        raise ProviderTransientError("AI API payload is missing message content", status_code=200)
    usage = data.get("usage")
    return message["content"], usage if isinstance(usage, dict) else None


class RetryingCompletionClient:
    """
    One logical chat completion with key rotation and bounded retries.

    Each attempt resolves a key through the gateway and reports the outcome against that
    exact key. Auth/quota failures retry immediately on the next eligible key; other
    failures back off exponentially (1s, 2s, 4s, capped at 5s).
    """

    def __init__(
        self,
        gateway: KeyRotationGateway,
        *,
        base_url: str,
        default_model: str = DEFAULT_MODEL,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        default_temperature: float = DEFAULT_TEMPERATURE,
        default_max_attempts: int = 3,
        timeout_s: float = 60.0,
        log_payloads: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.url = f"{(base_url or '').rstrip('/')}/chat/completions"
        self.default_model = default_model
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature
        self.default_max_attempts = default_max_attempts
        self.timeout_s = timeout_s
        self.log_payloads = log_payloads
        self._transport = transport
        self._sleep = sleep

    def build_request(
        self,
        prompt: str,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> CompletionRequest:
        return CompletionRequest.from_prompt(
            prompt,
            model=model or self.default_model,
            max_tokens=max_tokens or self.default_max_tokens,
            temperature=self.default_temperature if temperature is None else temperature,
        )

    async def _send(self, body: dict[str, Any], credential: Credential) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {credential.secret}",
            "Content-Type": "application/json; charset=utf-8",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                if self.log_payloads:
                    logger.info(
                        "AI request key=%s url=%s body=%s",
                        credential.name,
                        self.url,
                        _safe_truncate(json.dumps(body, ensure_ascii=False)),
                    )
                return await client.post(self.url, json=body, headers=headers)
        except httpx.TimeoutException:
            raise AIClientTimeout("AI request timed out") from None
        except httpx.RequestError as e:
            raise ProviderTransientError(f"AI request failed: {type(e).__name__}") from e

    async def _attempt(self, body: dict[str, Any], credential: Credential) -> tuple[str, dict[str, int] | None, dict]:
        r = await self._send(body, credential)
        if r.status_code >= 400:
            text = _safe_truncate(r.text, 1000)
            message = f"AI API call failed: HTTP {r.status_code} - {text}"
            if classify_error(r.status_code, text) is ErrorKind.AUTH_OR_QUOTA:
                raise ProviderAuthOrQuotaError(message, status_code=r.status_code, body=text)
            raise ProviderTransientError(message, status_code=r.status_code, body=text)
        try:
            data = r.json()
        except ValueError:
            raise ProviderTransientError("AI API returned invalid JSON", status_code=r.status_code) from None
        content, usage = _parse_completion(data)
        return content, usage, data

    def _exhausted(self, attempts: int, last_error: BaseException | None) -> AllAttemptsExhausted:
        status = self.gateway.status()
        return AllAttemptsExhausted(
            attempts=attempts,
            available_count=status["available_count"],
            total_count=status["total_count"],
            current_key=status["current_key"],
            last_error=last_error,
        )

    async def complete(self, request: CompletionRequest, max_attempts: int | None = None) -> CompletionResult:
        max_attempts = self.default_max_attempts if max_attempts is None else int(max_attempts)
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        body = request.to_body()
        start = time.perf_counter()
        last_error: BaseException | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                credential = self.gateway.acquire()
            except NoCredentialAvailable as e:
                logger.error("No API key available on attempt %s; last error: %s", attempt, last_error)
                raise self._exhausted(attempt - 1, last_error or e) from e

            logger.info("AI call attempt %s/%s using key %s", attempt, max_attempts, credential.name)
            try:
                content, usage, data = await self._attempt(body, credential)
            except ProviderAuthOrQuotaError as e:
                last_error = e
                logger.warning("AI key %s rejected (HTTP %s); rotating", credential.name, e.status_code)
                self.gateway.report_error(e, credential=credential)
                if self.gateway.status()["available_count"] == 0:
                    raise self._exhausted(attempt, e) from NoCredentialAvailable(
                        total_count=self.gateway.status()["total_count"]
                    )
                continue
            except ProviderTransientError as e:
                last_error = e
                logger.warning("AI call attempt %s failed: %s", attempt, e)
                self.gateway.report_error(e, credential=credential)
                # No point waiting when that failure took the last eligible key out of rotation.
                if attempt < max_attempts and self.gateway.status()["available_count"] > 0:
                    wait_ms = backoff_delay_ms(attempt)
                    logger.info("Retrying AI call in %sms", wait_ms)
                    await self._sleep(wait_ms / 1000)
                continue

            self.gateway.report_success(credential=credential)
            result = CompletionResult(
                content=content,
                usage=usage,
                model=str(data.get("model") or request.model),
                key_name=credential.name,
                attempts=attempt,
                latency_ms=int((time.perf_counter() - start) * 1000),
                raw=data,
            )
            logger.info(
                "AI ok key=%s model=%s attempts=%s latency_ms=%s",
                result.key_name,
                result.model,
                result.attempts,
                result.latency_ms,
            )
            return result

        raise self._exhausted(max_attempts, last_error)

    async def generate_text(
        self,
        prompt: str,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        max_attempts: int | None = None,
    ) -> str:
        request = self.build_request(prompt, model=model, max_tokens=max_tokens, temperature=temperature)
        result = await self.complete(request, max_attempts=max_attempts)
        return result.content
