import os
from pathlib import Path
from dotenv import load_dotenv

# Override=True so changes in backend/.env take effect on process reload.
#
# Automated tests set DISABLE_DOTENV=1 so a developer's .env (with real provider keys)
# never leaks into the test process.
if os.getenv("DISABLE_DOTENV") != "1":
    load_dotenv(override=True)

_TRUTHY = {"1", "true", "True", "yes", "YES"}


def parse_api_keys(raw: str | None) -> list[tuple[str, str]]:
    """
    Parse AI_API_KEYS into [(name, secret), ...] in priority order.

    Items are comma separated; each is either `secret` or `name=secret`.
    Unnamed items get `key-<n>` (1-based position).
    """
    out: list[tuple[str, str]] = []
    for i, item in enumerate((raw or "").split(","), start=1):
        item = item.strip()
        if not item:
            continue
        if "=" in item:
            name, secret = item.split("=", 1)
            name, secret = name.strip(), secret.strip()
        else:
            name, secret = "", item
        if not secret:
            continue
        out.append((name or f"key-{i}", secret))
    return out


_raw_database_url = (os.getenv("DATABASE_URL") or "").strip()
# Default to a local SQLite DB so the backend can start out-of-the-box.
_default_sqlite_path = (Path(__file__).resolve().parent.parent / "dev.db").as_posix()
DATABASE_URL = _raw_database_url or f"sqlite:///{_default_sqlite_path}"

# -------------------- Completion provider (OpenAI-compatible) --------------------
AI_BASE_URL = os.getenv("AI_BASE_URL", "https://api.siliconflow.cn/v1")
AI_MODEL = os.getenv("AI_MODEL", "deepseek-ai/DeepSeek-V3")
AI_MAX_TOKENS = int(os.getenv("AI_MAX_TOKENS", "4000") or "4000")
AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.7") or "0.7")

# AI_API_KEY is kept as a single-key fallback for older deployments.
AI_API_KEYS = parse_api_keys(os.getenv("AI_API_KEYS") or os.getenv("AI_API_KEY"))
AI_KEY_MAX_ERRORS = int(os.getenv("AI_KEY_MAX_ERRORS", "3") or "3")
AI_KEY_RESET_INTERVAL_S = float(os.getenv("AI_KEY_RESET_INTERVAL_S", "3600") or "3600")

AI_TIMEOUT_S = float(os.getenv("AI_TIMEOUT_S", "60") or "60")
AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", "3") or "3")
AI_LOG_PAYLOADS = (os.getenv("AI_LOG_PAYLOADS", "0") or "0").strip() in _TRUTHY

# -------------------- Score cache --------------------
SCORE_CACHE_TTL_S = float(os.getenv("SCORE_CACHE_TTL_S", "86400") or "86400")
# "database" persists through SQLAlchemy; "memory" keeps entries for the process lifetime.
SCORE_CACHE_BACKEND = (os.getenv("SCORE_CACHE_BACKEND", "database") or "database").strip().lower()

# Key administration endpoints are disabled while this is empty.
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
