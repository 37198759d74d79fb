"""
Credential pool for the completion provider.

Keeps a priority-ordered list of API keys, resolves the "current" one, and demotes keys
whose consecutive error count reaches their threshold. Demoted keys come back when
error counts are reset (see key_reset_scheduler) or when re-enabled by an admin.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable


logger = logging.getLogger(__name__)

DEFAULT_MAX_ERRORS = 3
DEFAULT_PRIORITY = 999

_NONE_AVAILABLE = "none available"


class NoCredentialAvailable(RuntimeError):
    """Every credential is inactive or over its error threshold."""

    def __init__(self, total_count: int = 0):
        super().__init__(f"No API key available (0/{total_count} eligible)")
        self.total_count = total_count


def mask_secret(secret: str) -> str:
    s = secret or ""
    if len(s) <= 8:
        return "*" * len(s)
    return f"{s[:4]}…{s[-2:]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class Credential:
    secret: str
    name: str
    priority: int = DEFAULT_PRIORITY
    is_active: bool = True
    error_count: int = 0
    max_errors: int = DEFAULT_MAX_ERRORS
    last_used: datetime | None = None
    # Tie-breaker so equal priorities keep insertion order.
    seq: int = field(default=0, repr=False)

    @property
    def eligible(self) -> bool:
        return self.is_active and self.error_count < self.max_errors

    def public_view(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "key": mask_secret(self.secret),
            "priority": self.priority,
            "active": self.is_active,
            "error_count": self.error_count,
            "max_errors": self.max_errors,
            "eligible": self.eligible,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }


class KeyRotationGateway:
    """
    Selects the current credential and adapts the selection from reported outcomes.

    The rotation cursor is an index into the eligible list (active and under threshold,
    sorted by priority) and is taken modulo that list's length at lookup time.

    All mutations are synchronous and guarded by one lock, so they never interleave
    with each other even when FastAPI runs sync handlers on worker threads.
    """

    def __init__(
        self,
        credentials: Iterable[Credential] = (),
        *,
        now: Callable[[], datetime] = _utcnow,
    ):
        self._lock = threading.RLock()
        self._seq = itertools.count()
        self._now = now
        self._credentials: list[Credential] = []
        self._cursor = 0
        for c in credentials:
            c.seq = next(self._seq)
            self._credentials.append(c)
        self._sort()

    @classmethod
    def from_config(
        cls,
        keys: Iterable[tuple[str, str]],
        *,
        max_errors: int = DEFAULT_MAX_ERRORS,
    ) -> "KeyRotationGateway":
        creds = [
            Credential(secret=secret, name=name, priority=i, max_errors=max_errors)
            for i, (name, secret) in enumerate(keys, start=1)
        ]
        return cls(creds)

    # ---------------------------------------------------------------- selection

    def _sort(self) -> None:
        self._credentials.sort(key=lambda c: (c.priority, c.seq))

    def _eligible(self) -> list[Credential]:
        # _credentials is kept sorted, so filtering preserves priority order.
        return [c for c in self._credentials if c.eligible]

    def _current(self, eligible: list[Credential]) -> Credential | None:
        if not eligible:
            return None
        return eligible[self._cursor % len(eligible)]

    def acquire(self) -> Credential:
        """Return the current credential; raises NoCredentialAvailable when none is eligible."""
        with self._lock:
            cur = self._current(self._eligible())
            if cur is None:
                raise NoCredentialAvailable(total_count=len(self._credentials))
            return cur

    def get_current_credential(self) -> str:
        return self.acquire().secret

    # ---------------------------------------------------------------- feedback

    def report_error(self, err: Any = None, *, credential: Credential | None = None) -> None:
        """
        Count one failure against `credential` (default: the current one).

        Reaching the threshold drops it out of the eligible list; the cursor is adjusted
        so the next lookup resolves to the credential that followed it. Never raises.
        """
        try:
            with self._lock:
                eligible = self._eligible()
                target = credential or self._current(eligible)
                if target is None:
                    logger.warning("API key error reported with no eligible key: %s", err)
                    return

                current = self._current(eligible)
                target.error_count += 1
                target.last_used = self._now()
                logger.warning(
                    "API key %s error (%s/%s): %s",
                    target.name,
                    target.error_count,
                    target.max_errors,
                    err,
                )
                if target.error_count < target.max_errors or target not in eligible:
                    return

                logger.warning("API key %s reached its error threshold; disabling until reset", target.name)
                self._drop_from_rotation(eligible, target, current)
        except Exception:
            logger.exception("Failed to record API key error")

    def _drop_from_rotation(
        self,
        old_eligible: list[Credential],
        dropped: Credential,
        current: Credential | None,
    ) -> None:
        new_eligible = [c for c in old_eligible if c is not dropped]
        if not new_eligible:
            self._cursor = 0
            logger.warning("No API keys left in rotation")
            return
        if current is dropped:
            # The slot it occupied now holds its successor.
            self._cursor = old_eligible.index(dropped) % len(new_eligible)
            logger.info("Switched to API key %s", new_eligible[self._cursor].name)
        elif current is not None:
            # Some other credential was dropped; keep pointing at the same current one.
            self._cursor = new_eligible.index(current)

    def report_success(self, *, credential: Credential | None = None) -> None:
        try:
            with self._lock:
                target = credential or self._current(self._eligible())
                if target is None:
                    return
                target.error_count = 0
                target.last_used = self._now()
        except Exception:
            logger.exception("Failed to record API key success")

    # ---------------------------------------------------------------- admin

    def advance_to_next(self) -> None:
        with self._lock:
            eligible = self._eligible()
            if len(eligible) <= 1:
                logger.warning("No other API key available to switch to")
                return
            self._cursor = (self._cursor % len(eligible) + 1) % len(eligible)
            logger.info("Switched to API key %s", eligible[self._cursor].name)

    def reset_all_error_counts(self) -> None:
        with self._lock:
            for c in self._credentials:
                c.error_count = 0
        logger.info("Reset error counts for all API keys")

    def add_credential(
        self,
        secret: str,
        name: str,
        priority: int = DEFAULT_PRIORITY,
        max_errors: int = DEFAULT_MAX_ERRORS,
    ) -> Credential:
        if not (secret or "").strip():
            raise ValueError("API key must not be empty")
        with self._lock:
            current = self._current(self._eligible())
            cred = Credential(
                secret=secret.strip(),
                name=(name or "").strip() or f"key-{len(self._credentials) + 1}",
                priority=int(priority),
                max_errors=int(max_errors),
                seq=next(self._seq),
            )
            self._credentials.append(cred)
            self._sort()
            self._repin(current)
        logger.info("Added API key %s (priority=%s)", cred.name, cred.priority)
        return cred

    def _find(self, key_or_name: str) -> Credential | None:
        for c in self._credentials:
            if c.secret == key_or_name or c.name == key_or_name:
                return c
        return None

    def _repin(self, current: Credential | None) -> None:
        # Keep the same concrete credential current after the eligible list changes shape.
        if current is None:
            return
        eligible = self._eligible()
        if current in eligible:
            self._cursor = eligible.index(current)

    def disable(self, key_or_name: str) -> bool:
        with self._lock:
            cred = self._find(key_or_name)
            if cred is None:
                return False
            eligible = self._eligible()
            current = self._current(eligible)
            cred.is_active = False
            if cred in eligible:
                self._drop_from_rotation(eligible, cred, current)
        logger.info("Disabled API key %s", cred.name)
        return True

    def enable(self, key_or_name: str) -> bool:
        with self._lock:
            cred = self._find(key_or_name)
            if cred is None:
                return False
            current = self._current(self._eligible())
            cred.is_active = True
            cred.error_count = 0
            self._repin(current)
        logger.info("Enabled API key %s", cred.name)
        return True

    # ---------------------------------------------------------------- observability

    def status(self) -> dict[str, Any]:
        with self._lock:
            eligible = self._eligible()
            cur = self._current(eligible)
            return {
                "current_key": cur.name if cur else _NONE_AVAILABLE,
                "available_count": len(eligible),
                "total_count": len(self._credentials),
            }

    def credentials(self) -> list[dict[str, Any]]:
        with self._lock:
            return [c.public_view() for c in self._credentials]
