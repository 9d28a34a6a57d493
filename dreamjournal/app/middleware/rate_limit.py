"""Fixed-window rate limiting for the dream journal API.

Each protected operation gets its own limiter instance with its own budget
(create is stricter than delete, which is stricter than general reads).
Limiters are keyed by a coarse client fingerprint and hold their state in
memory; losing that state only resets fairness, never correctness.
"""

import asyncio
import hashlib
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fastapi import Request, Response

from dreamjournal.app.core.config import Settings
from dreamjournal.app.core.logging import get_log_context, get_logger
from dreamjournal.app.exceptions import RateLimitExceededError

logger = get_logger(__name__)

# Proxy headers carrying the real client address, first match wins
CLIENT_IP_HEADERS = ("X-Forwarded-For", "X-Real-IP", "CF-Connecting-IP")
USER_AGENT_PREFIX_LENGTH = 50


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: Optional[int] = None

    @property
    def reset_time_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_time, tz=timezone.utc).isoformat()


@dataclass
class RateLimitEntry:
    """Counter for one client key in its current window."""
    client_key: str
    count: int
    window_reset_at: float


class InMemoryRateLimiter:
    """In-memory fixed-window rate limiter.

    Every request in ``[window_start, window_reset_at)`` shares one counter;
    the counter resets, rather than decays, once the window has passed.

    A single asyncio.Lock guards the whole map, so read-check-increment is
    atomic per request and the periodic sweep never races an increment.

    Memory is bounded two ways:
    - the background sweep removes entries whose window elapsed
    - an LRU cap evicts the oldest entries when too many keys are tracked
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        name: str = "default",
        sweep_interval: float = 300.0,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize rate limiter.

        Args:
            max_requests: Requests allowed per key per window
            window_seconds: Window length in seconds
            name: Label used in logs
            sweep_interval: Seconds between background sweeps of expired entries
            max_entries: Maximum number of tracked keys (LRU eviction)
            clock: Time source returning epoch seconds
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self.sweep_interval = sweep_interval
        self._max_entries = max_entries
        self._clock = clock

        self._entries: OrderedDict[str, RateLimitEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def __len__(self) -> int:
        return len(self._entries)

    def _enforce_lru_limit(self) -> None:
        if len(self._entries) >= self._max_entries:
            # Remove oldest 20% of entries
            remove_count = max(1, int(self._max_entries * 0.2))
            for _ in range(min(remove_count, len(self._entries))):
                self._entries.popitem(last=False)

    async def check(self, client_key: str) -> RateLimitResult:
        """Count a request for ``client_key`` and report whether it is allowed.

        The first request for a new key is always allowed and consumes one
        unit of quota.
        """
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(client_key)

            if entry is None or now >= entry.window_reset_at:
                if entry is None:
                    self._enforce_lru_limit()
                entry = RateLimitEntry(
                    client_key=client_key,
                    count=1,
                    window_reset_at=now + self.window_seconds,
                )
                self._entries[client_key] = entry
                self._entries.move_to_end(client_key)
                return RateLimitResult(
                    allowed=True,
                    limit=self.max_requests,
                    remaining=self.max_requests - 1,
                    reset_time=entry.window_reset_at,
                )

            self._entries.move_to_end(client_key)

            if entry.count >= self.max_requests:
                return RateLimitResult(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_time=entry.window_reset_at,
                    retry_after=max(1, math.ceil(entry.window_reset_at - now)),
                )

            entry.count += 1
            return RateLimitResult(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - entry.count,
                reset_time=entry.window_reset_at,
            )

    async def cleanup(self) -> int:
        """Remove entries whose window has elapsed.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            now = self._clock()
            expired = [
                key for key, entry in self._entries.items()
                if now >= entry.window_reset_at
            ]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Rate limiter '{self.name}' swept {len(expired)} expired entries")
        return len(expired)

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_sweeps())
        logger.debug(
            f"Started rate limiter sweep '{self.name}' (interval: {self.sweep_interval}s)"
        )

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning(f"Rate limiter sweep '{self.name}' did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None

    async def _run_sweeps(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.sweep_interval)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                await self.cleanup()
            except Exception as e:
                logger.error(f"Error during rate limiter sweep '{self.name}': {e}")


@dataclass
class RateLimiters:
    """The limiter instances used by the API, one budget per operation."""
    create: InMemoryRateLimiter
    delete: InMemoryRateLimiter
    general: InMemoryRateLimiter

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "RateLimiters":
        sweep = app_settings.rate_limit_sweep_interval_seconds
        return cls(
            create=InMemoryRateLimiter(
                max_requests=app_settings.rate_limit_create_requests,
                window_seconds=app_settings.rate_limit_create_window_seconds,
                name="create",
                sweep_interval=sweep,
            ),
            delete=InMemoryRateLimiter(
                max_requests=app_settings.rate_limit_delete_requests,
                window_seconds=app_settings.rate_limit_delete_window_seconds,
                name="delete",
                sweep_interval=sweep,
            ),
            general=InMemoryRateLimiter(
                max_requests=app_settings.rate_limit_general_requests,
                window_seconds=app_settings.rate_limit_general_window_seconds,
                name="general",
                sweep_interval=sweep,
            ),
        )

    def all(self) -> Dict[str, InMemoryRateLimiter]:
        return {"create": self.create, "delete": self.delete, "general": self.general}

    async def start(self) -> None:
        for limiter in self.all().values():
            await limiter.start()

    async def stop(self) -> None:
        for limiter in self.all().values():
            await limiter.stop()


def get_client_key(request: Request) -> str:
    """Derive the rate limit key for a request.

    Uses the first proxy-supplied client address (X-Forwarded-For, X-Real-IP,
    CF-Connecting-IP), falling back to the socket peer, plus a truncated
    User-Agent. The result is hashed so raw addresses never sit in memory.
    """
    client_ip = None
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            client_ip = value.split(",")[0].strip()
            if client_ip:
                break
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    user_agent = request.headers.get("User-Agent") or "unknown"
    fingerprint = f"{client_ip}-{user_agent[:USER_AGENT_PREFIX_LENGTH]}"

    # 32 hex chars (128 bits) for collision resistance
    key_hash = hashlib.sha256(fingerprint.encode()).hexdigest()[:32]
    return f"ratelimit:{key_hash}"


def apply_rate_limit_headers(response: Response, result: RateLimitResult) -> None:
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = result.reset_time_iso


def rate_limit(limiter_name: str) -> Callable:
    """Build a FastAPI dependency enforcing the named limiter.

    The limiters live on ``app.state.rate_limiters`` so each app instance
    (and each test) owns its counters.

    Usage:
        @router.post("/dreams/add", dependencies=[Depends(rate_limit("create"))])
    """

    async def dependency(request: Request, response: Response) -> RateLimitResult:
        limiters: RateLimiters = request.app.state.rate_limiters
        limiter = getattr(limiters, limiter_name)
        key = get_client_key(request)
        result = await limiter.check(key)

        if not result.allowed:
            logger.info(
                f"Rate limit exceeded on '{limiter_name}'",
                extra=get_log_context(
                    request_id=getattr(request.state, "request_id", None),
                    client_key=key,
                    path=request.url.path,
                    retry_after=result.retry_after,
                ),
            )
            raise RateLimitExceededError(
                retry_after=result.retry_after or 1,
                reset_at=result.reset_time,
            )

        apply_rate_limit_headers(response, result)
        request.state.rate_limit = result
        return result

    return dependency
