"""Client-side CSRF token lifecycle for the dream journal API.

``SecureClient`` caches the CSRF token, refreshes it shortly before the
server would reject it, retries once more on security 403s after a forced
refresh, and coalesces concurrent refreshes into a single request.

Usage:
    async with SecureClient("https://dreams.example.com", header_value=secret) as client:
        resp = await client.secure_request("POST", "/api/dreams/add",
                                           json={"description": "I could fly"})
"""

import asyncio
import enum
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_HEADER_NAME = "X-Dream-Journal-Request"
CSRF_HEADER = "X-CSRF-Token"
SECURITY_ERROR = "Security validation failed"


class TokenState(str, enum.Enum):
    NO_TOKEN = "no_token"
    CACHED = "cached"
    REFRESHING = "refreshing"


class TokenFetchError(Exception):
    """The CSRF endpoint could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def is_security_failure(response: httpx.Response) -> bool:
    """Whether a response is a 403 caused by the request security checks."""
    if response.status_code != 403:
        return False
    if response.headers.get("X-Security-Error", "").lower() == "true":
        return True
    try:
        body = response.json()
    except ValueError:
        return False
    return isinstance(body, dict) and body.get("error") == SECURITY_ERROR


class SecureClient:
    """HTTP client that attaches the custom header and a fresh CSRF token.

    Only one token fetch is ever in flight: concurrent callers that need a
    token while a fetch is running all await that same fetch. A caller that
    stops waiting does not cancel the fetch for the others.
    """

    def __init__(
        self,
        base_url: str,
        header_value: str,
        header_name: str = DEFAULT_HEADER_NAME,
        token_path: str = "/api/csrf",
        http_client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 2,
        network_retries: int = 1,
        network_backoff: float = 1.0,
        safety_buffer: float = 60.0,
        refresh_interval: float = 300.0,
        refresh_buffer: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the client.

        Args:
            base_url: API base URL
            header_value: Shared custom header secret
            header_name: Name of the custom header
            token_path: Path of the CSRF token endpoint
            http_client: Optional externally owned httpx.AsyncClient
            max_retries: Retries after a security 403
            network_retries: Retries after a transport failure
            network_backoff: Seconds to wait before a network retry
            safety_buffer: Seconds subtracted from the server's token lifetime
            refresh_interval: Seconds between maintenance ticks
            refresh_buffer: Maintenance refreshes tokens expiring within this many seconds
            clock: Time source returning epoch seconds
        """
        self.header_name = header_name
        self.header_value = header_value
        self.token_path = token_path
        self.max_retries = max_retries
        self.network_retries = network_retries
        self.network_backoff = network_backoff
        self.safety_buffer = safety_buffer
        self.refresh_interval = refresh_interval
        self.refresh_buffer = refresh_buffer
        self._clock = clock

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url)

        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._refresh: Optional[asyncio.Task] = None
        # Bumped by invalidate() so a fetch started earlier cannot repopulate the cache
        self._generation = 0

        self._maintenance: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> TokenState:
        if self._refresh is not None:
            return TokenState.REFRESHING
        if self._token is not None:
            return TokenState.CACHED
        return TokenState.NO_TOKEN

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def _token_is_fresh(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get_token(self, force_refresh: bool = False) -> str:
        """Return a valid CSRF token, fetching one if needed.

        Raises:
            TokenFetchError: If the token endpoint fails
        """
        if not force_refresh and self._token_is_fresh():
            return self._token

        if self._refresh is None:
            self._refresh = asyncio.create_task(self._fetch_token(self._generation))
            self._refresh.add_done_callback(self._clear_refresh)

        return await asyncio.shield(self._refresh)

    def _clear_refresh(self, task: asyncio.Task) -> None:
        if self._refresh is task:
            self._refresh = None
        # Mark the exception retrieved when every caller stopped waiting
        if not task.cancelled():
            task.exception()

    async def _fetch_token(self, generation: int) -> str:
        try:
            resp = await self._client.get(
                self.token_path, headers={self.header_name: self.header_value}
            )
        except httpx.HTTPError as e:
            self._drop_token(generation)
            raise TokenFetchError(f"Failed to get CSRF token: {e}") from e

        if resp.status_code >= 400:
            self._drop_token(generation)
            raise TokenFetchError(
                f"Failed to get CSRF token: {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
            token = data["csrfToken"]
            expires_in_ms = int(data["expiresIn"])
        except (ValueError, KeyError, TypeError) as e:
            self._drop_token(generation)
            raise TokenFetchError(f"Malformed CSRF token response: {e}") from e

        if generation == self._generation:
            self._token = token
            self._expires_at = self._clock() + expires_in_ms / 1000 - self.safety_buffer
        return token

    def _drop_token(self, generation: int) -> None:
        if generation == self._generation:
            self._token = None
            self._expires_at = 0.0

    def invalidate(self) -> None:
        """Forget the cached token; the next request fetches a new one."""
        self._generation += 1
        self._token = None
        self._expires_at = 0.0
        self._refresh = None

    def _build_request_kwargs(
        self,
        token: str,
        headers: Optional[Dict[str, str]],
        json: Any,
        kwargs: Dict[str, Any],
    ) -> Dict[str, Any]:
        merged = {
            self.header_name: self.header_value,
            CSRF_HEADER: token,
        }
        merged.update(headers or {})
        request_kwargs = dict(kwargs)
        request_kwargs["headers"] = merged
        if isinstance(json, dict):
            request_kwargs["json"] = {**json, "csrfToken": token}
        elif json is not None:
            request_kwargs["json"] = json
        return request_kwargs

    async def secure_request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        retry_count: int = 0,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request carrying the custom header and a CSRF token.

        A security 403 is retried after a forced token refresh while
        ``retry_count < max_retries``. A transport failure is retried after
        ``network_backoff`` seconds while ``retry_count < network_retries``.
        Any other response is returned as-is.
        """
        token = await self.get_token()
        request_kwargs = self._build_request_kwargs(token, headers, json, kwargs)

        try:
            resp = await self._client.request(method, url, **request_kwargs)
        except httpx.TransportError as e:
            if retry_count < self.network_retries:
                logger.warning(
                    f"Network error on {method} {url} ({type(e).__name__}), "
                    f"retrying in {self.network_backoff}s"
                )
                await asyncio.sleep(self.network_backoff)
                return await self.secure_request(
                    method, url, headers=headers, json=json,
                    retry_count=retry_count + 1, **kwargs,
                )
            raise

        if is_security_failure(resp) and retry_count < self.max_retries:
            logger.info(
                f"Security validation failed on {method} {url}, refreshing token "
                f"(attempt {retry_count + 1}/{self.max_retries})"
            )
            await self.get_token(force_refresh=True)
            return await self.secure_request(
                method, url, headers=headers, json=json,
                retry_count=retry_count + 1, **kwargs,
            )

        return resp

    async def prewarm(self) -> None:
        """Fetch a token opportunistically; failures are left for first use."""
        try:
            await self.get_token()
        except TokenFetchError as e:
            logger.debug(f"Token prewarm failed: {e}")

    async def refresh_if_expiring(self) -> bool:
        """Refresh a cached token that expires within ``refresh_buffer``.

        Returns:
            True if a refresh was performed
        """
        if self._token is None or self._expires_at - self._clock() > self.refresh_buffer:
            return False
        await self.get_token(force_refresh=True)
        return True

    async def start(self) -> None:
        """Prewarm and start the background maintenance task."""
        if self._maintenance is not None:
            return
        self._stop_event.clear()
        await self.prewarm()
        self._maintenance = asyncio.create_task(self._run_maintenance())

    async def stop(self) -> None:
        """Stop maintenance and close the HTTP client if we own it."""
        if self._maintenance is not None:
            self._stop_event.set()
            try:
                await asyncio.wait_for(self._maintenance, timeout=5.0)
            except asyncio.TimeoutError:
                self._maintenance.cancel()
                try:
                    await self._maintenance
                except asyncio.CancelledError:
                    pass
            finally:
                self._maintenance = None

        if self._owns_client:
            await self._client.aclose()

    async def _run_maintenance(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.refresh_interval)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                await self.refresh_if_expiring()
            except TokenFetchError as e:
                logger.warning(f"Background token refresh failed: {e}")

    async def __aenter__(self) -> "SecureClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()
