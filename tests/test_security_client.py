"""Tests for the client-side token agent."""

import asyncio
import json

import httpx
import pytest
import respx
from httpx import Response

from dreamjournal.client.security import (
    SecureClient,
    TokenFetchError,
    TokenState,
    is_security_failure,
)

BASE_URL = "https://dreams.test"
TOKEN_URL = f"{BASE_URL}/api/csrf"
ADD_URL = f"{BASE_URL}/api/dreams/add"
HEADER_VALUE = "header-secret"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _token_response(token: str, expires_in: int = 3_600_000) -> Response:
    return Response(200, json={"csrfToken": token, "expiresIn": expires_in})


def _security_403() -> Response:
    return Response(
        403,
        json={
            "error": "Security validation failed",
            "details": ["Token expired"],
            "message": "Request does not meet security requirements",
        },
        headers={"X-Security-Error": "true"},
    )


class GatedTokenClient:
    """Stand-in for httpx.AsyncClient whose token responses wait on a gate."""

    def __init__(self, tokens):
        self.tokens = list(tokens)
        self.calls = 0
        self.gate = asyncio.Event()

    async def get(self, url, headers=None):
        token = self.tokens[self.calls]
        self.calls += 1
        await self.gate.wait()
        return _token_response(token)


async def _settle():
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(clock):
    return SecureClient(BASE_URL, header_value=HEADER_VALUE, network_backoff=0.0, clock=clock)


class TestGetToken:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetches_and_caches(self, client):
        route = respx.get(TOKEN_URL).mock(return_value=_token_response("t1"))

        assert await client.get_token() == "t1"
        assert await client.get_token() == "t1"
        assert route.call_count == 1
        assert client.state is TokenState.CACHED
        assert route.calls[0].request.headers["X-Dream-Journal-Request"] == HEADER_VALUE

    @pytest.mark.asyncio
    @respx.mock
    async def test_concurrent_callers_share_one_fetch(self, client):
        route = respx.get(TOKEN_URL).mock(return_value=_token_response("shared"))

        tokens = await asyncio.gather(*(client.get_token() for _ in range(10)))

        assert route.call_count == 1
        assert set(tokens) == {"shared"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_state_is_refreshing_while_in_flight(self, client):
        respx.get(TOKEN_URL).mock(return_value=_token_response("slow"))
        assert client.state is TokenState.NO_TOKEN

        waiter = asyncio.create_task(client.get_token())
        await asyncio.sleep(0)
        assert client.state is TokenState.REFRESHING

        assert await waiter == "slow"
        assert client.state is TokenState.CACHED

    @pytest.mark.asyncio
    @respx.mock
    async def test_refetches_near_expiry(self, client, clock):
        route = respx.get(TOKEN_URL).mock(
            side_effect=[_token_response("t1"), _token_response("t2")]
        )

        await client.get_token()
        # Cached for expiresIn minus the 60 second safety buffer
        assert client.expires_at == clock.now + 3600 - 60

        clock.now += 3539
        assert await client.get_token() == "t1"
        clock.now += 1
        assert await client.get_token() == "t2"
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_force_refresh(self, client):
        route = respx.get(TOKEN_URL).mock(
            side_effect=[_token_response("t1"), _token_response("t2")]
        )

        await client.get_token()
        assert await client.get_token(force_refresh=True) == "t2"
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_failure(self, client):
        respx.get(TOKEN_URL).mock(return_value=Response(500))

        with pytest.raises(TokenFetchError) as exc_info:
            await client.get_token()
        assert exc_info.value.status_code == 500
        assert client.state is TokenState.NO_TOKEN

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_token_response(self, client):
        respx.get(TOKEN_URL).mock(return_value=Response(200, json={"unexpected": True}))

        with pytest.raises(TokenFetchError):
            await client.get_token()

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_failure_raises_token_fetch_error(self, client):
        respx.get(TOKEN_URL).mock(side_effect=httpx.ConnectError("down"))

        with pytest.raises(TokenFetchError):
            await client.get_token()

    @pytest.mark.asyncio
    @respx.mock
    async def test_failure_is_not_cached(self, client):
        route = respx.get(TOKEN_URL).mock(
            side_effect=[Response(503), _token_response("t1")]
        )

        with pytest.raises(TokenFetchError):
            await client.get_token()
        assert await client.get_token() == "t1"
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalidate(self, client):
        route = respx.get(TOKEN_URL).mock(
            side_effect=[_token_response("t1"), _token_response("t2")]
        )

        await client.get_token()
        client.invalidate()
        assert client.state is TokenState.NO_TOKEN
        assert await client.get_token() == "t2"
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_during_fetch_does_not_cache_stale_token(self, clock):
        http_client = GatedTokenClient(["old", "new"])
        client = SecureClient(BASE_URL, header_value=HEADER_VALUE, http_client=http_client, clock=clock)

        pending = asyncio.create_task(client.get_token())
        await _settle()
        assert http_client.calls == 1

        client.invalidate()
        http_client.gate.set()

        # The waiter still receives the token it asked for, but it is not cached
        assert await pending == "old"
        assert client.state is TokenState.NO_TOKEN

        assert await client.get_token() == "new"
        assert http_client.calls == 2
        assert client.state is TokenState.CACHED

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_fetch(self, clock):
        http_client = GatedTokenClient(["shared"])
        client = SecureClient(BASE_URL, header_value=HEADER_VALUE, http_client=http_client, clock=clock)

        first = asyncio.create_task(client.get_token())
        second = asyncio.create_task(client.get_token())
        await _settle()

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        http_client.gate.set()
        assert await second == "shared"
        assert http_client.calls == 1
        assert client.state is TokenState.CACHED


class TestSecureRequest:
    @pytest.mark.asyncio
    @respx.mock
    async def test_attaches_token_and_header(self, client):
        respx.get(TOKEN_URL).mock(return_value=_token_response("t1"))
        route = respx.post(ADD_URL).mock(return_value=Response(200, json={"dreams": []}))

        resp = await client.secure_request("POST", "/api/dreams/add", json={"description": "x"})

        assert resp.status_code == 200
        request = route.calls[0].request
        assert request.headers["X-CSRF-Token"] == "t1"
        assert request.headers["X-Dream-Journal-Request"] == HEADER_VALUE
        assert json.loads(request.content) == {"description": "x", "csrfToken": "t1"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_security_403_retried_with_fresh_token(self, client):
        token_route = respx.get(TOKEN_URL).mock(
            side_effect=[_token_response("stale"), _token_response("fresh")]
        )
        route = respx.post(ADD_URL).mock(
            side_effect=[_security_403(), Response(200, json={"dreams": []})]
        )

        resp = await client.secure_request("POST", "/api/dreams/add", json={"description": "x"})

        assert resp.status_code == 200
        assert route.call_count == 2
        assert token_route.call_count == 2
        retried = route.calls[1].request
        assert retried.headers["X-CSRF-Token"] == "fresh"
        assert json.loads(retried.content)["csrfToken"] == "fresh"

    @pytest.mark.asyncio
    @respx.mock
    async def test_security_retries_are_capped(self, client):
        respx.get(TOKEN_URL).mock(return_value=_token_response("t"))
        route = respx.post(ADD_URL).mock(return_value=_security_403())

        resp = await client.secure_request("POST", "/api/dreams/add", json={})

        assert resp.status_code == 403
        # One attempt plus two retries
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_other_403_is_not_retried(self, client):
        respx.get(TOKEN_URL).mock(return_value=_token_response("t"))
        route = respx.post(ADD_URL).mock(return_value=Response(403, json={"error": "Forbidden"}))

        resp = await client.secure_request("POST", "/api/dreams/add", json={})

        assert resp.status_code == 403
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_response_returned_as_is(self, client):
        respx.get(TOKEN_URL).mock(return_value=_token_response("t"))
        route = respx.post(ADD_URL).mock(return_value=Response(429, json={"retryAfter": 30}))

        resp = await client.secure_request("POST", "/api/dreams/add", json={})

        assert resp.status_code == 429
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_retried_once(self, client):
        respx.get(TOKEN_URL).mock(return_value=_token_response("t"))
        route = respx.post(ADD_URL).mock(
            side_effect=[httpx.ConnectError("reset"), Response(200, json={})]
        )

        resp = await client.secure_request("POST", "/api/dreams/add", json={})

        assert resp.status_code == 200
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_propagates_after_retry(self, client):
        respx.get(TOKEN_URL).mock(return_value=_token_response("t"))
        route = respx.post(ADD_URL).mock(side_effect=httpx.ConnectError("down"))

        with pytest.raises(httpx.ConnectError):
            await client.secure_request("POST", "/api/dreams/add", json={})
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_caller_headers_override_defaults(self, client):
        respx.get(TOKEN_URL).mock(return_value=_token_response("t"))
        route = respx.get(f"{BASE_URL}/api/dreams").mock(return_value=Response(200, json={}))

        await client.secure_request("GET", "/api/dreams", headers={"Authorization": "Bearer abc"})

        request = route.calls[0].request
        assert request.headers["Authorization"] == "Bearer abc"
        assert request.headers["X-CSRF-Token"] == "t"


class TestMaintenance:
    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_if_expiring(self, client, clock):
        route = respx.get(TOKEN_URL).mock(
            side_effect=[_token_response("t1"), _token_response("t2")]
        )

        assert await client.refresh_if_expiring() is False
        await client.get_token()
        assert await client.refresh_if_expiring() is False

        # Within five minutes of the cached expiry
        clock.now += 3540 - 240
        assert await client.refresh_if_expiring() is True
        assert await client.get_token() == "t2"
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_prewarm_swallows_failures(self, client):
        respx.get(TOKEN_URL).mock(return_value=Response(500))

        await client.prewarm()
        assert client.state is TokenState.NO_TOKEN

    @pytest.mark.asyncio
    @respx.mock
    async def test_context_manager_prewarms_and_closes(self, clock):
        route = respx.get(TOKEN_URL).mock(return_value=_token_response("t1"))

        async with SecureClient(BASE_URL, header_value=HEADER_VALUE, clock=clock) as client:
            assert route.call_count == 1
            assert client.state is TokenState.CACHED

        assert client._client.is_closed

    @pytest.mark.asyncio
    async def test_external_client_is_not_closed(self):
        http_client = httpx.AsyncClient(base_url=BASE_URL)
        client = SecureClient(BASE_URL, header_value=HEADER_VALUE, http_client=http_client)

        await client.stop()
        assert not http_client.is_closed
        await http_client.aclose()


def test_is_security_failure():
    assert is_security_failure(_security_403())
    assert is_security_failure(Response(403, json={"error": "Security validation failed"}))
    assert not is_security_failure(Response(403, text="forbidden"))
    assert not is_security_failure(Response(401, headers={"X-Security-Error": "true"}))
