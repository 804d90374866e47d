"""Tests for the outbound HTTP client."""

import httpx
import pytest

from trailguard import __version__
from trailguard.circuit_breaker import (
    CircuitOpenError,
    PipelineRegistry,
    RetriesExhaustedError,
)
from trailguard.core.config import Settings
from trailguard.core.http_client import (
    OutboundHttpClient,
    UnresolvedTargetError,
    is_circuit_open,
    origin_of,
)
from trailguard.core.service_registry import UnknownServiceError


async def no_sleep(delay: float) -> None:
    return None


class CountingHandler:
    """MockTransport handler that replays a scripted list of outcomes."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        status_code, body = outcome
        return httpx.Response(status_code, json=body)

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_client(handler, settings=None, base_url=""):
    settings = settings or Settings()
    registry = PipelineRegistry(
        breaker_config=settings.http_breaker_config(),
        retry_policy=settings.http_retry_policy(),
        invocation_timeout=settings.HTTP_BREAKER_TIMEOUT,
        listeners=[],
        sleep=no_sleep,
    )
    return OutboundHttpClient(
        settings,
        registry=registry,
        transport=httpx.MockTransport(handler),
        base_url=base_url,
    )


class TestOriginOf:
    """Test target identity derivation."""

    @pytest.mark.parametrize("url,expected", [
        ("https://svc.example/api?q=1", "https://svc.example"),
        ("https://svc.example:443/api", "https://svc.example"),
        ("http://svc.example:80/", "http://svc.example"),
        ("http://svc.example:8080/x", "http://svc.example:8080"),
        ("HTTPS://Svc.Example/api", "https://svc.example"),
        ("http://[::1]:9000/x", "http://[::1]:9000"),
        ("/api/relative", None),
        ("svc.example/api", None),
    ])
    def test_origin_of(self, url, expected):
        assert origin_of(url) == expected


class TestOutboundHttpClient:
    """Test retry, breaker and target resolution behaviour."""

    @pytest.mark.asyncio
    async def test_end_to_end_recovers_after_two_server_errors(self):
        handler = CountingHandler((500, {}), (500, {}), (200, {"ok": True}))

        async with make_client(handler) as client:
            response = await client.request("GET", "https://svc.example/api")

            assert response.status_code == 200
            assert response.json() == {"ok": True}
            assert handler.calls == 3
            assert client.get_breaker_states() == {"https://svc.example": "closed"}

    @pytest.mark.asyncio
    async def test_retry_then_succeed_on_transport_error(self):
        handler = CountingHandler(httpx.ConnectError("refused"), (200, {"ok": True}))

        async with make_client(handler) as client:
            response = await client.request("GET", "https://svc.example/api")

        assert response.status_code == 200
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_client_error_returned_without_retry(self):
        handler = CountingHandler((404, {"error": "not found"}))

        async with make_client(handler) as client:
            response = await client.request("GET", "https://svc.example/missing")

        assert response.status_code == 404
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_exhausted_server_errors_expose_last_response(self):
        handler = CountingHandler((503, {"error": "unavailable"}))

        async with make_client(handler) as client:
            with pytest.raises(RetriesExhaustedError) as exc_info:
                await client.request("GET", "https://svc.example/api")

        assert handler.calls == 3
        assert exc_info.value.last_error.response.status_code == 503

    @pytest.mark.asyncio
    async def test_breaker_opens_under_sustained_failure(self):
        handler = CountingHandler((500, {}))

        async with make_client(handler) as client:
            for _ in range(5):
                with pytest.raises(RetriesExhaustedError):
                    await client.request("GET", "https://svc.example/api")
            calls_before = handler.calls

            with pytest.raises(CircuitOpenError) as exc_info:
                await client.request("GET", "https://svc.example/api")

            assert is_circuit_open(exc_info.value)
            assert handler.calls == calls_before
            assert client.get_breaker_states()["https://svc.example"] == "open"

    @pytest.mark.asyncio
    async def test_target_isolation(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "a.example":
                return httpx.Response(500)
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler) as client:
            await client.request("GET", "https://b.example/")
            for _ in range(6):
                with pytest.raises((RetriesExhaustedError, CircuitOpenError)):
                    await client.request("GET", "https://a.example/")

            assert client.get_breaker_states() == {
                "https://a.example": "open",
                "https://b.example": "closed",
            }
            response = await client.request("GET", "https://b.example/")
            assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_service_mode_uses_service_name_as_target(self):
        handler = CountingHandler((200, {"businesses": []}))

        async with make_client(handler) as client:
            body = await client.get_json(service="yelp", path="/v3/businesses/search")

            assert body == {"businesses": []}
            assert str(handler.requests[0].url) == "https://api.yelp.com/v3/businesses/search"
            assert client.get_breaker_states() == {"yelp": "closed"}

    @pytest.mark.asyncio
    async def test_unknown_service(self):
        async with make_client(CountingHandler((200, {}))) as client:
            with pytest.raises(UnknownServiceError):
                await client.request(service="nope")

    @pytest.mark.asyncio
    async def test_relative_url_fail_open_skips_breaker(self):
        handler = CountingHandler((200, {"pong": True}))

        async with make_client(handler, base_url="http://internal.local") as client:
            response = await client.request("GET", "/ping")

            assert response.json() == {"pong": True}
            assert client.get_breaker_states() == {}

    @pytest.mark.asyncio
    async def test_relative_url_fail_closed_rejected(self):
        settings = Settings(UNRESOLVED_TARGET_POLICY="closed")
        handler = CountingHandler((200, {}))

        async with make_client(handler, settings=settings, base_url="http://internal.local") as client:
            with pytest.raises(UnresolvedTargetError):
                await client.request("GET", "/ping")

        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_missing_url_rejected(self):
        async with make_client(CountingHandler((200, {}))) as client:
            with pytest.raises(ValueError):
                await client.request("GET")

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        client = make_client(CountingHandler((200, {})))
        with pytest.raises(RuntimeError):
            await client.request("GET", "https://svc.example/")

    @pytest.mark.asyncio
    async def test_sends_user_agent(self):
        handler = CountingHandler((200, {}))

        async with make_client(handler) as client:
            await client.request("POST", "https://svc.example/items", json={"name": "trail"})

        request = handler.requests[0]
        assert request.headers["user-agent"] == f"trailguard/{__version__}"
        assert request.method == "POST"
