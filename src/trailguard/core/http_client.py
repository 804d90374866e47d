"""
trailguard Outbound HTTP Client
Sends requests to remote services through per-target timeout, retry and breaker pipelines
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import httpx

from trailguard import __version__
from trailguard.circuit_breaker.exceptions import CircuitOpenError, UpstreamServerError
from trailguard.circuit_breaker.manager import PipelineRegistry
from trailguard.core.config import Settings, get_settings
from trailguard.core.policy import FailurePolicy
from trailguard.core.service_registry import ServiceRegistry

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


class UnresolvedTargetError(ValueError):
    """Raised under fail-closed policy for a URL with no identifiable origin."""

    def __init__(self, url: str):
        super().__init__(f"Cannot determine target origin for URL: {url}")
        self.url = url


def origin_of(url: str) -> Optional[str]:
    """
    Return ``scheme://host[:port]`` for an absolute URL, or None for a relative one.

    The port is omitted when it is the scheme's default.
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None

    scheme = parts.scheme.lower()
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def is_circuit_open(error: BaseException) -> bool:
    """True when ``error`` means the call was rejected by an open breaker."""
    return isinstance(error, CircuitOpenError)


class OutboundHttpClient:
    """HTTP client with a breaker per remote origin or logical service"""

    def __init__(self,
                 settings: Optional[Settings] = None,
                 registry: Optional[PipelineRegistry] = None,
                 service_registry: Optional[ServiceRegistry] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 base_url: str = ""):
        self.settings = settings or get_settings()
        self.registry = registry or PipelineRegistry(
            breaker_config=self.settings.http_breaker_config(),
            retry_policy=self.settings.http_retry_policy(),
            invocation_timeout=self.settings.HTTP_BREAKER_TIMEOUT,
        )
        self.service_registry = service_registry or ServiceRegistry(self.settings)
        self.unresolved_policy = FailurePolicy.parse(self.settings.UNRESOLVED_TARGET_POLICY)
        self._transport = transport
        self._base_url = base_url
        self.http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry - create the pooled HTTP client"""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit - cleanup HTTP client"""
        await self.close()

    async def start(self) -> None:
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self.settings.HTTP_CLIENT_TIMEOUT,
                transport=self._transport,
                headers={"User-Agent": f"trailguard/{__version__}"},
                follow_redirects=True,
                max_redirects=3,
            )

    async def close(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None

    def _resolve(self, url: Optional[str], service: Optional[str], path: str):
        """Return (full_url, pipeline) for a request."""
        if service is not None:
            base = self.service_registry.get_service_url(service)
            full_url = f"{base}/{path.lstrip('/')}" if path else base
            return full_url, self.registry.get_pipeline(service)

        if not url:
            raise ValueError("Either url or service must be provided")

        target = origin_of(url)
        if target is not None:
            return url, self.registry.get_pipeline(target)

        if not self.unresolved_policy.allows:
            raise UnresolvedTargetError(url)

        logger.warning(
            "Request URL has no origin, calling without circuit breaker",
            extra={"url": url}
        )
        return url, self.registry.direct_pipeline()

    async def request(self,
                      method: str = "GET",
                      url: Optional[str] = None,
                      *,
                      service: Optional[str] = None,
                      path: str = "",
                      params: Optional[Dict[str, Any]] = None,
                      headers: Optional[Dict[str, str]] = None,
                      json: Any = None,
                      content: Optional[bytes] = None,
                      timeout: Optional[float] = None) -> httpx.Response:
        """
        Send a request through the target's pipeline.

        Non-2xx responses are returned, not raised. 5xx responses and transport
        errors are retried; if retries run out on a 5xx the raised
        RetriesExhaustedError carries the last response in ``last_error.response``.

        Args:
            method: HTTP method
            url: Absolute URL; ignored when ``service`` is given
            service: Logical service name from the service registry
            path: Path appended to the service base URL
            params: Query parameters
            headers: Extra request headers
            json: JSON body
            content: Raw body
            timeout: Per-attempt timeout override in seconds

        Raises:
            UnknownServiceError: ``service`` is not registered
            UnresolvedTargetError: ``url`` has no origin under fail-closed policy
            CircuitOpenError: The target's breaker is open
            CircuitBreakerTimeoutError: The invocation timeout was exceeded
            RetriesExhaustedError: Every attempt failed
            NonRetryableError: An attempt failed with a non-retryable error
        """
        if self.http_client is None:
            raise RuntimeError("HTTP client not initialized. Use async context manager.")

        full_url, pipeline = self._resolve(url, service, path)
        request_timeout = timeout if timeout is not None else self.settings.HTTP_CLIENT_TIMEOUT
        http_client = self.http_client

        async def attempt() -> httpx.Response:
            response = await http_client.request(
                method,
                full_url,
                params=params,
                headers=headers,
                json=json,
                content=content,
                timeout=request_timeout,
            )
            if response.status_code >= 500:
                raise UpstreamServerError(response, response.status_code)
            return response

        response = await pipeline.execute(attempt)

        logger.debug(
            "Outbound request completed",
            extra={
                "method": method,
                "url": full_url,
                "target": pipeline.target,
                "status_code": response.status_code,
            }
        )
        return response

    async def get_json(self, url: Optional[str] = None, *, service: Optional[str] = None,
                       path: str = "", params: Optional[Dict[str, Any]] = None,
                       headers: Optional[Dict[str, str]] = None) -> Any:
        """GET and return the decoded JSON body."""
        response = await self.request(
            "GET", url, service=service, path=path, params=params, headers=headers
        )
        return response.json()

    def get_breaker_states(self) -> Dict[str, str]:
        return self.registry.get_states()
