"""Rate limiting middleware for FastAPI."""

import logging
from typing import Optional, Sequence, Union

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import RateLimitBackendError, RateLimitExceededError
from .limiter import AdmissionController, EndpointAdmissionController

logger = logging.getLogger(__name__)

Controller = Union[AdmissionController, EndpointAdmissionController]


def resolve_actor(request: Request) -> str:
    """Authenticated user id, else client address, else "anonymous"."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id)
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware that admits or rejects each request through an admission controller."""

    def __init__(
        self,
        app,
        controller: Optional[Controller] = None,
        exempt_paths: Sequence[str] = ("/api/auth",),
        blocked_user_agents: Sequence[str] = ("bot", "crawler", "spider"),
        enforce: bool = True,
    ):
        """Initialize rate limiting middleware."""
        super().__init__(app)
        self.controller = controller
        self.exempt_paths = tuple(exempt_paths)
        self.blocked_user_agents = tuple(agent.lower() for agent in blocked_user_agents)
        self.enforce = enforce

        if self.controller is None or not self.enforce:
            logger.info("Rate limiting middleware initialized but disabled")
        else:
            logger.info(
                "Rate limiting middleware initialized",
                extra={
                    "controller": type(self.controller).__name__,
                    "exempt_paths": self.exempt_paths,
                }
            )

    def _is_blocked_agent(self, request: Request) -> bool:
        user_agent = request.headers.get("user-agent", "").lower()
        return any(fragment in user_agent for fragment in self.blocked_user_agents)

    async def dispatch(self, request: Request, call_next):
        """Apply rate limiting to matching requests."""
        if self.controller is None or not self.enforce:
            return await call_next(request)

        request_path = request.url.path
        if request.method == "OPTIONS" or request_path.startswith(self.exempt_paths):
            return await call_next(request)

        if self.blocked_user_agents and self._is_blocked_agent(request):
            logger.warning(
                "Rejected bot user agent",
                extra={"path": request_path, "user_agent": request.headers.get("user-agent")}
            )
            return JSONResponse(status_code=403, content={"detail": "Forbidden"})

        actor = resolve_actor(request)

        try:
            await self.controller.admit(actor, request_path)
        except RateLimitExceededError as e:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "actor": actor,
                    "path": request_path,
                    "policy": e.policy,
                    "retry_after": e.retry_after,
                }
            )
            return JSONResponse(
                status_code=429,
                content=e.to_dict(),
                headers={"Retry-After": e.get_retry_after_header()}
            )
        except RateLimitBackendError:
            return JSONResponse(
                status_code=503,
                content={"detail": "Rate limiting temporarily unavailable"}
            )

        return await call_next(request)
