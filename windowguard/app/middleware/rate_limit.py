"""Rate limiting middleware and route dependencies.

Two ways to apply a policy:

- ``RateLimitMiddleware`` throttles every request with one policy
  (general API abuse protection).
- ``RateLimiter.limit_*`` return FastAPI dependencies for per-route policies,
  e.g. ``Depends(limiter.limit_login_attempts())`` on the login route.

Both set X-RateLimit-* headers on every checked response and reject with 429
once the caller is over quota. When Redis is unavailable requests pass
through without rate limit headers.
"""

from typing import Awaitable, Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from windowguard.app.core.config import settings
from windowguard.app.core.logging import get_log_context, get_logger
from windowguard.app.exceptions import RateLimitExceededError
from windowguard.app.services.rate_limit import (
    LOGIN_POLICY_NAME,
    Decision,
    IdentityResolver,
    KeyStrategy,
    PolicyRegistry,
    RequestIdentity,
    SlidingWindowCounter,
    WindowStatus,
)

logger = get_logger(__name__)


def identity_from_request(
    request: Request,
    trust_forwarded_for: Optional[bool] = None,
) -> RequestIdentity:
    """Extract caller information from a request.

    The user id is whatever the authentication layer stored on
    ``request.state.user_id``. X-Forwarded-For is only honoured when the
    service runs behind a trusted proxy, otherwise clients could pick their
    own bucket.

    Args:
        request: Incoming request
        trust_forwarded_for: Override for settings.rate_limit_trust_forwarded_for

    Returns:
        RequestIdentity for the limiter
    """
    if trust_forwarded_for is None:
        trust_forwarded_for = settings.rate_limit_trust_forwarded_for

    client_ip = request.client.host if request.client else "unknown"
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip() or client_ip

    user_id = getattr(request.state, "user_id", None)
    return RequestIdentity(
        client_ip=client_ip,
        user_id=str(user_id) if user_id is not None else None,
        path=request.url.path,
    )


def rate_limit_response(exc: RateLimitExceededError) -> JSONResponse:
    """Build the 429 response for a rejected request."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(),
        headers=exc.headers(),
    )


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """FastAPI exception handler for RateLimitExceededError."""
    return rate_limit_response(exc)


class RateLimiter:
    """Entry point tying policies, identity resolution and the counter together."""

    def __init__(
        self,
        counter: Optional[SlidingWindowCounter] = None,
        registry: Optional[PolicyRegistry] = None,
        resolver: Optional[IdentityResolver] = None,
        enabled: Optional[bool] = None,
        trust_forwarded_for: Optional[bool] = None,
    ):
        """Initialize the rate limiter.

        Args:
            counter: Sliding window counter (defaults to one on the global Redis)
            registry: Policy registry (defaults to policies from settings)
            resolver: Identity resolver
            enabled: Force limiting on/off (None = settings.rate_limit_enabled)
            trust_forwarded_for: Honour X-Forwarded-For (None = from settings)
        """
        self.counter = counter or SlidingWindowCounter()
        self.registry = registry or PolicyRegistry.from_settings(settings)
        self.resolver = resolver or IdentityResolver()
        self.enabled = settings.rate_limit_enabled if enabled is None else enabled
        self.trust_forwarded_for = trust_forwarded_for

    async def hit(
        self,
        identity: RequestIdentity,
        policy_name: str,
        strategy: KeyStrategy = KeyStrategy.IP,
    ) -> Optional[Decision]:
        """Count one request and return the decision.

        Returns:
            The decision, or None when rate limiting is disabled.
        """
        if not self.enabled:
            return None

        policy = self.registry.resolve(policy_name)
        key = self.resolver.resolve(identity, policy, strategy)
        decision = await self.counter.check(key, policy)

        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded: {policy.max_requests} requests / {policy.window}",
                extra=get_log_context(
                    client_ip=identity.client_ip,
                    user_id=identity.user_id,
                    policy=policy.name,
                    rate_limit_key=key,
                    path=identity.path,
                ),
            )
        return decision

    async def enforce(
        self,
        identity: RequestIdentity,
        policy_name: str,
        strategy: KeyStrategy = KeyStrategy.IP,
    ) -> dict[str, str]:
        """Check a request and return the headers to attach to its response.

        Returns:
            X-RateLimit-* headers, or an empty dict when limiting is disabled or
            the store failed.

        Raises:
            RateLimitExceededError: If the caller is over quota.
        """
        decision = await self.hit(identity, policy_name, strategy)
        if decision is None or decision.degraded:
            return {}
        if not decision.allowed:
            raise RateLimitExceededError(decision, decision.retry_after(self.counter.now()))
        return decision.headers()

    def limit(
        self,
        policy_name: str,
        strategy: KeyStrategy = KeyStrategy.IP,
    ) -> Callable[[Request, Response], Awaitable[None]]:
        """Create a FastAPI dependency applying ``policy_name`` to a route."""

        async def dependency(request: Request, response: Response) -> None:
            identity = identity_from_request(request, self.trust_forwarded_for)
            headers = await self.enforce(identity, policy_name, strategy)
            for name, value in headers.items():
                response.headers[name] = value

        dependency.__name__ = f"rate_limit_{policy_name}_{strategy.value}"
        return dependency

    def limit_by_type(self, policy_name: str) -> Callable[[Request, Response], Awaitable[None]]:
        """Limit by client IP using the named policy."""
        return self.limit(policy_name, KeyStrategy.IP)

    def limit_by_user(self, policy_name: str) -> Callable[[Request, Response], Awaitable[None]]:
        """Limit by authenticated user, falling back to client IP."""
        return self.limit(policy_name, KeyStrategy.USER)

    def limit_auth(self) -> Callable[[Request, Response], Awaitable[None]]:
        return self.limit_by_type("auth")

    def limit_strict(self) -> Callable[[Request, Response], Awaitable[None]]:
        return self.limit_by_type("strict")

    def limit_reports(self) -> Callable[[Request, Response], Awaitable[None]]:
        """10 reports per 24 hours per user."""
        return self.limit_by_user("reports")

    def limit_login_attempts(self) -> Callable[[Request, Response], Awaitable[None]]:
        """Brute-force protection for login: always keyed by IP, own keyspace."""
        return self.limit(LOGIN_POLICY_NAME, KeyStrategy.IP)

    async def clear(self, policy_name: str, identity: str) -> bool:
        """Reset the window for ``identity`` (an IP or ``user:<id>``) under a policy.

        Raises:
            KeyError: If no policy is named ``policy_name``.
        """
        policy = self.registry.get(policy_name)
        return await self.counter.clear(policy.key_prefix, identity)

    async def inspect(self, policy_name: str, identity: str) -> WindowStatus:
        """Read the window for ``identity`` under a policy without counting.

        Raises:
            KeyError: If no policy is named ``policy_name``.
        """
        policy = self.registry.get(policy_name)
        return await self.counter.inspect(policy.key_for(identity), policy)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce one rate limit policy on every request.

    Keys by client IP, or by authenticated user when ``by_user`` is set and
    an earlier middleware has populated ``request.state.user_id``. Responses
    that a per-route limit already stamped keep that policy's headers.
    """

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        policy_name: Optional[str] = None,
        by_user: Optional[bool] = None,
        exempt_paths: tuple[str, ...] = ("/health",),
    ):
        super().__init__(app)
        self.limiter = limiter or RateLimiter()
        self.policy_name = policy_name or settings.rate_limit_default_policy
        use_user = settings.rate_limit_by_user if by_user is None else by_user
        self.strategy = KeyStrategy.USER if use_user else KeyStrategy.IP
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        identity = identity_from_request(request, self.limiter.trust_forwarded_for)
        try:
            headers = await self.limiter.enforce(identity, self.policy_name, self.strategy)
        except RateLimitExceededError as exc:
            return rate_limit_response(exc)

        response = await call_next(request)

        # A per-route limit already reported the policy that decided this request
        if "X-RateLimit-Limit" not in response.headers:
            for name, value in headers.items():
                response.headers[name] = value

        return response
