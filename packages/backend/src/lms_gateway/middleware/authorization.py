"""Route-level authorization middleware.

Learn: Evaluates the declarative ROUTE_RULES table (auth/roles.py)
before any handler runs. Must sit inside AuthenticationMiddleware so
the principal is already on request.state:

    public path                           → allowed
    no principal                          → 401 "Authentication required"
    matching rule, authority missing      → 403 "Access denied"
    matching rule satisfied / no rule     → allowed
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from lms_gateway.auth.roles import ROUTE_RULES, AccessDecision, RouteRule, decide
from lms_gateway.middleware.authentication import rejection

logger = structlog.get_logger()


class AuthorizationMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, rules: tuple[RouteRule, ...] = ROUTE_RULES):
        super().__init__(app)
        self.rules = rules

    async def dispatch(self, request: Request, call_next) -> Response:
        # CORS preflight carries no credentials
        if request.method == "OPTIONS":
            return await call_next(request)

        principal = getattr(request.state, "principal", None)
        authorities = list(principal.authorities) if principal else None
        decision = decide(request.url.path, authorities, self.rules)

        if decision == AccessDecision.UNAUTHENTICATED:
            return rejection(401, "Authentication required")
        if decision == AccessDecision.FORBIDDEN:
            logger.info(
                "auth.access_denied",
                path=request.url.path,
                username=principal.username,
            )
            return rejection(403, "Access denied")
        return await call_next(request)
