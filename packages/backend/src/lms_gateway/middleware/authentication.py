"""Bearer token authentication middleware — the request filter.

Learn: Runs once per request, before routing:

    no token        → continue unauthenticated (principal = None)
    token present   → gateway.authenticate() → principal bound for
                      this request only, then the handler runs
    any auth error  → 401 {"success": false, "message": "<reason>"}
    provisioning
    conflict        → 500, same body shape

The token comes from `Authorization: Bearer <token>`, or from a
`token` query parameter (same "Bearer " format) so tokens can be
pasted into the interactive docs.

The middleware keeps no per-request state on itself. The principal
lives on request.state and in a ContextVar that is reset once the
response is produced.
"""

from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from lms_gateway.auth.errors import AuthenticationError, PersistenceConflict
from lms_gateway.auth.gateway import AuthenticationGateway
from lms_gateway.auth.principal import bind_principal, reset_principal

logger = structlog.get_logger()

AUTH_HEADER = "Authorization"
TOKEN_QUERY_PARAM = "token"
BEARER = "Bearer "

# Set once per request so a re-entered stack skips authentication
_SCOPE_MARKER = "lms.authenticated"


def extract_token(request: Request) -> Optional[str]:
    """Bearer token from the header, falling back to the `token` query param."""
    value = request.headers.get(AUTH_HEADER)
    if not value or not value.strip():
        value = request.query_params.get(TOKEN_QUERY_PARAM)
    if value and value.startswith(BEARER):
        token = value[len(BEARER):].strip()
        return token or None
    return None


def rejection(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
    )


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Authenticate the bearer token and bind the principal for the request."""

    def __init__(self, app, gateway: AuthenticationGateway):
        super().__init__(app)
        self.gateway = gateway

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.scope.get(_SCOPE_MARKER):
            return await call_next(request)
        request.scope[_SCOPE_MARKER] = True
        request.state.principal = None

        token = extract_token(request)
        if token is None:
            return await call_next(request)

        try:
            async with request.app.state.identity_store_factory() as store:
                principal = await self.gateway.authenticate(token, store)
        except AuthenticationError as e:
            logger.warning("auth.token_rejected", reason=e.message, path=request.url.path)
            return rejection(e.status_code, e.message)
        except PersistenceConflict as e:
            logger.error("auth.provisioning_failed", reason=e.message, path=request.url.path)
            return rejection(e.status_code, e.message)

        request.state.principal = principal
        structlog.contextvars.bind_contextvars(principal=principal.username)
        ctx_token = bind_principal(principal)
        try:
            return await call_next(request)
        finally:
            reset_principal(ctx_token)
