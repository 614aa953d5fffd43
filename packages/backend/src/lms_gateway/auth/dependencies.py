"""FastAPI auth dependencies.

Learn: AuthenticationMiddleware has already verified the token and put
the Principal on request.state before any route runs. These
dependencies just read it back, and open an identity store for
handlers that need to look up profiles.
"""

from typing import AsyncIterator, Optional

from fastapi import Depends, HTTPException, Request

from lms_gateway.auth.principal import Principal
from lms_gateway.repositories.base import IdentityStore


def get_principal_optional(request: Request) -> Optional[Principal]:
    """Current principal, or None for unauthenticated requests."""
    return getattr(request.state, "principal", None)


def get_current_principal(
    principal: Optional[Principal] = Depends(get_principal_optional),
) -> Principal:
    """Current principal (required, 401 if no auth)."""
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


async def get_identity_store(request: Request) -> AsyncIterator[IdentityStore]:
    """Yields an identity store per request, auto-closed."""
    async with request.app.state.identity_store_factory() as store:
        yield store
