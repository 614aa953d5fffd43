"""Health check endpoint.

Learn: Public GET endpoint that verifies the server is running and the
identity store is reachable. The role catalog size doubles as a seed
check: a healthy gateway has every role seeded.
"""

from fastapi import APIRouter, Request

from lms_gateway import __version__
from lms_gateway.auth.roles import Role

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and identity store connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with request.app.state.identity_store_factory() as store:
            roles = await store.roles.list_roles()
        checks["database"] = "ok"
        checks["role_catalog"] = "ok" if len(roles) >= len(Role) else "incomplete"
    except Exception as e:
        checks["database"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
