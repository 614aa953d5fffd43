"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Authentication and role checks happen in middleware, before
routing (see middleware/authentication.py and middleware/authorization.py),
so routers here carry no auth dependencies of their own. Protected
handlers read the principal with Depends(get_current_principal).
"""

from fastapi import APIRouter

from lms_gateway.api.admin import router as admin_router
from lms_gateway.api.auth import router as auth_router
from lms_gateway.api.guardians import router as guardians_router
from lms_gateway.api.health import router as health_router
from lms_gateway.api.roles import router as roles_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(roles_router, tags=["roles"])
api_router.include_router(guardians_router, tags=["guardians", "dependents"])
api_router.include_router(admin_router, tags=["admin"])
