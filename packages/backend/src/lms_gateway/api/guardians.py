"""Guardian and dependent self-service routes.

Learn: Access to /parent/* and /child/* is already enforced by the
route table (AuthorizationMiddleware). These handlers only scope the
data to the caller's own linked profile.

- GET /parent/dependents → dependents owned by the calling guardian
- GET /child/profile → the calling dependent with its guardian
"""

from fastapi import APIRouter, Depends, HTTPException

from lms_gateway.auth.dependencies import get_current_principal, get_identity_store
from lms_gateway.auth.principal import Principal
from lms_gateway.repositories.base import IdentityStore
from lms_gateway.schemas.identity import DependentProfile, DependentRead, GuardianRead

router = APIRouter()


@router.get("/parent/dependents", response_model=list[DependentRead])
async def list_my_dependents(
    principal: Principal = Depends(get_current_principal),
    store: IdentityStore = Depends(get_identity_store),
):
    if principal.guardian_id is None:
        raise HTTPException(status_code=404, detail="No guardian profile linked")
    return await store.dependents.find_all_by_guardian_id(principal.guardian_id)


@router.get("/child/profile", response_model=DependentProfile)
async def my_profile(
    principal: Principal = Depends(get_current_principal),
    store: IdentityStore = Depends(get_identity_store),
):
    if principal.dependent_id is None:
        raise HTTPException(status_code=404, detail="No dependent profile linked")
    dependent = await store.dependents.get(principal.dependent_id)
    if dependent is None:
        raise HTTPException(status_code=404, detail="Dependent not found")

    guardian = await store.guardians.get(dependent.guardian_id)
    profile = DependentProfile.model_validate(dependent)
    profile.guardian = GuardianRead.model_validate(guardian) if guardian else None
    return profile
