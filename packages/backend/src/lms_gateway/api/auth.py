"""Auth API — who am I?

Learn: Tokens are minted by the external identity provider, so there is
no login/register/refresh here. The gateway middleware has already
resolved (and, for first-time federated users, provisioned) the caller;
this route just reports the result:

- GET /auth/me → principal, authorities and the linked profile
"""

from fastapi import APIRouter, Depends

from lms_gateway.auth.dependencies import get_current_principal, get_identity_store
from lms_gateway.auth.principal import Principal
from lms_gateway.repositories.base import IdentityStore
from lms_gateway.schemas.identity import DependentRead, GuardianRead, PrincipalRead

router = APIRouter(prefix="/auth")


@router.get("/me", response_model=PrincipalRead)
async def me(
    principal: Principal = Depends(get_current_principal),
    store: IdentityStore = Depends(get_identity_store),
):
    """Current principal with its guardian or dependent profile."""
    guardian = dependent = None
    if principal.guardian_id is not None:
        guardian = await store.guardians.get(principal.guardian_id)
    if principal.dependent_id is not None:
        dependent = await store.dependents.get(principal.dependent_id)

    return PrincipalRead(
        username=principal.username,
        role=principal.role.value,
        authorities=list(principal.authorities),
        internal=principal.internal,
        permissions=list(principal.permissions),
        guardian=GuardianRead.model_validate(guardian) if guardian else None,
        dependent=DependentRead.model_validate(dependent) if dependent else None,
    )
