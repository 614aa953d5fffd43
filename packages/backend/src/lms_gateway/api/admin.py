"""Admin-only account lookup.

Learn: Everything under /admin is restricted to ROLE_ADMIN by the route
table, so the handler itself does no role check.

- GET /admin/accounts/{username} → account, role and linked profile ids
"""

from fastapi import APIRouter, Depends, HTTPException

from lms_gateway.auth.dependencies import get_identity_store
from lms_gateway.auth.roles import authority_for, parse_role
from lms_gateway.repositories.base import IdentityStore
from lms_gateway.schemas.identity import AccountRead

router = APIRouter(prefix="/admin")


@router.get("/accounts/{username}", response_model=AccountRead)
async def get_account(username: str, store: IdentityStore = Depends(get_identity_store)):
    account = await store.accounts.find_by_username(username)
    if account is None:
        raise HTTPException(status_code=404, detail=f"Account not found: {username}")

    role = parse_role(account.role.role)
    return AccountRead(
        id=account.id,
        username=account.username,
        email=account.email,
        role=account.role.role,
        authority=authority_for(role) if role else "",
        is_active=account.is_active,
        guardian_id=account.guardian_id,
        dependent_id=account.dependent_id,
    )
