"""Role catalog API.

- GET /roles → every seeded role with its authority string
- GET /roles/{name} → one role, 404 if not in the catalog
"""

from fastapi import APIRouter, Depends, HTTPException

from lms_gateway.auth.dependencies import get_identity_store
from lms_gateway.auth.roles import authority_for, parse_role
from lms_gateway.db.models import RoleRecord
from lms_gateway.repositories.base import IdentityStore
from lms_gateway.schemas.identity import RoleRead

router = APIRouter(prefix="/roles")


def _read(record: RoleRecord) -> RoleRead:
    role = parse_role(record.role)
    return RoleRead(
        role=record.role,
        authority=authority_for(role) if role else "",
        description=record.description,
    )


@router.get("", response_model=list[RoleRead])
async def list_roles(store: IdentityStore = Depends(get_identity_store)):
    return [_read(r) for r in await store.roles.list_roles()]


@router.get("/{name}", response_model=RoleRead)
async def get_role(name: str, store: IdentityStore = Depends(get_identity_store)):
    role = parse_role(name)
    record = await store.roles.find_role(role) if role else None
    if record is None:
        raise HTTPException(status_code=404, detail=f"Role not found: {name}")
    return _read(record)
