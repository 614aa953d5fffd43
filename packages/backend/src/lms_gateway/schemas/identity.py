"""Pydantic schemas for principals, roles and federated profiles.

Learn: Read-only schemas; profiles are only ever written by the
identity provisioner, never through the API.
"""

import uuid
from typing import Optional

from pydantic import BaseModel


# ─── Roles ──────────────────────────────────────────────

class RoleRead(BaseModel):
    role: str
    authority: str
    description: Optional[str] = None


# ─── Profiles ───────────────────────────────────────────

class GuardianRead(BaseModel):
    id: uuid.UUID
    external_guardian_id: int
    name: Optional[str] = None
    user_name: str
    email: Optional[str] = None
    gender: Optional[str] = None
    guardian_type: str

    model_config = {"from_attributes": True}


class DependentRead(BaseModel):
    id: uuid.UUID
    external_dependent_id: int
    name: Optional[str] = None
    user_name: str
    case_number: Optional[str] = None
    gender: Optional[str] = None
    guardian_id: uuid.UUID

    model_config = {"from_attributes": True}


class DependentProfile(DependentRead):
    """Dependent with its owning guardian."""
    guardian: Optional[GuardianRead] = None


# ─── Accounts ───────────────────────────────────────────

class AccountRead(BaseModel):
    id: uuid.UUID
    username: str
    email: Optional[str] = None
    role: str
    authority: str
    is_active: bool
    guardian_id: Optional[uuid.UUID] = None
    dependent_id: Optional[uuid.UUID] = None


# ─── Principal ──────────────────────────────────────────

class PrincipalRead(BaseModel):
    username: str
    role: str
    authorities: list[str]
    internal: bool
    permissions: list[str] = []
    guardian: Optional[GuardianRead] = None
    dependent: Optional[DependentRead] = None
