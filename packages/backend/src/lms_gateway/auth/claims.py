"""Federated token claim extraction.

Learn: The identity provider puts profile data in nested object claims:

    {
      "sub": "abhi123",
      "role": "CHILD",
      "child":  {"id": 12345, "userName": "abhi123", "caseNumber": "45632"},
      "parent": {"id": 56789, "userName": "johnParent", "email": "john.parent@x.com"}
    }

Older tokens carry a "roles" list instead of the "role" string. Both
shapes are accepted. The nested objects are parsed into typed models
(GuardianClaims / DependentClaims) right here at the boundary, so the
provisioner never probes raw dicts. Field widths match the profile
columns, so an oversized value is a malformed claim.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lms_gateway.auth.errors import MissingRequiredClaim, UnknownRole
from lms_gateway.auth.roles import AUTHORITY_PREFIX, Role, parse_role
from lms_gateway.db.models import RoleRecord
from lms_gateway.repositories.base import RoleCatalog

DEPENDENT_CLAIM = "child"
GUARDIAN_CLAIM = "parent"

# Upper bound of the BIGINT external id columns
MAX_EXTERNAL_ID = 2**63 - 1


class _ProfileClaims(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: int = Field(ge=1, le=MAX_EXTERNAL_ID)
    user_name: str = Field(alias="userName", min_length=1, max_length=50)
    name: Optional[str] = Field(default=None, max_length=100)
    gender: Optional[str] = Field(default=None, max_length=20)


class GuardianClaims(_ProfileClaims):
    """`parent` object. Required: id, userName."""

    email: Optional[str] = Field(default=None, max_length=100)
    type: Optional[str] = Field(default=None, max_length=32)


class DependentClaims(_ProfileClaims):
    """`child` object. Required: id, userName. Dependents have no email."""

    case_number: Optional[str] = Field(default=None, alias="caseNumber", max_length=50)


@dataclass(frozen=True)
class NormalizedTokenPayload:
    """Everything the provisioner needs from one verified federated token.

    Lives for one request only; never persisted.
    """

    account_id: int
    subject: str
    role: Role
    claims: dict[str, Any]
    guardian: Optional[GuardianClaims] = None
    dependent: Optional[DependentClaims] = None
    email: Optional[str] = None
    gender: Optional[str] = None
    case_number: Optional[str] = None
    permissions: list[str] = field(default_factory=list)
    expires_at: Optional[datetime] = None


def _string_list(raw: Any) -> list[str]:
    """Accept a JSON list or a comma separated string."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(item).strip() for item in raw if item is not None and str(item).strip()]
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    return []


def _parse_profile(raw: Any, model: type[_ProfileClaims]) -> Optional[_ProfileClaims]:
    if raw is None or raw == {}:
        return None
    if not isinstance(raw, dict):
        raise MissingRequiredClaim()
    try:
        return model.model_validate(raw)
    except ValidationError:
        raise MissingRequiredClaim()


def _expiry(claims: dict) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(float(claims["exp"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError, OverflowError):
        return None


class ClaimExtractor:
    """Turns verified federated claims into a NormalizedTokenPayload.

    `role_catalog` is the persisted role table. Passing None skips the
    catalog check and trusts the Role enum alone (used by the CLI's
    offline token inspection).
    """

    def __init__(self, role_catalog: Optional[RoleCatalog]):
        self._catalog = role_catalog

    async def extract(self, claims: dict) -> NormalizedTokenPayload:
        dependent = _parse_profile(claims.get(DEPENDENT_CLAIM), DependentClaims)
        guardian = _parse_profile(claims.get(GUARDIAN_CLAIM), GuardianClaims)

        # Dependent id wins; guardian id is the fallback
        if dependent is not None:
            account_id = dependent.id
        elif guardian is not None:
            account_id = guardian.id
        else:
            raise MissingRequiredClaim()

        role = await self._resolve_role(claims)

        return NormalizedTokenPayload(
            account_id=account_id,
            subject=claims["sub"],
            role=role,
            claims=dict(claims),
            guardian=guardian,
            dependent=dependent,
            email=guardian.email if guardian else None,
            gender=(dependent.gender if dependent and dependent.gender else None)
            or (guardian.gender if guardian else None),
            case_number=dependent.case_number if dependent else None,
            permissions=_string_list(claims.get("permissions")),
            expires_at=_expiry(claims),
        )

    async def _resolve_role(self, claims: dict) -> Role:
        single = claims.get("role")
        if isinstance(single, str) and single.strip():
            names = [single]
        else:
            names = _string_list(claims.get("roles"))
        if not names:
            raise MissingRequiredClaim()

        for name in names:
            role = parse_role(name.removeprefix(AUTHORITY_PREFIX))
            if role is None:
                continue
            if await self._in_catalog(role):
                return role
        raise UnknownRole(f"Unknown role: {names[0]}")

    async def _in_catalog(self, role: Role) -> bool:
        if self._catalog is None:
            return True
        record: Optional[RoleRecord] = await self._catalog.find_role(role)
        return record is not None
