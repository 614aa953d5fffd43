"""The resolved caller of the current request.

Learn: A Principal is what downstream handlers see: the username and
the authorities the route matcher checks. It is bound to a ContextVar
for the lifetime of one request and reset afterwards, and also stored
on request.state for FastAPI dependencies.
"""

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Optional

from lms_gateway.auth.roles import Role, authority_for
from lms_gateway.db.models import Account


@dataclass(frozen=True)
class Principal:
    username: str
    role: Role
    authorities: tuple[str, ...]
    account_id: Optional[uuid.UUID] = None
    guardian_id: Optional[uuid.UUID] = None
    dependent_id: Optional[uuid.UUID] = None
    internal: bool = False
    permissions: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_account(
        cls,
        account: Account,
        internal: bool = False,
        permissions: Optional[list[str]] = None,
    ) -> "Principal":
        role = Role(account.role.role)
        return cls(
            username=account.username,
            role=role,
            authorities=(authority_for(role),),
            account_id=account.id,
            guardian_id=account.guardian_id,
            dependent_id=account.dependent_id,
            internal=internal,
            permissions=tuple(permissions or ()),
        )

    def has_authority(self, *authorities: str) -> bool:
        return any(a in self.authorities for a in authorities)


_current: ContextVar[Optional[Principal]] = ContextVar("lms_principal", default=None)


def current_principal() -> Optional[Principal]:
    """Principal of the request being handled, or None when unauthenticated."""
    return _current.get()


def bind_principal(principal: Optional[Principal]) -> Token:
    return _current.set(principal)


def reset_principal(token: Token) -> None:
    _current.reset(token)
