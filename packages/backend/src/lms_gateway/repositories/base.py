"""Repository interfaces consumed by the identity gateway.

Learn: Each repository is a thin, async, storage-agnostic contract.
`add()` inserts a new row and must raise UniqueViolation when a unique
key (external id, username, email) is already taken. That signal is
what makes the provisioner's create-then-retry loop race-safe across
server processes. `save()` persists changes to an existing row.

IdentityStore groups the repositories over one unit of work and
exposes `transaction()`: everything written inside the block is
committed together, or rolled back together on error.
"""

import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Optional

from lms_gateway.auth.roles import Role
from lms_gateway.db.models import Account, Dependent, Guardian, RoleRecord


class UniqueViolation(Exception):
    """An insert collided with an existing row on a unique key."""

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} already exists: {key}")


class RoleCatalog(ABC):
    @abstractmethod
    async def find_role(self, role: Role) -> Optional[RoleRecord]:
        """Catalog row for a role, or None when it was never seeded."""

    @abstractmethod
    async def list_roles(self) -> list[RoleRecord]:
        ...

    @abstractmethod
    async def add(self, record: RoleRecord) -> RoleRecord:
        ...


class AccountRepository(ABC):
    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[Account]:
        ...

    @abstractmethod
    async def add(self, account: Account) -> Account:
        """Insert. Raises UniqueViolation on a taken username/email."""

    @abstractmethod
    async def save(self, account: Account) -> Account:
        ...


class GuardianRepository(ABC):
    @abstractmethod
    async def get(self, guardian_id: uuid.UUID) -> Optional[Guardian]:
        ...

    @abstractmethod
    async def find_by_external_id(self, external_id: int) -> Optional[Guardian]:
        ...

    @abstractmethod
    async def add(self, guardian: Guardian) -> Guardian:
        """Insert. Raises UniqueViolation on a taken external id."""

    @abstractmethod
    async def save(self, guardian: Guardian) -> Guardian:
        ...


class DependentRepository(ABC):
    @abstractmethod
    async def get(self, dependent_id: uuid.UUID) -> Optional[Dependent]:
        ...

    @abstractmethod
    async def find_by_external_id(self, external_id: int) -> Optional[Dependent]:
        ...

    @abstractmethod
    async def find_all_by_guardian_id(self, guardian_id: uuid.UUID) -> list[Dependent]:
        ...

    @abstractmethod
    async def add(self, dependent: Dependent) -> Dependent:
        """Insert. Raises UniqueViolation on a taken external id."""

    @abstractmethod
    async def save(self, dependent: Dependent) -> Dependent:
        ...


class IdentityStore(ABC):
    """The repositories for one request, sharing one unit of work."""

    roles: RoleCatalog
    accounts: AccountRepository
    guardians: GuardianRepository
    dependents: DependentRepository

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Commit everything written inside the block, or roll it all back."""
