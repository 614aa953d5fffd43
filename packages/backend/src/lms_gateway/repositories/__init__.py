"""Persistence collaborators for the identity gateway.

Learn: The provisioner talks to abstract repositories (base.py), never
to an AsyncSession directly. sql.py is the PostgreSQL implementation.
"""

from lms_gateway.repositories.base import (
    AccountRepository,
    DependentRepository,
    GuardianRepository,
    IdentityStore,
    RoleCatalog,
    UniqueViolation,
)

__all__ = [
    "AccountRepository",
    "DependentRepository",
    "GuardianRepository",
    "IdentityStore",
    "RoleCatalog",
    "UniqueViolation",
]
