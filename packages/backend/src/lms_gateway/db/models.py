"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic migrations mirror these definitions.

Key concepts:
- UUID primary keys for local rows, BIGINT for identity-provider ids
- UNIQUE constraints on every natural key the provisioner upserts by
  (external ids, username, email). The database, not the application,
  guarantees at-most-one row per external identity.
- Dependents always reference a guardian (NOT NULL foreign key).
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


GUARDIAN_TYPE_DECIDING = "DECIDING"
GUARDIAN_TYPE_NON_DECIDING = "NON_DECIDING"


# ══════════════════════════════════════════════════════════════
# Role catalog
# ══════════════════════════════════════════════════════════════


class RoleRecord(Base):
    """One row per Role value — the persisted role catalog.

    Learn: Role strings in federated tokens are validated against this
    table, not against the enum alone. A role that exists in code but
    was never seeded is rejected as unknown.
    """

    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("role", name="uq_roles_role"),)

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Federated profiles
# ══════════════════════════════════════════════════════════════


class Guardian(Base):
    """A responsible party federated from the identity provider.

    Learn: Created and refreshed only by the identity provisioner.
    external_guardian_id is the provider's id and the upsert key.
    """

    __tablename__ = "guardians"
    __table_args__ = (
        UniqueConstraint("external_guardian_id", name="uq_guardians_external_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    external_guardian_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    guardian_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=GUARDIAN_TYPE_DECIDING
    )  # DECIDING, NON_DECIDING
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )


class Dependent(Base):
    """The party in a guardian's care.

    Learn: guardian_id is NOT NULL with a real foreign key, so a
    dependent can never point at a guardian row that does not exist.
    """

    __tablename__ = "dependents"
    __table_args__ = (
        UniqueConstraint("external_dependent_id", name="uq_dependents_external_id"),
        Index("ix_dependents_guardian", "guardian_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    external_dependent_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_name: Mapped[str] = mapped_column(String(50), nullable=False)
    case_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    guardian_id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("guardians.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )


# ══════════════════════════════════════════════════════════════
# Accounts
# ══════════════════════════════════════════════════════════════


class Account(Base):
    """A login identity. Exactly one role, at most one linked profile.

    Learn: Federated accounts have an empty password_hash; they only
    ever authenticate with identity provider tokens. The reserved
    admin account is the only one with a real bcrypt hash.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("username", name="uq_accounts_username"),
        UniqueConstraint("email", name="uq_accounts_email"),
        CheckConstraint(
            "NOT (guardian_id IS NOT NULL AND dependent_id IS NOT NULL)",
            name="ck_accounts_single_profile",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    username: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )  # null for dependents
    password_hash: Mapped[str] = mapped_column(
        String(255), nullable=False, default=""
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("roles.id"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    guardian_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("guardians.id"), nullable=True
    )
    dependent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("dependents.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Eager: every authenticated request reads the role
    role: Mapped["RoleRecord"] = relationship(lazy="joined")
