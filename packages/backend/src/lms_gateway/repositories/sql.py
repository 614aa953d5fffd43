"""PostgreSQL repositories on an async SQLAlchemy session.

Learn: Every insert runs inside its own SAVEPOINT (session.begin_nested).
If the flush hits a unique constraint, only that savepoint is rolled
back and the IntegrityError is translated into UniqueViolation. The
surrounding transaction stays usable, so the provisioner can re-read
the row the other request just committed and carry on.

Any other integrity failure (foreign key, check, not null) is not a
race and raises PersistenceConflict straight away.

Under READ COMMITTED, a concurrent insert of the same key blocks until
the other transaction commits, then fails here. That is exactly the
race the provisioner's retry handles.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lms_gateway.auth.errors import PersistenceConflict
from lms_gateway.auth.roles import Role
from lms_gateway.db.models import Account, Dependent, Guardian, RoleRecord
from lms_gateway.repositories.base import (
    AccountRepository,
    DependentRepository,
    GuardianRepository,
    IdentityStore,
    RoleCatalog,
    UniqueViolation,
)


UNIQUE_VIOLATION = "23505"


def _sqlstate(error: IntegrityError) -> Optional[str]:
    orig = error.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


async def _insert(db: AsyncSession, row, entity: str, key: object):
    """Insert in a SAVEPOINT. Only unique violations are retryable."""
    try:
        async with db.begin_nested():
            db.add(row)
            await db.flush()
    except IntegrityError as e:
        if _sqlstate(e) == UNIQUE_VIOLATION:
            raise UniqueViolation(entity, key) from e
        raise PersistenceConflict(f"Could not store {entity} {key}") from e
    return row


async def _update(db: AsyncSession, row):
    try:
        db.add(row)
        await db.flush()
    except IntegrityError as e:
        raise PersistenceConflict(f"Could not update {row.__tablename__} {row.id}") from e
    return row


class SqlRoleCatalog(RoleCatalog):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_role(self, role: Role) -> Optional[RoleRecord]:
        result = await self.db.execute(
            select(RoleRecord).where(RoleRecord.role == role.value)
        )
        return result.scalars().first()

    async def list_roles(self) -> list[RoleRecord]:
        result = await self.db.execute(select(RoleRecord).order_by(RoleRecord.role))
        return list(result.scalars().all())

    async def add(self, record: RoleRecord) -> RoleRecord:
        return await _insert(self.db, record, "role", record.role)


class SqlAccountRepository(AccountRepository):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_username(self, username: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(Account.username == username)
        )
        return result.scalars().first()

    async def add(self, account: Account) -> Account:
        return await _insert(self.db, account, "account", account.username)

    async def save(self, account: Account) -> Account:
        return await _update(self.db, account)


class SqlGuardianRepository(GuardianRepository):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, guardian_id: uuid.UUID) -> Optional[Guardian]:
        return await self.db.get(Guardian, guardian_id)

    async def find_by_external_id(self, external_id: int) -> Optional[Guardian]:
        result = await self.db.execute(
            select(Guardian).where(Guardian.external_guardian_id == external_id)
        )
        return result.scalars().first()

    async def add(self, guardian: Guardian) -> Guardian:
        return await _insert(self.db, guardian, "guardian", guardian.external_guardian_id)

    async def save(self, guardian: Guardian) -> Guardian:
        return await _update(self.db, guardian)


class SqlDependentRepository(DependentRepository):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, dependent_id: uuid.UUID) -> Optional[Dependent]:
        return await self.db.get(Dependent, dependent_id)

    async def find_by_external_id(self, external_id: int) -> Optional[Dependent]:
        result = await self.db.execute(
            select(Dependent).where(Dependent.external_dependent_id == external_id)
        )
        return result.scalars().first()

    async def find_all_by_guardian_id(self, guardian_id: uuid.UUID) -> list[Dependent]:
        result = await self.db.execute(
            select(Dependent)
            .where(Dependent.guardian_id == guardian_id)
            .order_by(Dependent.external_dependent_id)
        )
        return list(result.scalars().all())

    async def add(self, dependent: Dependent) -> Dependent:
        return await _insert(
            self.db, dependent, "dependent", dependent.external_dependent_id
        )

    async def save(self, dependent: Dependent) -> Dependent:
        return await _update(self.db, dependent)


class SqlIdentityStore(IdentityStore):
    """All identity repositories over one AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.roles = SqlRoleCatalog(db)
        self.accounts = SqlAccountRepository(db)
        self.guardians = SqlGuardianRepository(db)
        self.dependents = SqlDependentRepository(db)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        try:
            yield
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise


def sql_store_factory(session_factory: async_sessionmaker):
    """Build an identity store factory: one session per request, auto-closed."""

    @asynccontextmanager
    async def open_store() -> AsyncIterator[SqlIdentityStore]:
        async with session_factory() as session:
            try:
                yield SqlIdentityStore(session)
            finally:
                await session.close()

    return open_store
