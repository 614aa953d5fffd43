"""Startup seeding — role catalog and the reserved admin account.

Learn: Federated role names are validated against the `roles` table, so
the catalog must exist before the first federated login. The reserved
internal principal (the only account internal tokens can authenticate
as) is seeded too, with a bcrypt hash of LMS_ADMIN_PASSWORD.

Safe to run on every start and from several processes at once: each
insert goes through the same create-then-retry upsert the provisioner
uses.
"""

from dataclasses import dataclass, field

import structlog

from lms_gateway.auth.password import hash_password, verify_password
from lms_gateway.auth.provisioning import upsert_with_retry
from lms_gateway.auth.roles import ROLE_DESCRIPTIONS, Role
from lms_gateway.db.models import Account, RoleRecord
from lms_gateway.repositories.base import IdentityStore

logger = structlog.get_logger()


@dataclass
class SeedResult:
    roles_created: list[str] = field(default_factory=list)
    admin_created: bool = False
    admin_password_updated: bool = False


async def seed_identity_catalog(
    store: IdentityStore,
    admin_username: str,
    admin_email: str,
    admin_password: str,
) -> SeedResult:
    result = SeedResult()

    async with store.transaction():
        for role in Role:
            await _ensure_role(store, role, result)

    async with store.transaction():
        await _ensure_admin(store, admin_username, admin_email, admin_password, result)

    logger.info(
        "bootstrap.completed",
        roles_created=result.roles_created,
        admin_created=result.admin_created,
        admin_password_updated=result.admin_password_updated,
    )
    return result


async def _ensure_role(store: IdentityStore, role: Role, result: SeedResult) -> RoleRecord:
    async def create() -> RoleRecord:
        record = await store.roles.add(
            RoleRecord(role=role.value, description=ROLE_DESCRIPTIONS[role])
        )
        result.roles_created.append(role.value)
        return record

    async def keep(record: RoleRecord) -> None:
        return None

    return await upsert_with_retry(
        "role", role.value, lambda: store.roles.find_role(role), create, keep
    )


async def _ensure_admin(
    store: IdentityStore,
    username: str,
    email: str,
    password: str,
    result: SeedResult,
) -> Account:
    async def create() -> Account:
        admin_role = await store.roles.find_role(Role.ADMIN)
        account = await store.accounts.add(
            Account(
                username=username,
                email=email,
                password_hash=hash_password(password),
                role=admin_role,
                is_active=True,
            )
        )
        result.admin_created = True
        return account

    async def refresh(account: Account) -> None:
        # Rotating LMS_ADMIN_PASSWORD takes effect on the next start
        if not verify_password(password, account.password_hash):
            account.password_hash = hash_password(password)
            await store.accounts.save(account)
            result.admin_password_updated = True

    return await upsert_with_retry(
        "account",
        username,
        lambda: store.accounts.find_by_username(username),
        create,
        refresh,
    )
