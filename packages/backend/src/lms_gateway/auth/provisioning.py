"""Just-in-time identity provisioning for federated tokens.

Learn: The first time a guardian or dependent shows up with a valid
identity provider token, we create their local rows on the spot:

    CHILD token               → Guardian + guardian Account (DECIDING_PARENT)
                                 then Dependent + dependent Account (CHILD)
    DECIDING/NON_DECIDING     → Guardian + guardian Account (token role)
    PARENT token                 plus Dependent + Account when a child is bundled

Every step is an upsert keyed by a unique column ("find, else create,
on conflict re-read"), so replaying the same token creates nothing new
and only refreshes the mutable profile fields.

Two concurrent first logins race on the existence check. No lock is
taken; the database's unique constraints decide the winner. The
loser's insert raises UniqueViolation, it re-reads the winner's row
and continues as an update. A second conflict for the same key is
not expected and raises PersistenceConflict.

Writes are grouped per entity pair: guardian + its account commit
first, then dependent + its account. A dependent row is therefore only
ever written once its guardian is committed.
"""

from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from lms_gateway.auth.claims import DependentClaims, GuardianClaims, NormalizedTokenPayload
from lms_gateway.auth.errors import (
    AccountMismatch,
    MissingRequiredClaim,
    PersistenceConflict,
    UnknownRole,
)
from lms_gateway.auth.roles import Role, parse_role
from lms_gateway.db.models import (
    GUARDIAN_TYPE_DECIDING,
    GUARDIAN_TYPE_NON_DECIDING,
    Account,
    Dependent,
    Guardian,
    RoleRecord,
)
from lms_gateway.repositories.base import IdentityStore, UniqueViolation

logger = structlog.get_logger()

T = TypeVar("T")

# One re-read after a unique violation; a second conflict is fatal.
MAX_CONFLICT_RETRIES = 1


def _assign(row, **fields) -> bool:
    """Set fields that differ. Returns True when anything changed."""
    changed = False
    for name, value in fields.items():
        if getattr(row, name) != value:
            setattr(row, name, value)
            changed = True
    return changed


async def upsert_with_retry(
    entity: str,
    key: object,
    find: Callable[[], Awaitable[Optional[T]]],
    create: Callable[[], Awaitable[T]],
    refresh: Callable[[T], Awaitable[None]],
) -> T:
    """Find-or-create with a single retry on a unique violation."""
    for attempt in range(MAX_CONFLICT_RETRIES + 1):
        existing = await find()
        if existing is not None:
            await refresh(existing)
            return existing
        try:
            row = await create()
        except UniqueViolation:
            logger.info(
                "provisioning.conflict_retry", entity=entity, key=key, attempt=attempt
            )
            continue
        logger.info("provisioning.created", entity=entity, key=key)
        return row
    logger.error("provisioning.conflict_fatal", entity=entity, key=key)
    raise PersistenceConflict(f"Could not provision {entity} {key}")


async def _catalog_role(store: IdentityStore, role: Role) -> RoleRecord:
    record = await store.roles.find_role(role)
    if record is None:
        raise UnknownRole(f"Unknown role: {role.value}")
    return record


def guardian_type_for(role: Role) -> str:
    if role == Role.NON_DECIDING_GUARDIAN:
        return GUARDIAN_TYPE_NON_DECIDING
    return GUARDIAN_TYPE_DECIDING


def guardian_type_from_claim(value: Optional[str]) -> Optional[str]:
    """`type` claim on the parent object; None leaves the stored type alone."""
    if value is None:
        return None
    if value.strip().upper().removesuffix("_PARENT") == GUARDIAN_TYPE_NON_DECIDING:
        return GUARDIAN_TYPE_NON_DECIDING
    return GUARDIAN_TYPE_DECIDING


# ─── Upserts ─────────────────────────────────────────────


async def upsert_guardian(
    store: IdentityStore,
    claims: GuardianClaims,
    guardian_type: Optional[str] = None,
) -> Guardian:
    """Guardian by external id; profile fields always refreshed."""

    def fields(g: Guardian) -> dict:
        values = {
            "name": claims.name,
            "user_name": claims.user_name,
            "email": claims.email,
            "gender": claims.gender,
        }
        if guardian_type is not None:
            values["guardian_type"] = guardian_type
        elif g.guardian_type is None:
            values["guardian_type"] = GUARDIAN_TYPE_DECIDING
        return values

    async def create() -> Guardian:
        guardian = Guardian(external_guardian_id=claims.id)
        _assign(guardian, **fields(guardian))
        return await store.guardians.add(guardian)

    async def refresh(guardian: Guardian) -> None:
        if _assign(guardian, **fields(guardian)):
            await store.guardians.save(guardian)

    return await upsert_with_retry(
        "guardian",
        claims.id,
        lambda: store.guardians.find_by_external_id(claims.id),
        create,
        refresh,
    )


async def upsert_dependent(
    store: IdentityStore,
    claims: DependentClaims,
    guardian: Guardian,
) -> Dependent:
    """Dependent by external id, (re)linked to `guardian`."""

    def fields() -> dict:
        return {
            "name": claims.name,
            "user_name": claims.user_name,
            "case_number": claims.case_number,
            "gender": claims.gender,
            "guardian_id": guardian.id,
        }

    async def create() -> Dependent:
        dependent = Dependent(external_dependent_id=claims.id, **fields())
        return await store.dependents.add(dependent)

    async def refresh(dependent: Dependent) -> None:
        if _assign(dependent, **fields()):
            await store.dependents.save(dependent)

    return await upsert_with_retry(
        "dependent",
        claims.id,
        lambda: store.dependents.find_by_external_id(claims.id),
        create,
        refresh,
    )


GUARDIAN_ROLES = frozenset({Role.DECIDING_GUARDIAN, Role.NON_DECIDING_GUARDIAN})


def _same_family(existing: Role, expected: Role) -> bool:
    if existing == Role.ADMIN or expected == Role.ADMIN:
        return False
    return (existing in GUARDIAN_ROLES) == (expected in GUARDIAN_ROLES)


def _check_ownership(
    account: Account,
    role: Role,
    guardian: Optional[Guardian],
    dependent: Optional[Dependent],
) -> None:
    """An existing account may only be reused by the identity it belongs to."""
    existing = parse_role(account.role.role)
    if existing is None or not _same_family(existing, role):
        reason = "role"
    elif guardian is not None and (
        account.dependent_id is not None
        or account.guardian_id not in (None, guardian.id)
    ):
        reason = "guardian_link"
    elif dependent is not None and (
        account.guardian_id is not None
        or account.dependent_id not in (None, dependent.id)
    ):
        reason = "dependent_link"
    else:
        return

    logger.warning(
        "provisioning.account_mismatch",
        username=account.username,
        account_role=account.role.role,
        expected_role=role.value,
        reason=reason,
    )
    raise AccountMismatch()


async def ensure_account(
    store: IdentityStore,
    username: str,
    role: Role,
    email: Optional[str] = None,
    guardian: Optional[Guardian] = None,
    dependent: Optional[Dependent] = None,
) -> Account:
    """Account by username; created with `role` when missing.

    Existing accounts keep their role, but only within the same family
    (dependent vs. guardian): an admin account, an account of the other
    family, or one linked to a different profile raises AccountMismatch.
    An existing account with no profile link gets linked to the given
    profile.
    """

    async def create() -> Account:
        account = Account(
            username=username,
            email=email,
            password_hash="",
            role=await _catalog_role(store, role),
            is_active=True,
            guardian_id=guardian.id if guardian else None,
            dependent_id=dependent.id if dependent else None,
        )
        return await store.accounts.add(account)

    async def refresh(account: Account) -> None:
        _check_ownership(account, role, guardian, dependent)
        if account.guardian_id is not None or account.dependent_id is not None:
            return
        if guardian is not None:
            account.guardian_id = guardian.id
        elif dependent is not None:
            account.dependent_id = dependent.id
        else:
            return
        await store.accounts.save(account)

    return await upsert_with_retry(
        "account",
        username,
        lambda: store.accounts.find_by_username(username),
        create,
        refresh,
    )


async def _provision_dependent_pair(
    store: IdentityStore, claims: DependentClaims, guardian: Guardian
) -> Account:
    async with store.transaction():
        dependent = await upsert_dependent(store, claims, guardian)
        return await ensure_account(
            store, claims.user_name, Role.DEPENDENT, dependent=dependent
        )


# ─── Strategies (one per role) ───────────────────────────


async def provision_dependent(
    payload: NormalizedTokenPayload, store: IdentityStore
) -> Account:
    """CHILD token → guardian pair first, then dependent pair. Returns the dependent's account."""
    if payload.guardian is None or payload.dependent is None:
        raise MissingRequiredClaim()

    async with store.transaction():
        guardian = await upsert_guardian(
            store, payload.guardian, guardian_type_from_claim(payload.guardian.type)
        )
        await ensure_account(
            store,
            payload.guardian.user_name,
            Role.DECIDING_GUARDIAN,
            email=payload.guardian.email,
            guardian=guardian,
        )

    return await _provision_dependent_pair(store, payload.dependent, guardian)


async def provision_guardian(
    payload: NormalizedTokenPayload, store: IdentityStore
) -> Account:
    """Guardian token → guardian pair, plus a bundled dependent. Returns the guardian's account."""
    if payload.guardian is None:
        raise MissingRequiredClaim()

    async with store.transaction():
        guardian = await upsert_guardian(
            store, payload.guardian, guardian_type_for(payload.role)
        )
        account = await ensure_account(
            store,
            payload.guardian.user_name,
            payload.role,
            email=payload.guardian.email,
            guardian=guardian,
        )

    if payload.dependent is not None:
        await _provision_dependent_pair(store, payload.dependent, guardian)

    return account


Strategy = Callable[[NormalizedTokenPayload, IdentityStore], Awaitable[Account]]

# No ADMIN entry: federated tokens never provision admins.
PROVISIONING_STRATEGIES: dict[Role, Strategy] = {
    Role.DEPENDENT: provision_dependent,
    Role.DECIDING_GUARDIAN: provision_guardian,
    Role.NON_DECIDING_GUARDIAN: provision_guardian,
}


class IdentityResolver:
    """Maps a federated token payload to the local Account to authenticate as."""

    def __init__(
        self,
        store: IdentityStore,
        strategies: Optional[dict[Role, Strategy]] = None,
    ):
        self.store = store
        self.strategies = strategies if strategies is not None else PROVISIONING_STRATEGIES

    async def resolve(self, payload: NormalizedTokenPayload) -> Account:
        strategy = self.strategies.get(payload.role)
        if strategy is None:
            raise UnknownRole(f"Unknown role: {payload.role.value}")
        account = await strategy(payload, self.store)
        logger.debug(
            "provisioning.resolved",
            subject=payload.subject,
            username=account.username,
            role=payload.role.value,
        )
        return account
