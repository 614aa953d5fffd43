"""Just-in-time provisioning tests.

Learn: These run the provisioner against the in-memory store, whose
unique keys and transaction rollback mirror the PostgreSQL schema.
Covers:
1. First CHILD login creates guardian + dependent + both accounts
2. Replaying the same token creates nothing new
3. Guardian tokens, with and without a bundled child
4. Profile fields refresh on every login
5. Two concurrent first logins produce exactly one of each row
6. A conflict that survives the retry → PersistenceConflict
7. A username owned by another role or profile is never reused
"""

import asyncio

import pytest

from conftest import child_claims
from fakes import InMemoryIdentityStore
from lms_gateway.auth.claims import ClaimExtractor
from lms_gateway.auth.errors import (
    AccountMismatch,
    MissingRequiredClaim,
    PersistenceConflict,
    UnknownRole,
)
from lms_gateway.auth.provisioning import IdentityResolver
from lms_gateway.auth.roles import Role
from lms_gateway.db.models import GUARDIAN_TYPE_DECIDING, GUARDIAN_TYPE_NON_DECIDING
from lms_gateway.repositories.base import UniqueViolation


async def _resolve(store: InMemoryIdentityStore, claims: dict):
    claims = {"sub": "abhi123", "exp": 4102444800, **claims}
    payload = await ClaimExtractor(store.roles).extract(claims)
    return await IdentityResolver(store).resolve(payload)


def _guardian_claims(role="DECIDING_PARENT", with_child=False, **parent) -> dict:
    claims = child_claims()
    claims["role"] = role
    claims["parent"].update(parent)
    if not with_child:
        del claims["child"]
    return claims


# ═══════════════════════════════════════════════════════════
# CHILD tokens
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_first_child_login_provisions_everything(store):
    account = await _resolve(store, child_claims())

    assert account.username == "abhi123"
    assert account.role.role == "CHILD"
    assert account.dependent_id is not None
    assert account.guardian_id is None
    assert account.password_hash == ""

    dependent = await store.dependents.find_by_external_id(12345)
    guardian = await store.guardians.find_by_external_id(56789)
    assert dependent.id == account.dependent_id
    assert dependent.guardian_id == guardian.id
    assert dependent.case_number == "45632"
    assert guardian.user_name == "johnParent"
    assert guardian.guardian_type == GUARDIAN_TYPE_DECIDING

    guardian_account = await store.accounts.find_by_username("johnParent")
    assert guardian_account.role.role == "DECIDING_PARENT"
    assert guardian_account.guardian_id == guardian.id
    assert guardian_account.email == "johnparent@x.com"

    # superadmin + guardian account + dependent account
    assert store.counts() == {"accounts": 3, "guardians": 1, "dependents": 1}
    # guardian pair, then dependent pair
    assert store.commits == 2


@pytest.mark.asyncio
async def test_replaying_token_creates_nothing(store):
    first = await _resolve(store, child_claims())
    inserts = (
        store.accounts.table.inserts,
        store.guardians.table.inserts,
        store.dependents.table.inserts,
    )

    second = await _resolve(store, child_claims())

    assert second.id == first.id
    assert (
        store.accounts.table.inserts,
        store.guardians.table.inserts,
        store.dependents.table.inserts,
    ) == inserts
    assert store.counts() == {"accounts": 3, "guardians": 1, "dependents": 1}


@pytest.mark.asyncio
async def test_child_token_without_parent(store):
    claims = child_claims()
    del claims["parent"]
    with pytest.raises(MissingRequiredClaim):
        await _resolve(store, claims)
    assert store.counts()["dependents"] == 0


@pytest.mark.asyncio
async def test_profile_fields_refresh(store):
    await _resolve(store, child_claims())

    claims = child_claims()
    claims["child"]["name"] = "Abhishek"
    claims["child"]["caseNumber"] = "99999"
    claims["parent"]["email"] = "john.new@x.com"
    await _resolve(store, claims)

    dependent = await store.dependents.find_by_external_id(12345)
    guardian = await store.guardians.find_by_external_id(56789)
    assert dependent.name == "Abhishek"
    assert dependent.case_number == "99999"
    assert guardian.email == "john.new@x.com"
    assert store.dependents.table.updates >= 1


@pytest.mark.asyncio
async def test_dependent_moves_to_new_guardian(store):
    await _resolve(store, child_claims())
    await _resolve(store, child_claims(parent_id=11111, parent_user="janeParent"))

    dependent = await store.dependents.find_by_external_id(12345)
    jane = await store.guardians.find_by_external_id(11111)
    assert dependent.guardian_id == jane.id
    assert store.counts()["guardians"] == 2


@pytest.mark.asyncio
async def test_parent_type_claim_sets_guardian_type(store):
    claims = child_claims()
    claims["parent"]["type"] = "non_deciding_parent"
    await _resolve(store, claims)

    guardian = await store.guardians.find_by_external_id(56789)
    assert guardian.guardian_type == GUARDIAN_TYPE_NON_DECIDING


# ═══════════════════════════════════════════════════════════
# Guardian tokens
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_deciding_parent_login(store):
    account = await _resolve(store, _guardian_claims())

    assert account.username == "johnParent"
    assert account.role.role == "DECIDING_PARENT"
    assert account.guardian_id is not None
    assert store.counts() == {"accounts": 2, "guardians": 1, "dependents": 0}


@pytest.mark.asyncio
async def test_non_deciding_parent_login(store):
    account = await _resolve(store, _guardian_claims(role="NON_DECIDING_PARENT"))

    assert account.role.role == "NON_DECIDING_PARENT"
    guardian = await store.guardians.get(account.guardian_id)
    assert guardian.guardian_type == GUARDIAN_TYPE_NON_DECIDING


@pytest.mark.asyncio
async def test_parent_login_with_bundled_child(store):
    account = await _resolve(store, _guardian_claims(with_child=True))

    assert account.username == "johnParent"
    dependents = await store.dependents.find_all_by_guardian_id(account.guardian_id)
    assert [d.external_dependent_id for d in dependents] == [12345]
    child_account = await store.accounts.find_by_username("abhi123")
    assert child_account.dependent_id == dependents[0].id


@pytest.mark.asyncio
async def test_existing_account_keeps_its_role(store):
    """A parent first seen through a CHILD token stays DECIDING_PARENT."""
    await _resolve(store, child_claims())
    account = await _resolve(store, _guardian_claims(role="NON_DECIDING_PARENT"))
    assert account.role.role == "DECIDING_PARENT"


@pytest.mark.asyncio
async def test_admin_role_is_never_provisioned(store):
    with pytest.raises(UnknownRole):
        await _resolve(store, _guardian_claims(role="ADMIN"))
    assert store.counts()["guardians"] == 0


# ═══════════════════════════════════════════════════════════
# Concurrency
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_concurrent_first_logins_create_one_of_each(store):
    results = await asyncio.gather(
        _resolve(store, child_claims()),
        _resolve(store, child_claims()),
        _resolve(store, child_claims()),
    )

    assert len({a.id for a in results}) == 1
    assert store.counts() == {"accounts": 3, "guardians": 1, "dependents": 1}
    dependent = await store.dependents.find_by_external_id(12345)
    assert dependent.guardian_id in store.guardians.table.rows


@pytest.mark.asyncio
async def test_concurrent_siblings_share_one_guardian(store):
    await asyncio.gather(
        _resolve(store, child_claims(child_id=1, child_user="kid1")),
        _resolve(store, child_claims(child_id=2, child_user="kid2")),
    )

    guardian = await store.guardians.find_by_external_id(56789)
    siblings = await store.dependents.find_all_by_guardian_id(guardian.id)
    assert [d.user_name for d in siblings] == ["kid1", "kid2"]
    assert store.counts() == {"accounts": 4, "guardians": 1, "dependents": 2}


@pytest.mark.asyncio
async def test_conflict_after_retry_is_fatal(store, monkeypatch):
    """The row exists but every read misses it: the retry gives up."""
    await _resolve(store, child_claims())

    async def never_found(external_id):
        return None

    monkeypatch.setattr(store.guardians, "find_by_external_id", never_found)

    with pytest.raises(PersistenceConflict):
        await _resolve(store, child_claims())
    assert store.rollbacks == 1
    assert store.counts() == {"accounts": 3, "guardians": 1, "dependents": 1}


@pytest.mark.asyncio
async def test_failed_transaction_leaves_no_rows(store, monkeypatch):
    """A failure after the guardian insert rolls the guardian back too."""

    async def broken_add(account):
        raise UniqueViolation("account", account.username)

    monkeypatch.setattr(store.accounts, "add", broken_add)

    with pytest.raises(PersistenceConflict):
        await _resolve(store, child_claims())
    assert store.counts() == {"accounts": 1, "guardians": 0, "dependents": 0}


@pytest.mark.asyncio
async def test_role_missing_from_catalog_at_account_creation():
    store = InMemoryIdentityStore()
    store.seed_roles(Role.DEPENDENT)
    claims = {"sub": "abhi123", "exp": 4102444800, **child_claims()}
    payload = await ClaimExtractor(store.roles).extract(claims)

    with pytest.raises(UnknownRole):
        await IdentityResolver(store).resolve(payload)
    assert store.counts() == {"accounts": 0, "guardians": 0, "dependents": 0}


# ═══════════════════════════════════════════════════════════
# Account ownership
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_child_username_cannot_claim_admin_account(store):
    """A federated child named like the admin must not become the admin."""
    claims = child_claims(child_user="superadmin")

    with pytest.raises(AccountMismatch):
        await _resolve(store, claims)

    admin = await store.accounts.find_by_username("superadmin")
    assert admin.role.role == "ADMIN"
    assert admin.dependent_id is None
    assert admin.guardian_id is None
    # the dependent pair was rolled back; the guardian pair had committed
    assert store.counts() == {"accounts": 2, "guardians": 1, "dependents": 0}


@pytest.mark.asyncio
async def test_parent_username_cannot_claim_child_account(store):
    await _resolve(store, child_claims())

    claims = _guardian_claims(id=99999, userName="abhi123", email="other@x.com")
    with pytest.raises(AccountMismatch):
        await _resolve(store, claims)

    child = await store.accounts.find_by_username("abhi123")
    assert child.role.role == "CHILD"
    assert child.guardian_id is None
    assert await store.guardians.find_by_external_id(99999) is None


@pytest.mark.asyncio
async def test_guardian_account_linked_to_other_guardian(store):
    """Same userName, different parent id: the account stays with its owner."""
    await _resolve(store, _guardian_claims())

    with pytest.raises(AccountMismatch):
        await _resolve(store, _guardian_claims(id=11111, email="imposter@x.com"))

    assert await store.guardians.find_by_external_id(11111) is None


@pytest.mark.asyncio
async def test_dependent_account_linked_to_other_dependent(store):
    await _resolve(store, child_claims())

    with pytest.raises(AccountMismatch):
        await _resolve(store, child_claims(child_id=424242))

    assert await store.dependents.find_by_external_id(424242) is None


@pytest.mark.asyncio
async def test_unlinked_account_of_same_family_gets_linked(store):
    store.seed_account("johnParent", Role.NON_DECIDING_GUARDIAN)

    account = await _resolve(store, _guardian_claims())

    guardian = await store.guardians.find_by_external_id(56789)
    assert account.guardian_id == guardian.id
    assert account.role.role == "NON_DECIDING_PARENT"


@pytest.mark.asyncio
async def test_non_unique_failure_is_not_retried(store, monkeypatch):
    """Only UniqueViolation takes the re-read path."""
    calls = []

    async def broken_add(guardian):
        calls.append(guardian)
        raise PersistenceConflict("guardian row rejected")

    monkeypatch.setattr(store.guardians, "add", broken_add)

    with pytest.raises(PersistenceConflict):
        await _resolve(store, child_claims())
    assert len(calls) == 1
