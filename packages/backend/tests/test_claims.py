"""Claim extraction tests.

Learn: ClaimExtractor turns verified claims into a NormalizedTokenPayload.
Covers:
1. The canonical CHILD shape with nested child/parent objects
2. The legacy "roles" list / CSV shape, and "role" taking precedence
3. Account id fallback: child id wins, else parent id
4. Unknown roles, roles missing from the catalog, malformed nested objects
"""

import pytest

from conftest import child_claims
from fakes import InMemoryIdentityStore
from lms_gateway.auth.claims import ClaimExtractor
from lms_gateway.auth.errors import MissingRequiredClaim, UnknownRole
from lms_gateway.auth.roles import Role


def _claims(**overrides) -> dict:
    claims = {"sub": "abhi123", "exp": 4102444800, **child_claims()}
    claims.update(overrides)
    return claims


# ═══════════════════════════════════════════════════════════
# Canonical shape
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_child_token_extracts_both_profiles(store):
    payload = await ClaimExtractor(store.roles).extract(_claims())

    assert payload.role == Role.DEPENDENT
    assert payload.subject == "abhi123"
    assert payload.account_id == 12345
    assert payload.dependent.user_name == "abhi123"
    assert payload.dependent.case_number == "45632"
    assert payload.guardian.id == 56789
    assert payload.guardian.user_name == "johnParent"
    assert payload.email == "johnparent@x.com"
    assert payload.case_number == "45632"
    assert payload.gender == "M"
    assert payload.expires_at is not None


@pytest.mark.asyncio
async def test_parent_only_token_uses_parent_id(store):
    claims = _claims(role="DECIDING_PARENT", sub="johnParent")
    del claims["child"]

    payload = await ClaimExtractor(store.roles).extract(claims)

    assert payload.role == Role.DECIDING_GUARDIAN
    assert payload.account_id == 56789
    assert payload.dependent is None


@pytest.mark.asyncio
async def test_numeric_string_ids_are_accepted(store):
    claims = _claims()
    claims["child"] = {**claims["child"], "id": "12345"}
    payload = await ClaimExtractor(store.roles).extract(claims)
    assert payload.account_id == 12345


@pytest.mark.asyncio
async def test_permissions_csv(store):
    payload = await ClaimExtractor(store.roles).extract(
        _claims(permissions="course:read, course:write")
    )
    assert payload.permissions == ["course:read", "course:write"]


# ═══════════════════════════════════════════════════════════
# Role shapes
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_roles_list_first_known_wins(store):
    claims = _claims(roles=["TEACHER", "ROLE_NON_DECIDING_PARENT", "CHILD"])
    del claims["role"]

    payload = await ClaimExtractor(store.roles).extract(claims)

    assert payload.role == Role.NON_DECIDING_GUARDIAN


@pytest.mark.asyncio
async def test_roles_comma_separated(store):
    claims = _claims(roles="child,DECIDING_PARENT")
    del claims["role"]
    payload = await ClaimExtractor(store.roles).extract(claims)
    assert payload.role == Role.DEPENDENT


@pytest.mark.asyncio
async def test_role_string_takes_precedence_over_list(store):
    payload = await ClaimExtractor(store.roles).extract(
        _claims(role="CHILD", roles=["DECIDING_PARENT"])
    )
    assert payload.role == Role.DEPENDENT


@pytest.mark.asyncio
async def test_unknown_role(store):
    with pytest.raises(UnknownRole) as exc:
        await ClaimExtractor(store.roles).extract(_claims(role="TEACHER"))
    assert "TEACHER" in exc.value.message


@pytest.mark.asyncio
async def test_role_missing_from_catalog():
    """A valid Role that was never seeded is rejected like an unknown one."""
    store = InMemoryIdentityStore()
    store.seed_roles(Role.ADMIN, Role.DECIDING_GUARDIAN)
    with pytest.raises(UnknownRole):
        await ClaimExtractor(store.roles).extract(_claims())


@pytest.mark.asyncio
async def test_no_catalog_trusts_enum():
    payload = await ClaimExtractor(role_catalog=None).extract(_claims())
    assert payload.role == Role.DEPENDENT


@pytest.mark.asyncio
async def test_missing_role(store):
    claims = _claims()
    del claims["role"]
    with pytest.raises(MissingRequiredClaim):
        await ClaimExtractor(store.roles).extract(claims)


# ═══════════════════════════════════════════════════════════
# Malformed profiles
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_no_profile_objects(store):
    claims = _claims()
    del claims["child"]
    del claims["parent"]
    with pytest.raises(MissingRequiredClaim):
        await ClaimExtractor(store.roles).extract(claims)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "child",
    [
        "12345",
        {"userName": "abhi123"},
        {"id": 12345},
        {"id": 12345, "userName": ""},
        {"id": "not-a-number", "userName": "abhi123"},
    ],
)
async def test_malformed_child(store, child):
    with pytest.raises(MissingRequiredClaim):
        await ClaimExtractor(store.roles).extract(_claims(child=child))


@pytest.mark.asyncio
async def test_empty_child_object_falls_back_to_parent(store):
    payload = await ClaimExtractor(store.roles).extract(_claims(child={}))
    assert payload.dependent is None
    assert payload.account_id == 56789


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "field, value",
    [
        ("userName", "a" * 51),
        ("name", "n" * 101),
        ("caseNumber", "9" * 51),
        ("gender", "g" * 21),
        ("id", 2**63),
    ],
)
async def test_oversized_child_field(store, field, value):
    """Values wider than their profile column are malformed claims."""
    claims = _claims()
    claims["child"] = {**claims["child"], field: value}
    with pytest.raises(MissingRequiredClaim):
        await ClaimExtractor(store.roles).extract(claims)


@pytest.mark.asyncio
async def test_oversized_parent_email(store):
    claims = _claims()
    claims["parent"] = {**claims["parent"], "email": "e" * 95 + "@x.com"}
    with pytest.raises(MissingRequiredClaim):
        await ClaimExtractor(store.roles).extract(claims)
