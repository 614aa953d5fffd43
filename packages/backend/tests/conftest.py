"""Test fixtures.

Learn: Two layers of fixtures:

1. In-memory (default): `store` is an InMemoryIdentityStore with the
   role catalog and admin account seeded, and `client` is an httpx
   AsyncClient on an app wired to that store. No database needed.
2. PostgreSQL: `db_session` gives a per-test session inside an outer
   transaction that is rolled back afterwards. Every commit() becomes a
   SAVEPOINT (join_transaction_mode="create_savepoint"). Tests using it
   are skipped when LMS_DATABASE_URL is unreachable. `pg_engine` is
   for tests that need several concurrent sessions on committed data.

Tokens are minted with `make_token` using the test secret, signed the
same way the external identity provider signs them.
"""

import time

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from fakes import InMemoryIdentityStore
from lms_gateway.auth.roles import Role
from lms_gateway.config import Settings, settings
from lms_gateway.db.models import Base
from lms_gateway.main import create_app

TEST_SECRET = "test-shared-secret-for-the-identity-provider-0123456789abcdef0123456789"
ADMIN_USERNAME = "superadmin"

TEST_DB_URL = settings.database_url


@pytest.fixture()
def gateway_settings() -> Settings:
    return Settings(
        jwt_secret=TEST_SECRET,
        internal_principal=ADMIN_USERNAME,
        environment="development",
        seed_on_startup=False,
    )


@pytest.fixture()
def make_token():
    """Mint an HS256 token like the identity provider does."""

    def _make(
        sub: str = "abhi123",
        expires_in: int = 3600,
        secret: str = TEST_SECRET,
        algorithm: str = "HS256",
        **claims,
    ) -> str:
        payload = {"sub": sub, "iat": int(time.time()), "exp": int(time.time()) + expires_in}
        payload.update(claims)
        return jwt.encode(payload, secret, algorithm=algorithm)

    return _make


def child_claims(
    child_id=12345,
    child_user="abhi123",
    parent_id=56789,
    parent_user="johnParent",
    **extra,
) -> dict:
    """Claims of a CHILD token with its bundled parent profile."""
    claims = {
        "role": "CHILD",
        "child": {
            "id": child_id,
            "userName": child_user,
            "name": "Abhi",
            "caseNumber": "45632",
            "gender": "M",
        },
        "parent": {
            "id": parent_id,
            "userName": parent_user,
            "name": "John",
            "email": f"{parent_user.lower()}@x.com",
            "gender": "M",
        },
    }
    claims.update(extra)
    return claims


@pytest.fixture()
def store() -> InMemoryIdentityStore:
    s = InMemoryIdentityStore()
    s.seed_roles()
    s.seed_account(ADMIN_USERNAME, Role.ADMIN, email="superadmin@yopmail.com")
    return s


@pytest.fixture()
def app(gateway_settings, store):
    return create_app(config=gateway_settings, store_factory=store.factory())


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def db_session():
    """Per-test PostgreSQL session with automatic rollback via savepoints."""
    engine = create_async_engine(TEST_DB_URL, echo=False)
    try:
        conn = await engine.connect()
    except (OSError, OperationalError, DBAPIError) as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL unavailable: {e}")

    try:
        await conn.run_sync(Base.metadata.create_all)
        trans = await conn.begin()
        session = AsyncSession(
            bind=conn,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )
        try:
            yield session
        finally:
            await session.close()
            await trans.rollback()
    finally:
        await conn.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def pg_engine():
    """PostgreSQL engine for tests that need several independent sessions.

    Learn: Unlike db_session, nothing here is rolled back automatically,
    because concurrent sessions only see each other's committed rows.
    Tests using it must delete what they create.
    """
    engine = create_async_engine(TEST_DB_URL, echo=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except (OSError, OperationalError, DBAPIError) as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL unavailable: {e}")

    try:
        yield engine
    finally:
        await engine.dispose()
