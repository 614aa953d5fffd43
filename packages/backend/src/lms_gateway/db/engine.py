"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection
pooling, one AsyncSession per request. The authentication middleware
and the route handlers both open sessions through the identity store
factory built from `async_session_factory` (see main.create_app).
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from lms_gateway.config import settings

# Every authenticated request touches the database, so keep a warm pool.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=15,
    pool_pre_ping=True,
)

# expire_on_commit=False: provisioned rows stay readable after each
# per-entity-pair commit.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
