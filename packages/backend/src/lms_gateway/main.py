"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The authentication gateway is built here, once, from the
immutable Settings (shared token secret, reserved principal name) and
handed to the middleware. Nothing reads the secret at request time.

`store_factory` opens one identity store per request. It defaults to
PostgreSQL sessions; tests pass an in-memory one.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lms_gateway import __version__
from lms_gateway.api import api_router
from lms_gateway.auth.gateway import AuthenticationGateway
from lms_gateway.auth.internal import InternalTokenRecognizer
from lms_gateway.auth.tokens import TokenVerifier
from lms_gateway.config import Settings, settings as default_settings

logger = structlog.get_logger()


def build_gateway(config: Settings) -> AuthenticationGateway:
    return AuthenticationGateway(
        verifier=TokenVerifier(
            config.jwt_secret,
            algorithms=config.jwt_algorithms,
            leeway_seconds=config.jwt_leeway_seconds,
        ),
        recognizer=InternalTokenRecognizer(config.internal_principal),
    )


def _default_store_factory():
    from lms_gateway.db.engine import async_session_factory
    from lms_gateway.repositories.sql import sql_store_factory

    return sql_store_factory(async_session_factory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    Startup seeds the role catalog and the reserved admin account.
    """
    config: Settings = app.state.settings
    logger.info(
        "lms_gateway.starting",
        version=__version__,
        environment=config.environment,
        port=config.port,
    )

    if config.seed_on_startup:
        from lms_gateway.bootstrap import seed_identity_catalog

        async with app.state.identity_store_factory() as store:
            await seed_identity_catalog(
                store,
                admin_username=config.internal_principal,
                admin_email=config.admin_email,
                admin_password=config.admin_password,
            )

    yield

    logger.info("lms_gateway.shutdown")
    if app.state.owns_engine:
        from lms_gateway.db.engine import engine
        await engine.dispose()


def create_app(
    config: Optional[Settings] = None,
    store_factory=None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    config = config or default_settings

    app = FastAPI(
        title="LMS Gateway",
        description="Authentication gateway for the learning platform: "
        "internal admin tokens and federated guardian/dependent tokens",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.owns_engine = store_factory is None
    app.state.identity_store_factory = store_factory or _default_store_factory()

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → CORS → Authentication → Authorization → handler

    from lms_gateway.middleware.authentication import AuthenticationMiddleware
    from lms_gateway.middleware.authorization import AuthorizationMiddleware
    from lms_gateway.middleware.request_id import RequestIdMiddleware
    from lms_gateway.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(AuthorizationMiddleware)
    app.add_middleware(AuthenticationMiddleware, gateway=build_gateway(config))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: lms_gateway.main:app)
app = create_app()
