"""LMS Gateway CLI — seed the identity catalog, inspect tokens, check who you are.

Usage:
    lms-gateway seed                        # Seed roles + reserved admin account
    lms-gateway roles                       # Role → authority table
    lms-gateway inspect-token <token>       # Verify + decode a token offline
    lms-gateway whoami <token>              # Ask a running gateway who the token is
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("LMS_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the gateway."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(prog_name="lms-gateway")
def main():
    """LMS Gateway — token authentication and identity provisioning."""


# ---------------------------------------------------------------------------
# lms-gateway seed
# ---------------------------------------------------------------------------


@main.command()
def seed():
    """Seed the role catalog and the reserved admin account."""
    result = _run(_seed_impl())
    click.echo(f"Roles created: {', '.join(result.roles_created) or 'none'}")
    if result.admin_created:
        click.secho("Admin account created", fg="green")
    elif result.admin_password_updated:
        click.secho("Admin password updated", fg="yellow")
    else:
        click.echo("Admin account already up to date")


async def _seed_impl():
    from lms_gateway.bootstrap import seed_identity_catalog
    from lms_gateway.config import settings
    from lms_gateway.db.engine import async_session_factory, engine
    from lms_gateway.repositories.sql import sql_store_factory

    try:
        async with sql_store_factory(async_session_factory)() as store:
            return await seed_identity_catalog(
                store,
                admin_username=settings.internal_principal,
                admin_email=settings.admin_email,
                admin_password=settings.admin_password,
            )
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# lms-gateway roles
# ---------------------------------------------------------------------------


@main.command()
def roles():
    """Print every role with the authority the route table checks."""
    from lms_gateway.auth.roles import ROUTE_RULES, Role, authority_for

    click.secho(f"{'ROLE':24s}  AUTHORITY", bold=True)
    for role in Role:
        click.echo(f"{role.value:24s}  {authority_for(role)}")

    click.echo()
    click.secho(f"{'PATH PREFIX':24s}  ALLOWED", bold=True)
    for rule in ROUTE_RULES:
        click.echo(f"{rule.prefix:24s}  {', '.join(sorted(rule.authorities))}")


# ---------------------------------------------------------------------------
# lms-gateway inspect-token
# ---------------------------------------------------------------------------


@main.command("inspect-token")
@click.argument("token")
def inspect_token(token: str):
    """Verify TOKEN with the configured secret and show how it would be treated.

    No database access: the role is checked against the Role enum only.
    """
    from lms_gateway.auth.claims import ClaimExtractor
    from lms_gateway.auth.errors import AuthenticationError
    from lms_gateway.auth.internal import InternalTokenRecognizer
    from lms_gateway.auth.roles import authority_for
    from lms_gateway.auth.tokens import TokenVerifier
    from lms_gateway.config import settings

    verifier = TokenVerifier(
        settings.jwt_secret,
        algorithms=settings.jwt_algorithms,
        leeway_seconds=settings.jwt_leeway_seconds,
    )
    recognizer = InternalTokenRecognizer(settings.internal_principal)

    try:
        claims = verifier.verify(token)
        if recognizer.is_internal(claims):
            click.secho(f"internal token for {claims['sub']}", fg="cyan")
            return
        payload = _run(ClaimExtractor(role_catalog=None).extract(claims))
    except AuthenticationError as e:
        click.secho(f"rejected: {e.message}", fg="red", err=True)
        sys.exit(1)

    click.secho(f"external token for {payload.subject}", fg="green")
    click.echo(_pretty_json({
        "account_id": payload.account_id,
        "role": payload.role.value,
        "authority": authority_for(payload.role),
        "email": payload.email,
        "guardian": payload.guardian.model_dump() if payload.guardian else None,
        "dependent": payload.dependent.model_dump() if payload.dependent else None,
        "permissions": payload.permissions,
        "expires_at": payload.expires_at,
    }))


# ---------------------------------------------------------------------------
# lms-gateway whoami
# ---------------------------------------------------------------------------


@main.command()
@click.argument("token")
def whoami(token: str):
    """Ask a running gateway (LMS_API_URL) who TOKEN authenticates as."""
    _run(_whoami_impl(token))


async def _whoami_impl(token: str):
    async with _client() as c:
        r = await c.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        if r.status_code != 200:
            try:
                body = r.json()
            except ValueError:
                body = {}
            reason = body.get("message") or body.get("detail") or r.text
            click.secho(f"{r.status_code}: {reason}", fg="red", err=True)
            sys.exit(1)
        click.echo(_pretty_json(r.json()))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
