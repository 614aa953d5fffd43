"""Roles, authorities and the route access table.

Learn: Authorization is two static tables:
1. Role → authority string ("ROLE_" + the role's catalog name)
2. Path prefix → authorities allowed on that prefix

Both are plain data so they can be read (and tested) without a
running app. AuthorizationMiddleware evaluates ROUTE_RULES before any
handler runs.
"""

import enum
from dataclasses import dataclass
from typing import Optional


class Role(str, enum.Enum):
    """Every account has exactly one of these.

    Values are the identity provider's role names, which are also the
    names stored in the role catalog and used in authority strings.
    """

    ADMIN = "ADMIN"
    DECIDING_GUARDIAN = "DECIDING_PARENT"
    NON_DECIDING_GUARDIAN = "NON_DECIDING_PARENT"
    DEPENDENT = "CHILD"


AUTHORITY_PREFIX = "ROLE_"

ROLE_DESCRIPTIONS: dict[Role, str] = {
    Role.ADMIN: "Full system access",
    Role.DECIDING_GUARDIAN: "Guardian who makes decisions for their dependents",
    Role.NON_DECIDING_GUARDIAN: "Guardian with read access to their dependents",
    Role.DEPENDENT: "Learner in a guardian's care",
}


def authority_for(role: Role) -> str:
    """Map a role to the authority string the route matcher uses."""
    return f"{AUTHORITY_PREFIX}{role.value}"


def parse_role(value: str) -> Optional[Role]:
    """Role from a catalog/wire name, or None when the name is unknown."""
    try:
        return Role(value.strip().upper())
    except (ValueError, AttributeError):
        return None


# ─── Route access table ─────────────────────────────────


@dataclass(frozen=True)
class RouteRule:
    """Requests whose path starts with `prefix` need one of `authorities`."""

    prefix: str
    authorities: frozenset[str]

    def matches(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix.rstrip("/") + "/")


def _rule(prefix: str, *roles: Role) -> RouteRule:
    return RouteRule(prefix, frozenset(authority_for(r) for r in roles))


# First match wins; keep more specific prefixes first.
ROUTE_RULES: tuple[RouteRule, ...] = (
    _rule("/api/v1/admin", Role.ADMIN),
    _rule("/api/v1/roles", Role.ADMIN, Role.DEPENDENT),
    _rule(
        "/api/v1/parent",
        Role.ADMIN,
        Role.DECIDING_GUARDIAN,
        Role.NON_DECIDING_GUARDIAN,
    ),
    _rule("/api/v1/child", Role.ADMIN, Role.DEPENDENT),
)

PUBLIC_PATHS = frozenset({
    "/api/v1/health",
    "/docs",
    "/docs/oauth2-redirect",
    "/redoc",
    "/openapi.json",
})


class AccessDecision(str, enum.Enum):
    ALLOW = "allow"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS


def match_rule(path: str, rules: tuple[RouteRule, ...] = ROUTE_RULES) -> Optional[RouteRule]:
    for rule in rules:
        if rule.matches(path):
            return rule
    return None


def decide(
    path: str,
    authorities: Optional[list[str]],
    rules: tuple[RouteRule, ...] = ROUTE_RULES,
) -> AccessDecision:
    """Evaluate the route table for a request.

    `authorities` is None for unauthenticated requests. Public paths
    are always allowed; any other path needs an authenticated caller,
    and a matching rule additionally needs one of its authorities.
    """
    if is_public_path(path):
        return AccessDecision.ALLOW
    if authorities is None:
        return AccessDecision.UNAUTHENTICATED
    rule = match_rule(path, rules)
    if rule is None:
        return AccessDecision.ALLOW
    if rule.authorities.intersection(authorities):
        return AccessDecision.ALLOW
    return AccessDecision.FORBIDDEN
