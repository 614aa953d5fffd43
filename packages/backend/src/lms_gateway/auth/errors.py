"""Authentication error taxonomy.

Learn: Every failure the gateway can hit maps to one exception type.
The request filter converts them all to the same JSON body:

    {"success": false, "message": "<reason>"}

Token and claim errors are the caller's fault and are never retried.
PersistenceConflict is raised after the provisioner's single retry
fails, or straight away when a write breaks a non-unique constraint.
"""


class AuthenticationError(Exception):
    """Base class — the request is rejected with status_code and message."""

    status_code = 401
    default_message = "Unauthorized"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class TokenExpired(AuthenticationError):
    default_message = "Token expired"


class TokenMalformed(AuthenticationError):
    """Bad signature, bad structure, or a disallowed algorithm."""

    default_message = "Invalid token"


class MissingRequiredClaim(AuthenticationError):
    default_message = "Token missing required claims"


class UnknownRole(AuthenticationError):
    default_message = "Unknown role"


class PrincipalLookupFailure(AuthenticationError):
    """Internal token whose account no longer exists."""

    default_message = "User not found for internal token"


class AccountDisabled(AuthenticationError):
    default_message = "Account disabled"


class AccountMismatch(AuthenticationError):
    """Username already belongs to an account of another role or profile."""

    default_message = "Account belongs to another identity"


class PersistenceConflict(Exception):
    """A unique-constraint conflict survived the provisioner's retry, or a
    write failed on a non-unique integrity constraint."""

    status_code = 500

    def __init__(self, message: str = "Identity provisioning conflict"):
        self.message = message
        super().__init__(message)
