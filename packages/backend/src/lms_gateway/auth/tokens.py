"""Bearer token signature verification.

Learn: Tokens are compact JWS strings signed with HMAC by the external
identity provider, using a secret shared with this service. The
verifier only checks them; token issuance is not our job.

The provider picks HS256/HS384/HS512 from the key length, so all three
are accepted by default. Expiry is checked twice: once by PyJWT during
decode, then again explicitly against the verifier's clock.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

import jwt

from lms_gateway.auth.errors import MissingRequiredClaim, TokenExpired, TokenMalformed

REQUIRED_CLAIMS = ("sub", "exp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenVerifier:
    """Verifies signature + expiry with one process-wide shared secret."""

    def __init__(
        self,
        secret: str,
        algorithms: Optional[list[str]] = None,
        leeway_seconds: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not secret:
            raise ValueError("token secret must not be empty")
        self._key = secret.encode("utf-8")
        self._algorithms = list(algorithms or ["HS256"])
        self._leeway = leeway_seconds
        self._clock = clock

    def verify(self, token: str) -> dict:
        """Verify and decode a token.

        Returns the claims dict on success.
        Raises TokenExpired, TokenMalformed or MissingRequiredClaim.
        """
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=self._algorithms,
                leeway=self._leeway,
                options={"require": list(REQUIRED_CLAIMS)},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpired()
        except jwt.MissingRequiredClaimError:
            raise MissingRequiredClaim()
        except jwt.InvalidTokenError:
            raise TokenMalformed()

        self._check_expiry(claims)
        if not isinstance(claims.get("sub"), str) or not claims["sub"].strip():
            raise MissingRequiredClaim()
        return claims

    def _check_expiry(self, claims: dict) -> None:
        try:
            exp = datetime.fromtimestamp(float(claims["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError, OverflowError):
            raise MissingRequiredClaim()
        if exp.timestamp() + self._leeway <= self._clock().timestamp():
            raise TokenExpired()
