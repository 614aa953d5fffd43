"""Dual-mode token authentication.

Learn: One entry point, two paths, chosen from the verified token alone:

    verify signature + expiry
      ├─ sub == reserved principal → internal: load the admin account
      └─ anything else             → external: extract claims,
                                     provision/resolve the account

The gateway is built once at startup from immutable collaborators
(verifier, recognizer). Per-request state (the identity store and
everything resolved from it) only lives in authenticate()'s frame.
"""

import structlog

from lms_gateway.auth.claims import ClaimExtractor
from lms_gateway.auth.errors import AccountDisabled, PrincipalLookupFailure
from lms_gateway.auth.internal import InternalTokenRecognizer
from lms_gateway.auth.principal import Principal
from lms_gateway.auth.provisioning import IdentityResolver
from lms_gateway.auth.tokens import TokenVerifier
from lms_gateway.repositories.base import IdentityStore

logger = structlog.get_logger()


class AuthenticationGateway:
    def __init__(self, verifier: TokenVerifier, recognizer: InternalTokenRecognizer):
        self.verifier = verifier
        self.recognizer = recognizer

    async def authenticate(self, token: str, store: IdentityStore) -> Principal:
        """Verify `token` and return the principal it authenticates.

        Raises an AuthenticationError subclass (401) or
        PersistenceConflict (500).
        """
        claims = self.verifier.verify(token)
        if self.recognizer.is_internal(claims):
            return await self._authenticate_internal(claims, store)
        return await self._authenticate_external(claims, store)

    async def _authenticate_internal(self, claims: dict, store: IdentityStore) -> Principal:
        username = claims["sub"]
        account = await store.accounts.find_by_username(username)
        if account is None:
            raise PrincipalLookupFailure()
        if not account.is_active:
            raise AccountDisabled()
        principal = Principal.from_account(account, internal=True)
        logger.debug(
            "auth.internal_authenticated",
            username=username,
            authorities=list(principal.authorities),
        )
        return principal

    async def _authenticate_external(self, claims: dict, store: IdentityStore) -> Principal:
        payload = await ClaimExtractor(store.roles).extract(claims)
        account = await IdentityResolver(store).resolve(payload)
        if not account.is_active:
            raise AccountDisabled()
        principal = Principal.from_account(account, permissions=payload.permissions)
        logger.debug(
            "auth.external_authenticated",
            subject=payload.subject,
            username=account.username,
            authorities=list(principal.authorities),
        )
        return principal
