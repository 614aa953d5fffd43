"""Internal (administrative) token recognition.

Learn: Internal and federated tokens are signed with the same secret
and look identical structurally. The only discriminator is the subject:
a token whose verified `sub` equals the reserved internal principal is
internal, every other token is external. No other claim is consulted.

Known gap: a federated token whose subject happens to equal the
reserved name is treated as internal. A dedicated token-type claim
would close it, but the identity provider does not emit one.
"""


class InternalTokenRecognizer:
    """Decides internal vs. external from verified claims alone."""

    def __init__(self, principal_name: str):
        if not principal_name:
            raise ValueError("internal principal name must not be empty")
        self.principal_name = principal_name

    def is_internal(self, claims: dict) -> bool:
        return claims.get("sub") == self.principal_name
