"""LMS Gateway — authentication gateway for the learning platform backend.

Verifies bearer tokens (internal admin tokens and federated identity
provider tokens), provisions guardian/dependent identities on first
sight, and attaches a role-based principal to every request.
"""

__version__ = "0.1.0"
