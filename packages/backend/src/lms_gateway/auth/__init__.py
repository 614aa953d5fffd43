"""Authentication and authorization.

Learn: Two kinds of bearer token, one shared HMAC secret:
1. Internal token → subject is the reserved admin principal
2. Federated token → issued by the external identity provider,
   carries guardian/dependent profile claims

Both resolve to a Principal (username + authorities) that the route
table and handlers use. See gateway.py for the flow.
"""
