"""
idp/ -- Identity provider client.

Every outbound call to the IdP lives here: the RFC 8693 token exchange, the
OIDC userinfo lookup, and the machine-user / PAT management API.

Layer rule: idp/ is a leaf. It must not import from core/, api/, rpc/,
auth/, or pat/.
"""
