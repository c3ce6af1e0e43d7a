"""auth/ -- Caller identity for the PAT management surface.

The edge proxy authenticates the human user and forwards the result in
trusted X-Auth-Request-* headers. This package only reads those headers; it
never verifies a credential itself.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/, rpc/, core/, idp/, pat/, or cache/.
api/ imports from auth/, not the other way around.
"""
