"""rpc/ -- Envoy ext_authz gRPC transport.

Layer rule: rpc/ imports from core/ only. It never imports api/; both
transports share core/wiring.py instead.
"""
