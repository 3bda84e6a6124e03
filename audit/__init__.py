"""audit/ -- Append-only audit log of backend authentication attempts.

Layer rule: audit/ imports only core/ plus third-party libraries.
"""
