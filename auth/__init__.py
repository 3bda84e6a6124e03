"""
auth/ -- Gateway accounts, sessions and access control decisions for homegate.

Layer rule: auth/ imports only core/ plus third-party libraries.
It does NOT import from api/, gateway/, bridge/, vault/, audit/, or cache/.
api/ and gateway/ import from auth/, not the other way around.
"""
