"""vault/ -- Encrypted at-rest storage of per-user, per-service backend credentials.

Layer rule: vault/ imports only core/ plus third-party libraries.
Decrypted secrets leave this package only as return values of
CredentialVault.get(); they are never persisted or logged.
"""
