"""
Account security core: password hashing, secret tokens, lockout policy,
JWT issuance, the authentication service and access control.
"""
